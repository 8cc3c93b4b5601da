# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

import json
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

from .error_handler import mask_credential

FAILURE_LOGGER_NAME = "credential_pool.failures"


class JsonFormatter(logging.Formatter):
    def format(self, record):
        log_record = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "message": record.msg if isinstance(record.msg, dict) else record.getMessage(),
        }
        return json.dumps(log_record, default=str)


def setup_failure_logger(log_dir: Optional[str] = None) -> logging.Logger:
    """Sets up a dedicated JSON logger for failed provider calls."""
    log_dir = log_dir or os.getenv("FAILURE_LOG_DIR", "logs")
    os.makedirs(log_dir, exist_ok=True)

    logger = logging.getLogger(FAILURE_LOGGER_NAME)
    logger.setLevel(logging.INFO)
    logger.propagate = False

    if not any(isinstance(h, RotatingFileHandler) for h in logger.handlers):
        handler = RotatingFileHandler(
            os.path.join(log_dir, "failures.log"),
            maxBytes=5 * 1024 * 1024,  # 5 MB
            backupCount=2,
        )
        handler.setFormatter(JsonFormatter())
        logger.addHandler(handler)

    return logger


def log_failure(
    *,
    provider: str,
    account_name: str,
    credential: str,
    error: Exception,
    error_count: int,
) -> None:
    """Logs a structured record for a failed provider call."""
    raw_response = None
    response = getattr(error, "response", None)
    if response is not None and hasattr(response, "text"):
        try:
            raw_response = response.text[:2000]
        except Exception:
            raw_response = None

    logging.getLogger(FAILURE_LOGGER_NAME).error(
        {
            "provider": provider,
            "account": account_name,
            "credential_ending": mask_credential(credential),
            "error_type": type(error).__name__,
            "error_message": str(error),
            "consecutive_errors": error_count,
            "raw_response": raw_response,
        }
    )
