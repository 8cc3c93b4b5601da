# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

import logging

from .config import DEFAULT_PROVIDER_CONFIGS, ProviderConfig, load_provider_configs
from .error_handler import (
    AccountNotFound,
    DuplicateCredential,
    InvalidAccountConfig,
    InvalidCredential,
    NoAccountAvailable,
    PoolError,
    ProviderCallFailed,
    UnknownProvider,
)
from .pool import CredentialPool
from .types import (
    AccountStatus,
    AccountSummary,
    InvocationResult,
    PlanType,
    Provider,
    ProviderResponse,
    UsageCounter,
)

# Library code logs through this logger; the host application decides where it goes.
logging.getLogger("credential_pool").addHandler(logging.NullHandler())

__all__ = [
    "CredentialPool",
    "ProviderConfig",
    "DEFAULT_PROVIDER_CONFIGS",
    "load_provider_configs",
    "Provider",
    "AccountStatus",
    "PlanType",
    "UsageCounter",
    "ProviderResponse",
    "InvocationResult",
    "AccountSummary",
    "PoolError",
    "NoAccountAvailable",
    "InvalidCredential",
    "ProviderCallFailed",
    "AccountNotFound",
    "UnknownProvider",
    "DuplicateCredential",
    "InvalidAccountConfig",
]
