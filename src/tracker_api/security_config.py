import logging
import os
from dataclasses import dataclass


# Env var -> placeholder that counts as "not configured".
API_KEY_DEFAULTS = {
    "ADMIN_API_KEY": "change-me-admin-key",
    "SERVICE_API_KEY": "change-me-service-key",
}

CORS_METHODS = ["GET", "POST", "PATCH", "DELETE", "OPTIONS"]
CORS_HEADERS = ["Authorization", "Content-Type", "X-API-Key", "X-Admin-Key"]


class SecurityValidationError(RuntimeError):
    pass


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _api_key(name: str) -> str:
    return (os.getenv(name) or "").strip() or API_KEY_DEFAULTS[name]


def get_admin_api_key() -> str:
    return _api_key("ADMIN_API_KEY")


def get_service_api_key() -> str:
    return _api_key("SERVICE_API_KEY")


def validate_secret_settings() -> None:
    """Warn about placeholder keys in dev; refuse to start with them in prod."""
    is_prod = (os.getenv("APP_ENV") or "dev").strip().lower() in {"prod", "production"}
    unset = [name for name, default in API_KEY_DEFAULTS.items() if _api_key(name) == default]
    if not unset:
        return

    if _env_flag("ALLOW_INSECURE_DEFAULTS", not is_prod):
        for name in unset:
            logging.warning(
                f"SECURITY WARNING: {name} is using default value. "
                f"Set {name} for non-local usage."
            )
        return

    raise SecurityValidationError(
        "Refusing startup due to insecure defaults: "
        + "; ".join(f"{name} is missing or default" for name in unset)
        + ". Set secure keys or ALLOW_INSECURE_DEFAULTS=true explicitly."
    )


@dataclass(frozen=True)
class CORSSettings:
    allow_origins: list[str]
    allow_credentials: bool


def get_cors_settings() -> CORSSettings:
    origins = [
        origin.strip()
        for origin in os.getenv("CORS_ALLOW_ORIGINS", "").split(",")
        if origin.strip()
    ]
    allow_credentials = bool(origins) and _env_flag("CORS_ALLOW_CREDENTIALS", True)
    if allow_credentials and "*" in origins:
        raise SecurityValidationError(
            "Invalid CORS config: CORS_ALLOW_ORIGINS cannot include '*' when "
            "CORS_ALLOW_CREDENTIALS=true."
        )
    return CORSSettings(allow_origins=origins, allow_credentials=allow_credentials)
