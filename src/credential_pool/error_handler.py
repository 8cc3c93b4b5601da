# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from typing import Optional

import httpx
from litellm.exceptions import (
    APIConnectionError,
    AuthenticationError,
    PermissionDeniedError,
    RateLimitError,
    ServiceUnavailableError,
)


class PoolError(Exception):
    """Base class for every error raised by the credential pool."""

    # Set by the invocation wrapper when the failure happened on a selected account.
    account_used: Optional[str] = None
    account_id: Optional[int] = None


class NoAccountAvailable(PoolError):
    """No account passes selection (exhausted, rate limited, expired, disabled)."""

    def __init__(self, provider: Optional[str] = None):
        self.provider = provider
        target = f"{provider} accounts" if provider else "accounts"
        super().__init__(
            f"No available {target}. All accounts are exhausted, rate-limited, "
            "expired or disabled."
        )


class InvalidCredential(PoolError):
    """The provider rejected the credential (401/403)."""

    def __init__(self, message: str = "Invalid API key", status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ProviderCallFailed(PoolError):
    """Any other non-2xx, transport or malformed-response failure."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class AccountNotFound(PoolError):
    def __init__(self, account_id: int):
        self.account_id = account_id
        super().__init__("Account not found")


class UnknownProvider(PoolError):
    def __init__(self, provider: object):
        super().__init__(
            f"Invalid provider {provider!r}. Must be one of: "
            "assemblyai, clarifai, speechmatics, elevenlabs"
        )


class DuplicateCredential(PoolError):
    def __init__(self):
        super().__init__("An account with this credential already exists")


class InvalidAccountConfig(PoolError):
    """An add/update request carries a field or value the pool cannot accept."""


def is_rate_limit_error(e: Exception) -> bool:
    """Checks if the exception is a provider-side rate limit error."""
    if isinstance(e, RateLimitError):
        return True
    return isinstance(e, httpx.HTTPStatusError) and e.response.status_code == 429


def is_server_error(e: Exception) -> bool:
    """Checks if the exception is a temporary server-side or transport error."""
    if isinstance(e, (ServiceUnavailableError, APIConnectionError, httpx.TransportError)):
        return True
    return isinstance(e, httpx.HTTPStatusError) and e.response.status_code >= 500


def is_credential_error(e: Exception) -> bool:
    """Checks if the provider rejected the credential itself."""
    if isinstance(e, (InvalidCredential, AuthenticationError, PermissionDeniedError)):
        return True
    return isinstance(e, httpx.HTTPStatusError) and e.response.status_code in (401, 403)


def status_code_of(e: Exception) -> Optional[int]:
    if isinstance(e, httpx.HTTPStatusError):
        return e.response.status_code
    status_code = getattr(e, "status_code", None)
    return status_code if isinstance(status_code, int) else None


def classify_error(e: Exception) -> PoolError:
    """
    Map a raw provider exception onto the pool's error taxonomy.

    The original message is preserved so callers can decide whether to fall
    back to a secondary strategy.
    """
    if isinstance(e, PoolError):
        return e
    status_code = status_code_of(e)
    if is_credential_error(e):
        return InvalidCredential(str(e) or "Invalid API key", status_code=status_code)
    return ProviderCallFailed(str(e) or type(e).__name__, status_code=status_code)


def mask_credential(credential: Optional[str], style: str = "short") -> str:
    """
    Format a credential for logs and admin listings.

    `short` keeps the last 4 characters; `full` keeps the first 8 and last 4.
    """
    if not credential:
        return ""
    if style == "full" and len(credential) > 16:
        return f"{credential[:8]}...{credential[-4:]}"
    return f"...{credential[-4:]}"
