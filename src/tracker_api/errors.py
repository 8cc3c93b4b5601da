import logging

from fastapi import HTTPException, status

from credential_pool import (
    AccountNotFound,
    DuplicateCredential,
    InvalidAccountConfig,
    InvalidCredential,
    NoAccountAvailable,
    PoolError,
    ProviderCallFailed,
    UnknownProvider,
)

logger = logging.getLogger(__name__)

SERVICE_UNAVAILABLE_DETAIL = "Service temporarily unavailable. Please try again later."


def pool_error_to_http(error: PoolError, *, during_call: bool = False) -> HTTPException:
    """
    Translate a pool error into the response the API exposes for it.

    With `during_call`, a rejected credential belongs to the pool, not the
    client, and is reported as an upstream failure.
    """
    if isinstance(error, NoAccountAvailable):
        logger.warning("Request rejected: %s", error)
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=SERVICE_UNAVAILABLE_DETAIL,
        )
    if isinstance(error, AccountNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, DuplicateCredential):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error))
    if during_call and isinstance(error, InvalidCredential):
        logger.warning("Provider rejected pool account '%s': %s", error.account_used, error)
        return HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Upstream provider rejected the service credential",
        )
    if isinstance(error, (InvalidCredential, InvalidAccountConfig, UnknownProvider)):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
    if isinstance(error, ProviderCallFailed):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(error))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(error))
