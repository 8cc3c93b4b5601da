import hmac
from typing import AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import APIKeyHeader
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from credential_pool import CredentialPool
from tracker_api.security_config import get_admin_api_key, get_service_api_key

admin_key_header = APIKeyHeader(name="X-Admin-Key", auto_error=False)
service_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)
authorization_header = APIKeyHeader(name="Authorization", auto_error=False)


def parse_bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    value = authorization.strip()
    if not value:
        return None
    parts = value.split(" ", 1)
    if len(parts) != 2:
        return None
    scheme, token = parts
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None


def _matches(candidate: str | None, expected: str) -> bool:
    if not candidate:
        return False
    return hmac.compare_digest(candidate.encode("utf-8"), expected.encode("utf-8"))


async def require_admin_key(admin_key: str | None = Depends(admin_key_header)) -> None:
    if not _matches(admin_key, get_admin_api_key()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Admin access required",
        )


async def require_service_key(
    x_api_key: str | None = Depends(service_key_header),
    authorization: str | None = Depends(authorization_header),
) -> None:
    token = x_api_key.strip() if x_api_key and x_api_key.strip() else parse_bearer_token(authorization)
    if not _matches(token, get_service_api_key()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API Key",
        )


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    session_maker: async_sessionmaker[AsyncSession] = request.app.state.db_session_maker
    async with session_maker() as session:
        yield session


def get_pool(request: Request) -> CredentialPool:
    """Dependency to get the credential pool from the app state."""
    return request.app.state.credential_pool
