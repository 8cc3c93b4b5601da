import sys
from pathlib import Path
from typing import Any, Callable

import httpx
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool


ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from credential_pool import CredentialPool, DEFAULT_PROVIDER_CONFIGS, Provider
from credential_pool.db_models import Account
from credential_pool.repository import build_account
from tracker_api.db_models import Base


def make_account(provider: str = "speechmatics", credential: str = "key-0001", **overrides: Any) -> Account:
    """Unsaved account with provider defaults, then `overrides` applied verbatim."""
    config = DEFAULT_PROVIDER_CONFIGS[Provider(provider)]
    builder_fields = {
        key: overrides.pop(key)
        for key in ("now", "name", "priority", "total_capacity", "plan_type", "rate_limit_max")
        if key in overrides
    }
    account = build_account(config, credential, **builder_fields)
    for key, value in overrides.items():
        setattr(account, key, value)
    return account


@pytest_asyncio.fixture
async def session_maker() -> async_sessionmaker:
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    maker = async_sessionmaker(engine, expire_on_commit=False)
    try:
        yield maker
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def add_accounts(session_maker: async_sessionmaker) -> Callable:
    async def _add(*accounts: Account) -> list[Account]:
        async with session_maker() as session:
            session.add_all(accounts)
            await session.commit()
        return list(accounts)

    return _add


@pytest_asyncio.fixture
async def http_handler() -> dict:
    """Route table for the fake provider API: {(method, url_prefix): handler}."""
    return {}


@pytest_asyncio.fixture
async def pool(session_maker: async_sessionmaker, http_handler: dict) -> CredentialPool:
    def _dispatch(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        for (method, prefix), handler in http_handler.items():
            if request.method == method and url.startswith(prefix):
                return handler(request)
        return httpx.Response(404, json={"error": f"unrouted {request.method} {url}"})

    client = httpx.AsyncClient(transport=httpx.MockTransport(_dispatch))
    credential_pool = CredentialPool(session_maker, http_client=client)
    try:
        yield credential_pool
    finally:
        await client.aclose()
