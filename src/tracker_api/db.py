import logging
import os
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from credential_pool import Provider, ProviderConfig, load_provider_configs
from credential_pool.repository import AccountRepository, build_account
from tracker_api.db_models import Base

logger = logging.getLogger(__name__)


def get_database_url(root_dir: Path) -> str:
    configured = os.getenv("DATABASE_URL")
    if configured:
        return configured
    db_dir = root_dir / "data"
    db_dir.mkdir(parents=True, exist_ok=True)
    return f"sqlite+aiosqlite:///{db_dir / 'tracker.db'}"


def _is_sqlite_url(database_url: str) -> bool:
    driver = make_url(database_url).get_backend_name()
    return driver == "sqlite"


def _get_sqlite_busy_timeout_ms() -> int:
    raw = os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")
    try:
        timeout = int(raw)
    except ValueError:
        timeout = 5000
    return max(1000, timeout)


def _configure_sqlite_engine(engine: AsyncEngine) -> None:
    busy_timeout_ms = _get_sqlite_busy_timeout_ms()

    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection, _connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute(f"PRAGMA busy_timeout={busy_timeout_ms}")
        cursor.close()


def create_db_engine(database_url: str) -> AsyncEngine:
    connect_args = {}
    if _is_sqlite_url(database_url):
        connect_args["timeout"] = _get_sqlite_busy_timeout_ms() / 1000

    engine = create_async_engine(database_url, future=True, connect_args=connect_args)
    if _is_sqlite_url(database_url):
        _configure_sqlite_engine(engine)
    return engine


def collect_seed_credentials(environ: dict[str, str] | None = None) -> dict[Provider, list[str]]:
    """
    Read `<PROVIDER>_API_KEY` and `<PROVIDER>_API_KEY_<N>` variables.

    Unknown prefixes are ignored; duplicates within a provider are dropped.
    """
    environ = dict(os.environ if environ is None else environ)
    seeds: dict[Provider, list[str]] = {}
    for key, value in sorted(environ.items()):
        if not (key.endswith("_API_KEY") or "_API_KEY_" in key):
            continue
        prefix = key.split("_API_KEY")[0].lower()
        try:
            provider = Provider(prefix)
        except ValueError:
            continue
        value = value.strip()
        if value and value not in seeds.setdefault(provider, []):
            seeds[provider].append(value)
    return seeds


async def _bootstrap_seed_accounts(
    session: AsyncSession,
    provider_configs: dict[Provider, ProviderConfig],
    environ: dict[str, str] | None = None,
) -> int:
    seeds = collect_seed_credentials(environ)
    if not seeds:
        logger.info("No <PROVIDER>_API_KEY variables set, skipping account bootstrap")
        return 0

    repository = AccountRepository(session)
    added = 0
    for provider, credentials in seeds.items():
        config = provider_configs[provider]
        for index, credential in enumerate(credentials, start=1):
            if await repository.get_by_credential(credential):
                continue
            account = build_account(
                config,
                credential,
                name=f"{config.display_name} Seed {index}",
                notes="Seeded from environment",
            )
            await repository.add(account)
            added += 1

    await session.commit()
    if added:
        logger.info("Bootstrapped %d account(s) from environment", added)
    return added


async def init_db_runtime(
    root_dir: Path,
    provider_configs: dict[Provider, ProviderConfig] | None = None,
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    database_url = get_database_url(root_dir)
    engine = create_db_engine(database_url)
    session_maker = async_sessionmaker(engine, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with session_maker() as session:
        await _bootstrap_seed_accounts(session, provider_configs or load_provider_configs())

    return engine, session_maker
