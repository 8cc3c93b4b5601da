import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from credential_pool import CredentialPool, load_provider_configs
from credential_pool.failure_logger import setup_failure_logger
from tracker_api.db import init_db_runtime
from tracker_api.invocation_recorder import InvocationRecorder, prune_invocation_events
from tracker_api.routers import admin_router, services_router
from tracker_api.security_config import (
    CORS_HEADERS,
    CORS_METHODS,
    get_cors_settings,
    validate_secret_settings,
)

# Load environment variables from .env file
load_dotenv()

# Configure logging
logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())

ROOT_DIR = Path(os.getenv("TRACKER_ROOT_DIR") or Path.cwd())


def _get_http_timeout_seconds() -> float:
    raw = os.getenv("PROVIDER_HTTP_TIMEOUT_SECONDS", "60")
    try:
        timeout = float(raw)
    except ValueError:
        timeout = 60.0
    return max(1.0, timeout)


# --- Lifespan Management ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the pool, its database and the invocation log for the app's lifetime."""
    validate_secret_settings()
    setup_failure_logger(os.getenv("FAILURE_LOG_DIR") or str(ROOT_DIR / "logs"))

    provider_configs = load_provider_configs()
    engine, session_maker = await init_db_runtime(ROOT_DIR, provider_configs)
    await prune_invocation_events(session_maker)

    recorder = InvocationRecorder(session_maker)
    await recorder.start()

    app.state.db_session_maker = session_maker
    app.state.invocation_recorder = recorder
    app.state.credential_pool = CredentialPool(
        session_maker,
        provider_configs=provider_configs,
        timeout_seconds=_get_http_timeout_seconds(),
        event_sink=recorder.record_invocation,
    )
    logging.info("Credential pool initialized.")
    try:
        yield
    finally:
        await app.state.credential_pool.close()
        await recorder.stop()
        await engine.dispose()
        logging.info("Credential pool closed.")


# --- FastAPI App Setup ---
def create_app() -> FastAPI:
    app = FastAPI(title="Finance Tracker Services", lifespan=lifespan)

    cors = get_cors_settings()
    if cors.allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors.allow_origins,
            allow_credentials=cors.allow_credentials,
            allow_methods=CORS_METHODS,
            allow_headers=CORS_HEADERS,
        )

    app.include_router(admin_router)
    app.include_router(services_router)

    @app.get("/")
    def read_root():
        return {"Status": "Finance tracker services are running"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8000")),
    )
