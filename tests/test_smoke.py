import os
import sys
import tempfile
from datetime import datetime
from pathlib import Path

import pytest

# Ensure the src directory is on the path before importing the app
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.append(str(SRC))

# Set required env vars before importing the app module
os.environ.setdefault("TRACKER_ROOT_DIR", tempfile.mkdtemp(prefix="tracker-smoke-"))
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ["ADMIN_API_KEY"] = "test-admin-key"
os.environ["SERVICE_API_KEY"] = "test-service-key"

from fastapi.testclient import TestClient

from credential_pool import (
    AccountNotFound,
    InvalidCredential,
    InvocationResult,
    NoAccountAvailable,
    ProviderCallFailed,
)
from credential_pool.pool import summarize_account
from tracker_api.auth import get_pool
from tracker_api.main import app

from conftest import make_account


class MockPool:
    def __init__(self):
        self.calls = []
        self.patches = []
        self.invoke_error = None

    async def invoke(self, provider, payload, external_call=None):
        self.calls.append((provider, payload))
        if self.invoke_error:
            raise self.invoke_error
        data = {
            "assemblyai": {"text": "ami bhat khai", "audio_seconds": 3.0},
            "speechmatics": {"text": "ami bhat khai", "audio_seconds": 3},
            "clarifai": {"valid": True, "transactions": []},
            "elevenlabs": b"ID3-mp3",
        }[provider]
        return InvocationResult(
            success=True, provider=provider, data=data, account_used="Main", duration_ms=5
        )

    async def list_accounts_status(self, provider=None):
        account = make_account("speechmatics", credential="sm-aaaaaaaaaaaaaaaa-1111")
        account.id = 1
        return [summarize_account(account)]

    async def add_account(self, provider, credential, **fields):
        self.patches.append((None, fields))
        if credential == "bad":
            raise InvalidCredential("Invalid API key")
        account = make_account(provider, credential=credential)
        account.id = 2
        return account

    async def update_account(self, account_id, patch):
        self.patches.append((account_id, patch))
        account = make_account("speechmatics", credential="sm-aaaaaaaaaaaaaaaa-1111", **patch)
        account.id = account_id
        return account

    async def delete_account(self, account_id):
        raise AccountNotFound(account_id)


mock_pool = MockPool()
app.dependency_overrides[get_pool] = lambda: mock_pool

ADMIN = {"X-Admin-Key": "test-admin-key"}
SERVICE = {"X-API-Key": "test-service-key"}


@pytest.fixture(autouse=True)
def reset_mock_pool():
    mock_pool.calls.clear()
    mock_pool.patches.clear()
    mock_pool.invoke_error = None


def test_root_healthcheck():
    with TestClient(app) as client:
        resp = client.get("/")
        assert resp.status_code == 200
        assert resp.json().get("Status")


def test_admin_routes_require_admin_key():
    with TestClient(app) as client:
        assert client.get("/api/admin/pool/accounts").status_code == 401
        assert client.get("/api/admin/pool/accounts", headers=SERVICE).status_code == 401
        resp = client.get("/api/admin/pool/accounts", headers=ADMIN)
        assert resp.status_code == 200
        (account,) = resp.json()["accounts"]
        assert account["credential"] == "sm-aaaaa...1111"


def test_admin_add_account_maps_errors():
    with TestClient(app) as client:
        created = client.post(
            "/api/admin/pool/accounts",
            json={"provider": "elevenlabs", "credential": "good"},
            headers=ADMIN,
        )
        assert created.status_code == 201
        assert created.json()["provider"] == "elevenlabs"

        rejected = client.post(
            "/api/admin/pool/accounts",
            json={"provider": "elevenlabs", "credential": "bad"},
            headers=ADMIN,
        )
        assert rejected.status_code == 400
        assert rejected.json()["detail"] == "Invalid API key"

        unknown = client.post(
            "/api/admin/pool/accounts",
            json={"provider": "openai", "credential": "x"},
            headers=ADMIN,
        )
        assert unknown.status_code == 422

        missing = client.delete("/api/admin/pool/accounts/42", headers=ADMIN)
        assert missing.status_code == 404


def test_service_routes_accept_bearer_token():
    with TestClient(app) as client:
        resp = client.post(
            "/api/services/parse",
            json={"message": "bazar 50 tk"},
            headers={"Authorization": "Bearer test-service-key"},
        )
        assert resp.status_code == 200
        assert resp.json()["data"] == {"valid": True, "transactions": []}
        assert resp.json()["accountUsed"] == "Main"

        assert client.post("/api/services/parse", json={"message": "x"}).status_code == 401


def test_transcribe_upload():
    with TestClient(app) as client:
        resp = client.post(
            "/api/services/transcribe",
            files={"file": ("voice.ogg", b"OggS-bytes", "audio/ogg")},
            data={"provider": "speechmatics"},
            headers=SERVICE,
        )
        assert resp.status_code == 200
        assert resp.json()["data"]["text"] == "ami bhat khai"

        provider, payload = mock_pool.calls[-1]
        assert provider == "speechmatics"
        assert payload.audio == b"OggS-bytes"
        assert payload.filename == "voice.ogg"


def test_speech_returns_audio():
    with TestClient(app) as client:
        resp = client.post("/api/services/speech", json={"text": "Hello"}, headers=SERVICE)
        assert resp.status_code == 200
        assert resp.headers["content-type"] == "audio/mpeg"
        assert resp.content == b"ID3-mp3"


def test_exhausted_pool_is_service_unavailable():
    mock_pool.invoke_error = NoAccountAvailable("clarifai")
    with TestClient(app) as client:
        resp = client.post("/api/services/parse", json={"message": "50 tk"}, headers=SERVICE)
        assert resp.status_code == 503
        assert "temporarily unavailable" in resp.json()["detail"]


def test_provider_failure_is_bad_gateway():
    mock_pool.invoke_error = ProviderCallFailed("AI returned invalid JSON format")
    with TestClient(app) as client:
        resp = client.post("/api/services/parse", json={"message": "50 tk"}, headers=SERVICE)
        assert resp.status_code == 502
        assert resp.json()["detail"] == "AI returned invalid JSON format"


def test_rejected_pool_credential_is_bad_gateway():
    error = InvalidCredential("HTTP 401")
    error.account_used = "Main"
    mock_pool.invoke_error = error
    with TestClient(app) as client:
        speech = client.post("/api/services/speech", json={"text": "Hello"}, headers=SERVICE)
        assert speech.status_code == 502
        assert "rejected the service credential" in speech.json()["detail"]

        transcribe = client.post(
            "/api/services/transcribe",
            files={"file": ("voice.ogg", b"OggS-bytes", "audio/ogg")},
            headers=SERVICE,
        )
        assert transcribe.status_code == 502


def test_admin_patch_folds_timezone_into_utc():
    with TestClient(app) as client:
        resp = client.patch(
            "/api/admin/pool/accounts/1",
            json={"trial_ends_at": "2026-12-01T06:00:00+06:00", "priority": None},
            headers=ADMIN,
        )
        assert resp.status_code == 200

    (account_id, patch) = mock_pool.patches[-1]
    assert account_id == 1
    assert patch == {"trial_ends_at": datetime(2026, 12, 1, 0, 0)}
    assert patch["trial_ends_at"].tzinfo is None


def test_admin_patch_can_clear_trial_horizon():
    with TestClient(app) as client:
        resp = client.patch(
            "/api/admin/pool/accounts/1", json={"trial_ends_at": None}, headers=ADMIN
        )
        assert resp.status_code == 200
        assert resp.json()["trial_ends_at"] is None

    assert mock_pool.patches[-1] == (1, {"trial_ends_at": None})


def test_admin_create_folds_timezone_into_utc():
    with TestClient(app) as client:
        resp = client.post(
            "/api/admin/pool/accounts",
            json={
                "provider": "assemblyai",
                "credential": "good",
                "trial_ends_at": "2026-12-01T00:00:00Z",
            },
            headers=ADMIN,
        )
        assert resp.status_code == 201

    (_, fields) = mock_pool.patches[-1]
    assert fields["trial_ends_at"] == datetime(2026, 12, 1, 0, 0)
    assert fields["trial_ends_at"].tzinfo is None
