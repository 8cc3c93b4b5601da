import json
from types import SimpleNamespace

import httpx
import pytest

from credential_pool import ProviderCallFailed
from credential_pool.providers import (
    AssemblyAIProvider,
    ClarifaiProvider,
    ElevenLabsProvider,
    SpeechmaticsProvider,
    TranscriptionRequest,
    transaction_parse_request,
)
from credential_pool.providers.assemblyai_provider import calculate_cost
from credential_pool.providers.clarifai_provider import model_url_for, parse_json_answer

from conftest import make_account


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_assemblyai_upload_transcribe_and_poll() -> None:
    polls = iter(["queued", "processing", "completed"])
    created = {}

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["authorization"] == "aai-key"
        path = request.url.path
        if path == "/v2/upload":
            assert request.content == b"RIFF-audio"
            return httpx.Response(200, json={"upload_url": "https://cdn.test/a.wav"})
        if path == "/v2/transcript" and request.method == "POST":
            created.update(json.loads(request.content))
            return httpx.Response(200, json={"id": "tr-1"})
        if path == "/v2/transcript/tr-1":
            status = next(polls)
            body = {"status": status}
            if status == "completed":
                body.update(text="ami bhat khai", audio_duration=30, language_code="bn")
            return httpx.Response(200, json=body)
        return httpx.Response(404)

    provider = AssemblyAIProvider(poll_interval=0)
    account = make_account("assemblyai", credential="aai-key")

    async with _client(handler) as client:
        response = await provider.call(
            account, TranscriptionRequest(audio=b"RIFF-audio", language="bn"), client
        )

    assert created["audio_url"] == "https://cdn.test/a.wav"
    assert created["language_code"] == "bn"
    assert response.data["text"] == "ami bhat khai"
    assert response.quantity == 30
    assert response.cost == pytest.approx(calculate_cost(30))
    assert response.cost == pytest.approx(0.0009999)


@pytest.mark.asyncio
async def test_assemblyai_reports_failed_transcription() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v2/upload":
            return httpx.Response(200, json={"upload_url": "u"})
        if request.method == "POST":
            return httpx.Response(200, json={"id": "tr-2"})
        return httpx.Response(200, json={"status": "error", "error": "bad audio"})

    provider = AssemblyAIProvider(poll_interval=0)

    async with _client(handler) as client:
        with pytest.raises(ProviderCallFailed, match="Transcription failed: bad audio"):
            await provider.call(make_account("assemblyai"), TranscriptionRequest(audio=b"x"), client)


@pytest.mark.asyncio
async def test_assemblyai_poll_gives_up() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v2/upload":
            return httpx.Response(200, json={"upload_url": "u"})
        if request.method == "POST":
            return httpx.Response(200, json={"id": "tr-3"})
        return httpx.Response(200, json={"status": "processing"})

    provider = AssemblyAIProvider(poll_interval=0, max_poll_attempts=3)

    async with _client(handler) as client:
        with pytest.raises(ProviderCallFailed, match="Transcription timeout"):
            await provider.call(make_account("assemblyai"), TranscriptionRequest(audio=b"x"), client)


@pytest.mark.asyncio
async def test_speechmatics_job_lifecycle() -> None:
    submitted = {}

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["authorization"] == "Bearer sm-key"
        path = request.url.path
        if path == "/v2/jobs" and request.method == "POST":
            submitted["body"] = request.content
            return httpx.Response(201, json={"id": "job-9"})
        if path == "/v2/jobs/job-9":
            return httpx.Response(200, json={"job": {"status": "done"}})
        if path == "/v2/jobs/job-9/transcript":
            assert request.url.params["format"] == "json-v2"
            return httpx.Response(
                200,
                json={
                    "metadata": {"language": "bn"},
                    "results": [
                        {"alternatives": [{"content": "আমি"}]},
                        {"alternatives": [{"content": "ভাত"}]},
                    ],
                },
            )
        return httpx.Response(404)

    provider = SpeechmaticsProvider(poll_interval=0)
    account = make_account("speechmatics", credential="sm-key")

    async with _client(handler) as client:
        response = await provider.call(
            account, TranscriptionRequest(audio=b"\x00" * 32001, filename="v.ogg"), client
        )

    assert b'"operating_point": "standard"' in submitted["body"]
    assert b'filename="v.ogg"' in submitted["body"]
    assert response.data["text"] == "আমি ভাত"
    assert response.data["language"] == "bn"
    assert response.quantity == 3


@pytest.mark.asyncio
async def test_speechmatics_rejected_job() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(201, json={"id": "job-1"})
        return httpx.Response(
            200, json={"job": {"status": "rejected", "errors": [{"message": "unsupported"}]}}
        )

    provider = SpeechmaticsProvider(poll_interval=0)

    async with _client(handler) as client:
        with pytest.raises(ProviderCallFailed, match="unsupported"):
            await provider.call(
                make_account("speechmatics"), TranscriptionRequest(audio=b"x"), client
            )


@pytest.mark.asyncio
async def test_elevenlabs_text_to_speech() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["xi-api-key"] == "el-key"
        assert request.url.path == "/v1/text-to-speech/pNInz6obpgDQGcFmaJgB"
        body = json.loads(request.content)
        assert body["model_id"] == "eleven_multilingual_v2"
        return httpx.Response(200, content=b"ID3-mp3-bytes")

    provider = ElevenLabsProvider()
    account = make_account("elevenlabs", credential="el-key")

    async with _client(handler) as client:
        response = await provider.call(account, "Hello there", client)

    assert response.data == b"ID3-mp3-bytes"
    assert response.quantity == len("Hello there")


@pytest.mark.asyncio
async def test_clarifai_parses_fenced_json(monkeypatch: pytest.MonkeyPatch) -> None:
    captured = {}

    async def fake_acompletion(**kwargs):
        captured.update(kwargs)
        content = '```json\n{"valid": true, "transactions": [{"amount": -50}]}\n```'
        return SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=content))]
        )

    monkeypatch.setattr("litellm.acompletion", fake_acompletion)
    account = make_account("clarifai", credential="pat-key")
    request = transaction_parse_request("bazar 50 tk", [{"name": "Groceries", "type": "expense"}])

    async with _client(lambda r: httpx.Response(404)) as client:
        response = await ClarifaiProvider().call(account, request, client)

    assert response.data == {"valid": True, "transactions": [{"amount": -50}]}
    assert captured["model"] == "openai/https://clarifai.com/openai/chat-completion/models/gpt-oss-120b"
    assert captured["api_key"] == "pat-key"
    assert captured["api_base"] == "https://api.clarifai.com/v2/ext/openai/v1"
    assert '"Groceries" (expense)' in captured["messages"][1]["content"]


@pytest.mark.asyncio
async def test_clarifai_empty_answer(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_acompletion(**kwargs):
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=""))])

    monkeypatch.setattr("litellm.acompletion", fake_acompletion)

    async with _client(lambda r: httpx.Response(404)) as client:
        with pytest.raises(ProviderCallFailed, match="No response from AI"):
            await ClarifaiProvider().call(
                make_account("clarifai"), transaction_parse_request("hi"), client
            )


def test_parse_json_answer_rejects_prose() -> None:
    with pytest.raises(ProviderCallFailed, match="invalid JSON"):
        parse_json_answer("Sure! Here is your answer.")


def test_model_url_prefers_explicit_setting() -> None:
    account = make_account("clarifai", settings={"model_url": "https://clarifai.com/x/y/models/z"})

    assert model_url_for(account) == "https://clarifai.com/x/y/models/z"
