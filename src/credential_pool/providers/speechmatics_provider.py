import asyncio
import json
import logging
import math
from typing import Any, Dict

import httpx

from ..db_models import Account
from ..error_handler import ProviderCallFailed
from ..types import ProviderResponse
from .assemblyai_provider import TranscriptionRequest
from .provider_interface import ProviderInterface

lib_logger = logging.getLogger("credential_pool")

API_BASE = "https://asr.api.speechmatics.com/v2"

# Rough size-based estimate when the caller has no real duration: ~16 KB/s.
BYTES_PER_AUDIO_SECOND = 16000


def estimate_audio_seconds(audio: bytes) -> int:
    return math.ceil(len(audio) / BYTES_PER_AUDIO_SECOND)


def _join_transcript(transcript: Dict[str, Any]) -> str:
    words = []
    for result in transcript.get("results") or []:
        alternatives = result.get("alternatives") or []
        if alternatives and alternatives[0].get("content"):
            words.append(alternatives[0]["content"])
    return " ".join(words)


class SpeechmaticsProvider(ProviderInterface):
    def __init__(self, poll_interval: float = 2.0, max_poll_attempts: int = 60):
        self.poll_interval = poll_interval
        self.max_poll_attempts = max_poll_attempts

    def _headers(self, credential: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {credential}"}

    async def validate_credential(self, credential: str, client: httpx.AsyncClient) -> None:
        response = await client.get(
            f"{API_BASE}/jobs", headers=self._headers(credential), params={"limit": 1}
        )
        response.raise_for_status()

    async def _submit(
        self, account: Account, payload: TranscriptionRequest, client: httpx.AsyncClient
    ) -> str:
        settings = account.settings or {}
        config = {
            "type": "transcription",
            "transcription_config": {
                "language": payload.language or settings.get("language", "bn"),
                "operating_point": settings.get("operating_point", "standard"),
            },
        }
        response = await client.post(
            f"{API_BASE}/jobs",
            headers=self._headers(account.credential),
            files={"data_file": (payload.filename, payload.audio, "application/octet-stream")},
            data={"config": json.dumps(config)},
        )
        response.raise_for_status()
        return response.json()["id"]

    async def _poll(self, job_id: str, credential: str, client: httpx.AsyncClient) -> Dict[str, Any]:
        for _ in range(self.max_poll_attempts):
            response = await client.get(
                f"{API_BASE}/jobs/{job_id}", headers=self._headers(credential)
            )
            response.raise_for_status()
            job = response.json().get("job") or {}
            status = job.get("status")
            if status == "done":
                transcript = await client.get(
                    f"{API_BASE}/jobs/{job_id}/transcript",
                    headers=self._headers(credential),
                    params={"format": "json-v2"},
                )
                transcript.raise_for_status()
                return transcript.json()
            if status == "rejected":
                errors = job.get("errors") or [{}]
                raise ProviderCallFailed(errors[0].get("message") or "Job rejected")
            await asyncio.sleep(self.poll_interval)
        raise ProviderCallFailed("Transcription timeout")

    async def call(
        self, account: Account, payload: TranscriptionRequest, client: httpx.AsyncClient
    ) -> ProviderResponse:
        audio_seconds = estimate_audio_seconds(payload.audio)
        job_id = await self._submit(account, payload, client)
        transcript = await self._poll(job_id, account.credential, client)

        language = (transcript.get("metadata") or {}).get("language") or (
            account.settings or {}
        ).get("language")
        lib_logger.info(
            f"Speechmatics transcription completed on '{account.name}': {audio_seconds}s"
        )
        return ProviderResponse(
            data={
                "text": _join_transcript(transcript),
                "audio_seconds": audio_seconds,
                "language": language,
            },
            quantity=audio_seconds,
            cost=0.0,
        )
