import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from ..config import ASSEMBLYAI_COST_PER_SECOND
from ..db_models import Account
from ..error_handler import ProviderCallFailed
from ..types import ProviderResponse
from .provider_interface import ProviderInterface

lib_logger = logging.getLogger("credential_pool")

API_BASE = "https://api.assemblyai.com/v2"


@dataclass
class TranscriptionRequest:
    audio: bytes
    filename: str = "audio"
    language: Optional[str] = None


def calculate_cost(audio_seconds: float) -> float:
    return audio_seconds * ASSEMBLYAI_COST_PER_SECOND


class AssemblyAIProvider(ProviderInterface):
    def __init__(self, poll_interval: float = 1.0, max_poll_attempts: int = 60):
        self.poll_interval = poll_interval
        self.max_poll_attempts = max_poll_attempts

    async def validate_credential(self, credential: str, client: httpx.AsyncClient) -> None:
        response = await client.get(
            f"{API_BASE}/transcript",
            headers={"authorization": credential},
            params={"limit": 1},
        )
        response.raise_for_status()

    async def _upload(self, audio: bytes, credential: str, client: httpx.AsyncClient) -> str:
        response = await client.post(
            f"{API_BASE}/upload",
            headers={"authorization": credential},
            content=audio,
        )
        response.raise_for_status()
        return response.json()["upload_url"]

    async def _create_transcript(
        self, audio_url: str, language: str, credential: str, client: httpx.AsyncClient
    ) -> str:
        response = await client.post(
            f"{API_BASE}/transcript",
            headers={"authorization": credential},
            json={
                "audio_url": audio_url,
                "language_code": language,
                "punctuate": True,
                "format_text": True,
            },
        )
        response.raise_for_status()
        return response.json()["id"]

    async def _poll(
        self, transcript_id: str, credential: str, client: httpx.AsyncClient
    ) -> Dict[str, Any]:
        for _ in range(self.max_poll_attempts):
            response = await client.get(
                f"{API_BASE}/transcript/{transcript_id}",
                headers={"authorization": credential},
            )
            response.raise_for_status()
            body = response.json()
            status = body.get("status")
            if status == "completed":
                return body
            if status == "error":
                raise ProviderCallFailed(f"Transcription failed: {body.get('error')}")
            await asyncio.sleep(self.poll_interval)
        raise ProviderCallFailed("Transcription timeout")

    async def call(
        self, account: Account, payload: TranscriptionRequest, client: httpx.AsyncClient
    ) -> ProviderResponse:
        language = payload.language or (account.settings or {}).get("language_code", "en")

        audio_url = await self._upload(payload.audio, account.credential, client)
        transcript_id = await self._create_transcript(
            audio_url, language, account.credential, client
        )
        body = await self._poll(transcript_id, account.credential, client)

        audio_seconds = float(body.get("audio_duration") or 0)
        cost = calculate_cost(audio_seconds)
        lib_logger.info(
            f"AssemblyAI transcription completed on '{account.name}': "
            f"{audio_seconds}s, cost ${cost:.4f}"
        )
        return ProviderResponse(
            data={
                "text": body.get("text") or "",
                "audio_seconds": audio_seconds,
                "cost": cost,
                "language": body.get("language_code") or language,
            },
            quantity=audio_seconds,
            cost=cost,
        )
