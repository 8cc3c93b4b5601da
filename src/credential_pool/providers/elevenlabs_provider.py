import logging
from typing import Any, Dict, List

import httpx

from ..db_models import Account
from ..types import ProviderResponse
from .provider_interface import ProviderInterface

lib_logger = logging.getLogger("credential_pool")

API_BASE = "https://api.elevenlabs.io/v1"


class ElevenLabsProvider(ProviderInterface):
    """Text-to-speech. The payload is the text to speak."""

    def _headers(self, credential: str) -> Dict[str, str]:
        return {"xi-api-key": credential}

    async def validate_credential(self, credential: str, client: httpx.AsyncClient) -> None:
        response = await client.get(f"{API_BASE}/voices", headers=self._headers(credential))
        response.raise_for_status()

    async def list_voices(self, credential: str, client: httpx.AsyncClient) -> List[Dict[str, Any]]:
        response = await client.get(f"{API_BASE}/voices", headers=self._headers(credential))
        response.raise_for_status()
        return response.json().get("voices", [])

    async def call(self, account: Account, payload: str, client: httpx.AsyncClient) -> ProviderResponse:
        settings = account.settings or {}
        voice_id = settings.get("voice_id") or "pNInz6obpgDQGcFmaJgB"
        response = await client.post(
            f"{API_BASE}/text-to-speech/{voice_id}",
            headers=self._headers(account.credential),
            json={
                "text": payload,
                "model_id": settings.get("model_id") or "eleven_multilingual_v2",
                "voice_settings": {"stability": 0.5, "similarity_boost": 0.75},
            },
        )
        response.raise_for_status()

        characters = len(payload)
        lib_logger.info(f"ElevenLabs TTS completed on '{account.name}': {characters} chars")
        return ProviderResponse(data=response.content, quantity=characters, cost=0.0)
