from typing import Dict, Type

from ..types import Provider
from .assemblyai_provider import AssemblyAIProvider, TranscriptionRequest
from .clarifai_provider import ChatRequest, ClarifaiProvider, transaction_parse_request
from .elevenlabs_provider import ElevenLabsProvider
from .provider_interface import ProviderInterface
from .speechmatics_provider import SpeechmaticsProvider

PROVIDER_PLUGINS: Dict[Provider, Type[ProviderInterface]] = {
    Provider.ASSEMBLYAI: AssemblyAIProvider,
    Provider.CLARIFAI: ClarifaiProvider,
    Provider.SPEECHMATICS: SpeechmaticsProvider,
    Provider.ELEVENLABS: ElevenLabsProvider,
}

__all__ = [
    "PROVIDER_PLUGINS",
    "ProviderInterface",
    "AssemblyAIProvider",
    "ClarifaiProvider",
    "SpeechmaticsProvider",
    "ElevenLabsProvider",
    "TranscriptionRequest",
    "ChatRequest",
    "transaction_parse_request",
]
