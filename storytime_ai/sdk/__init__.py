"""
Provider API clients for storytime_ai.

One client per AI vendor; each records the request, raw response, status
code, timing and error of its last call.
"""

from .base import ApiClient
from .llama_client import LlamaApiClient
from .openai_client import Nemotron3ApiClient, OpenAiApiClient
from .replicate_client import ReplicateApiClient
from .stability_client import StabilityApiClient
from .transcribe_client import TranscribeClient, TranscriptionResult

__all__ = [
    "ApiClient",
    "LlamaApiClient",
    "Nemotron3ApiClient",
    "OpenAiApiClient",
    "ReplicateApiClient",
    "StabilityApiClient",
    "TranscribeClient",
    "TranscriptionResult",
]
