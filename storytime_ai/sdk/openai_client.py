"""
OpenAI API clients.

Covers OpenAI itself and OpenAI-compatible local servers (Nemotron3). Both go
through the official ``openai`` SDK with its raw-response accessor so the
exact JSON body and status code can be recorded for usage accounting.
"""

import json
import logging
import time
from typing import Any, Dict, List, Optional, Tuple

import openai
from openai import OpenAI

from ..config.loader import ProviderConfig
from ..core.errors import HttpStatusError, TransportError
from ..core.outcome import GenerationResult
from .base import ApiClient, Settings

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4.1"
ALLOWED_MODELS = ("gpt-4.1", "gpt-5.1", "gpt-4o-mini", "gpt-4.1-mini")
IMAGE_SIZE = "512x512"


class OpenAiApiClient(ApiClient):
    """OpenAI chat, legacy completion and image client.

    ``set_model`` only accepts vetted model names; anything else is clamped
    to ``DEFAULT_MODEL`` so an unexpected string can never reach billing.
    """

    provider_name = "openai"

    def __init__(self, config: ProviderConfig, client: Optional[OpenAI] = None, clock=time.monotonic):
        super().__init__(config, clock=clock)
        self._client = client
        self.set_model(config.model)

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI(
                api_key=self.config.api_key or "",
                base_url=self.config.base_url,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._client

    def set_model(self, model: str) -> None:
        if model in ALLOWED_MODELS:
            self.model = model
        else:
            if model:
                logger.warning("model=%s not allowed, falling back to %s", model, DEFAULT_MODEL)
            self.model = DEFAULT_MODEL

    def chat(self, messages: List[Dict[str, str]]) -> Optional[Dict[str, Any]]:
        settings: Settings = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
        }
        response_format = self._response_format_payload()
        if response_format:
            settings["response_format"] = response_format

        return self._execute(
            "chat", self._url("/chat/completions"), settings,
            lambda body: self._call(self.client.chat.completions.with_raw_response.create, body),
        )

    def completion(self, prompt: str) -> Optional[Dict[str, Any]]:
        settings: Settings = {
            "model": self.model,
            "prompt": prompt,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        return self._execute(
            "completion", self._url("/completions"), settings,
            lambda body: self._call(self.client.completions.with_raw_response.create, body),
        )

    def image(self, prompt: str) -> Optional[Dict[str, Any]]:
        settings: Settings = {"size": IMAGE_SIZE, "prompt": prompt}
        return self._execute(
            "image", self._url("/images/generations"), settings,
            lambda body: self._call(self.client.images.with_raw_response.generate, body),
        )

    def _url(self, path: str) -> str:
        return self.config.base_url.rstrip("/") + path

    @staticmethod
    def _call(create, body: Settings) -> Tuple[Dict[str, Any], int]:
        """Invoke an SDK raw-response method and classify its failures."""
        try:
            raw = create(**body)
        except openai.APIStatusError as e:
            raise HttpStatusError(e.response.text, e.status_code)
        except openai.APIConnectionError as e:
            raise TransportError(str(e))

        try:
            payload = json.loads(raw.text) if raw.text else {}
        except ValueError as e:
            raise TransportError(f"Invalid JSON response: {e}")
        if not isinstance(payload, dict):
            raise TransportError(f"Invalid JSON response: expected an object, got {type(payload).__name__}")
        return payload, raw.status_code


class Nemotron3ApiClient(OpenAiApiClient):
    """Client for a local OpenAI-compatible Nemotron3 server.

    Any model name is accepted, chat requests also carry ``max_tokens`` and
    image generation is not available.
    """

    provider_name = "nemotron3"

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI(
                api_key=self.config.api_key or "sk-no-key-required",
                base_url=self.config.base_url,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._client

    def set_model(self, model: str) -> None:
        self.model = model

    def chat(self, messages: List[Dict[str, str]]) -> Optional[Dict[str, Any]]:
        settings: Settings = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        response_format = self._response_format_payload()
        if response_format:
            settings["response_format"] = response_format

        return self._execute(
            "chat", self._url("/chat/completions"), settings,
            lambda body: self._call(self.client.chat.completions.with_raw_response.create, body),
        )

    def image(self, prompt: str) -> Optional[Dict[str, Any]]:
        logger.warning("nemotron3 image generation requested but not supported")
        self._request = {"prompt": prompt}
        self._start_time = self._end_time = None
        return self._record(GenerationResult.failure(
            "Image generation is not supported by Nemotron3", 501, 0.0,
        ))
