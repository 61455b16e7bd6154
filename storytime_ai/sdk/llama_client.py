"""
Llama-compatible text generation client.

Talks to a self-hosted generation server that takes a single prompt string.
Chat transcripts are flattened into role-tagged prompt blocks and the
server's reply is normalized into the OpenAI response shape so chat services
can read it the same way.
"""

import time
import uuid
from typing import Any, Dict, List, Optional, Tuple

import requests

from ..config.loader import ProviderConfig
from ..core.errors import HttpStatusError, TransportError
from ..core.token_counter import estimate_tokens
from .base import ApiClient, Settings

JSON_FORMAT = "json_object"


def messages_to_prompt(messages: List[Dict[str, str]]) -> str:
    """Flatten chat messages into ``<|role|>`` blocks ending with an open assistant turn."""
    prompt = ""
    for message in messages:
        role = message.get("role") or "user"
        if role not in ("system", "assistant"):
            role = "user"
        prompt += f"<|{role}|>\n{message.get('content', '')}\n"
    return prompt + "<|assistant|>\n"


class LlamaApiClient(ApiClient):
    """Client for the Llama generation server."""

    provider_name = "llama"

    def __init__(self, config: ProviderConfig, session: Optional[requests.Session] = None, clock=time.monotonic):
        super().__init__(config, clock=clock)
        self.endpoint = config.endpoint or "/generate"
        self._session = session or requests.Session()

    @property
    def url(self) -> str:
        return self.config.base_url.rstrip("/") + "/" + self.endpoint.lstrip("/")

    def chat(self, messages: List[Dict[str, str]]) -> Optional[Dict[str, Any]]:
        return self._generate(messages_to_prompt(messages), "chat")

    def completion(self, prompt: str) -> Optional[Dict[str, Any]]:
        return self._generate(prompt, "completion")

    def _generate(self, prompt: str, kind: str) -> Optional[Dict[str, Any]]:
        settings: Settings = {
            "prompt": prompt,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "model": self.model,
        }
        # the server only understands the JSON mode flag
        if self.response_format == JSON_FORMAT:
            settings["response_format"] = {"type": JSON_FORMAT}

        return self._execute(kind, self.url, settings, lambda body: self._post(body, kind))

    def _post(self, body: Settings, kind: str) -> Tuple[Dict[str, Any], int]:
        headers = {"Accept": "application/json"}
        if self.config.token:
            headers["Authorization"] = f"Bearer {self.config.token}"

        try:
            response = self._session.post(self.url, json=body, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportError(str(e))

        if not response.ok:
            raise HttpStatusError(response.text, response.status_code)

        try:
            raw = response.json()
        except ValueError as e:
            raise TransportError(f"Invalid JSON response: {e}")

        if not isinstance(raw, dict):
            raw = {"response": raw if isinstance(raw, str) else ""}
        if raw.get("error") is not None:
            return raw, response.status_code
        return self.normalize_response(raw, kind, body["prompt"]), response.status_code

    def normalize_response(self, raw: Dict[str, Any], kind: str, prompt: str) -> Dict[str, Any]:
        """Convert a server reply into the OpenAI chat or text completion shape.

        Token counts the server does not report are estimated from text
        length, and a missing id is replaced by ``llama-<uuid4>``.
        """
        content = raw.get("response") or raw.get("generated_text") or raw.get("text") or ""

        prompt_tokens = raw.get("prompt_tokens")
        if prompt_tokens is None:
            prompt_tokens = estimate_tokens(prompt)
        completion_tokens = raw.get("completion_tokens")
        if completion_tokens is None:
            completion_tokens = estimate_tokens(content)
        total_tokens = raw.get("total_tokens")
        if total_tokens is None:
            total_tokens = prompt_tokens + completion_tokens

        finish_reason = raw.get("finish_reason") or "stop"
        if kind == "chat":
            obj = "chat.completion"
            choice = {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": finish_reason,
            }
        else:
            obj = "text_completion"
            choice = {"text": content, "index": 0, "finish_reason": finish_reason}

        return {
            "id": raw.get("id") or f"llama-{uuid.uuid4()}",
            "object": obj,
            "created": raw.get("created") or int(time.time()),
            "model": raw.get("model") or self.model,
            "choices": [choice],
            "usage": {
                "prompt_tokens": prompt_tokens,
                "completion_tokens": completion_tokens,
                "total_tokens": total_tokens,
            },
        }
