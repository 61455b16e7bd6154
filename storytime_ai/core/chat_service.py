"""
Chat services.

A chat service owns one conversation transcript, drives its provider API
client and turns whatever the vendor returned into a ChatOutcome. Every
vendor implements the same surface, so callers can switch providers without
code changes. ``chat`` and ``complete`` never raise: failures come back as
an outcome with ``error`` set and zeroed numbers.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from ..config.loader import ProviderConfig
from ..sdk.base import ApiClient
from .accounting import UsageAccounting
from .jobs import Dispatcher, InlineDispatcher, TrackRequestJob
from .outcome import ChatOutcome
from .pricing import calculate_text_cost
from .token_counter import TokenUsage
from .transcript import ASSISTANT, SYSTEM, USER, Transcript

logger = logging.getLogger(__name__)

THINK_END_TAG = "</think>"


class ChatService:
    """Conversation driver shared by all vendors.

    Subclasses only say where the completion text lives in a response.
    """

    provider_name = "base"

    def __init__(
        self,
        client: ApiClient,
        config: ProviderConfig,
        accounting: Optional[UsageAccounting] = None,
        dispatcher: Optional[Dispatcher] = None,
    ):
        self.client = client
        self.config = config
        self.accounting = accounting
        self.dispatcher = dispatcher or InlineDispatcher()
        self.transcript = Transcript()
        self._outcome: Optional[ChatOutcome] = None

    # transcript

    def add_user_message(self, message: Optional[str] = None) -> None:
        self.transcript.add(USER, message)

    def add_assistant_message(self, message: Optional[str] = None) -> None:
        self.transcript.add(ASSISTANT, message)

    def add_system_message(self, message: Optional[str] = None) -> None:
        self.transcript.add(SYSTEM, message)

    def set_context(self, message: Optional[str] = None) -> None:
        """Replace the system context sent first with every request."""
        self.transcript.set_context(message)

    def reset_messages(self) -> None:
        self.transcript.reset()

    @property
    def messages(self) -> List[Dict[str, str]]:
        return self.transcript.to_messages()

    # parameters

    def set_model(self, model: str) -> None:
        self.client.set_model(model)

    def set_temperature(self, temperature: float) -> float:
        return self.client.set_temperature(temperature)

    def set_max_tokens(self, max_tokens: int) -> None:
        self.client.set_max_tokens(max_tokens)

    def set_response_format(self, response_format: str = "text") -> None:
        self.client.set_response_format(response_format)

    # calls

    def chat(self) -> ChatOutcome:
        """Send the transcript and return the normalized outcome."""
        response = self.client.chat(self.transcript.to_messages())
        return self._finish(response, self._chat_content)

    def complete(self, prompt: str) -> ChatOutcome:
        """Run a single-prompt completion and return the normalized outcome."""
        response = self.client.completion(prompt)
        return self._finish(response, self._completion_content)

    def _finish(self, response: Optional[Dict[str, Any]], extract) -> ChatOutcome:
        if response is None:
            outcome = ChatOutcome.failed(self.client.model, self.client.error, id=self.id)
        else:
            try:
                outcome = self._build_outcome(response, extract(response))
            except (KeyError, IndexError, TypeError, ValueError) as e:
                logger.error("%s malformed response error=%s", self.provider_name, e)
                outcome = ChatOutcome.failed(self.client.model, f"Malformed response: {e}", id=self.id)
        self._outcome = outcome
        return outcome

    def _build_outcome(self, response: Dict[str, Any], content: str, thinking: Optional[str] = None) -> ChatOutcome:
        usage = TokenUsage.from_response(response)
        return ChatOutcome(
            completion=content,
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            total_tokens=usage.total_tokens,
            total_cost=calculate_text_cost(usage, self.config.cost_per_1k_tokens),
            model=response.get("model") or self.client.model,
            cost_per_token=self.config.cost_per_1k_tokens,
            id=response.get("id"),
            response=response,
            thinking=thinking,
        )

    def _chat_content(self, response: Dict[str, Any]) -> str:
        return response["choices"][0]["message"]["content"] or ""

    def _completion_content(self, response: Dict[str, Any]) -> str:
        return response["choices"][0]["text"] or ""

    # request log

    def track_request_log(
        self,
        book_id: Optional[str],
        chapter_id: Optional[str],
        user_id: Optional[str],
        item_type: str,
        response: Union[ChatOutcome, Dict[str, Any]],
        profile_id: Optional[str] = None,
    ) -> None:
        """Queue the request log entry of the last call on the tracking queue."""
        if self.accounting is None:
            logger.warning("%s request log skipped, no accounting configured item_type=%s", self.provider_name, item_type)
            return
        if isinstance(response, ChatOutcome):
            response = response.to_dict()

        self.dispatcher.dispatch(TrackRequestJob(
            self.accounting,
            book_id=book_id,
            chapter_id=chapter_id,
            user_id=user_id,
            item_type=item_type,
            request=self.client.request,
            response=response,
            raw_response=self.client.response,
            response_status_code=self._status_code(),
            response_time=self.client.response_time,
            profile_id=profile_id,
        ))

    # accessors of the last outcome

    @property
    def last_outcome(self) -> Optional[ChatOutcome]:
        return self._outcome

    @property
    def completion(self) -> str:
        return self._outcome.completion if self._outcome else ""

    @property
    def prompt_tokens(self) -> int:
        return self._outcome.prompt_tokens if self._outcome else 0

    @property
    def completion_tokens(self) -> int:
        return self._outcome.completion_tokens if self._outcome else 0

    @property
    def total_tokens(self) -> int:
        return self._outcome.total_tokens if self._outcome else 0

    @property
    def total_cost(self) -> float:
        return self._outcome.total_cost if self._outcome else 0.0

    @property
    def model(self) -> str:
        return self._outcome.model if self._outcome else self.client.model

    @property
    def cost_per_token(self) -> float:
        return self.config.cost_per_1k_tokens

    @property
    def id(self) -> Optional[str]:
        return self._outcome.id if self._outcome else None

    @property
    def error(self) -> Optional[str]:
        if self._outcome is not None and self._outcome.error:
            return self._outcome.error
        return self.client.error

    def _status_code(self) -> int:
        """Status of the last call; 500 when a 2xx response could not be read."""
        if self.client.error is None and self._outcome is not None and self._outcome.error:
            return 500
        return self.client.status_code or 500


class OpenAiChatService(ChatService):
    provider_name = "openai"


class LlamaChatService(ChatService):
    """Chat over a Llama server; the client already returns the OpenAI shape."""

    provider_name = "llama"


class Nemotron3ChatService(ChatService):
    """Chat with a reasoning model that prefixes its answer with ``...</think>``."""

    provider_name = "nemotron3"

    def chat(self) -> ChatOutcome:
        response = self.client.chat(self.transcript.to_messages())
        if response is None:
            return self._finish(None, self._chat_content)
        try:
            thinking, content = split_thinking(self._chat_content(response))
            outcome = self._build_outcome(response, content, thinking=thinking)
        except (KeyError, IndexError, TypeError, ValueError) as e:
            logger.error("%s malformed response error=%s", self.provider_name, e)
            outcome = ChatOutcome.failed(self.client.model, f"Malformed response: {e}", id=self.id)
        self._outcome = outcome
        return outcome

    @property
    def thinking(self) -> Optional[str]:
        return self._outcome.thinking if self._outcome else None


def split_thinking(content: str):
    """Split model output on the first ``</think>`` into (thinking, answer).

    Returns (None, content) when there is no closing tag.
    """
    if THINK_END_TAG not in content:
        return None, content.strip()
    thinking, answer = content.split(THINK_END_TAG, 1)
    thinking = thinking.replace("<think>", "", 1).strip()
    return thinking or None, answer.strip()
