"""
Base provider API client.

One instance issues one HTTP request per call and remembers the request,
raw response, status code, elapsed time and error of the last call. Vendor
subclasses only build the request settings and perform the transport; the
bookkeeping and error classification live here.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..config.loader import ProviderConfig
from ..core.errors import ProviderApplicationError, ProviderCallError
from ..core.outcome import GenerationResult

logger = logging.getLogger(__name__)

Settings = Dict[str, Any]
Transport = Callable[[Settings], Tuple[Dict[str, Any], int]]

TEXT_FORMAT = "text"


def extract_error_message(error: Any) -> str:
    """Read the message of an ``error`` payload embedded in a 2xx body."""
    if isinstance(error, dict):
        return error.get("message") or "Unknown error"
    if isinstance(error, str) and error:
        return error
    return "Unknown error"


class ApiClient:
    """Shared contract of every vendor API client.

    ``chat`` and ``completion`` return the raw vendor payload, or None when
    the call failed; the failure is then described by ``error`` and
    ``status_code``. Nothing is raised for transport, HTTP or application
    failures.
    """

    provider_name = "base"

    def __init__(self, config: ProviderConfig, clock: Callable[[], float] = time.monotonic):
        self.config = config
        self.model = config.model
        self.temperature = config.temperature
        self.max_tokens = config.max_tokens
        self.timeout = config.timeout
        self.response_format = TEXT_FORMAT
        self._clock = clock

        self._request: Optional[Settings] = None
        self._response: Optional[Dict[str, Any]] = None
        self._status_code: Optional[int] = None
        self._error: Optional[str] = None
        self._start_time: Optional[float] = None
        self._end_time: Optional[float] = None
        self._last_result: Optional[GenerationResult] = None

    def chat(self, messages: List[Dict[str, str]]) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def completion(self, prompt: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def set_model(self, model: str) -> None:
        self.model = model

    def set_temperature(self, temperature: float) -> float:
        self.temperature = temperature
        return self.temperature

    def set_max_tokens(self, max_tokens: int) -> None:
        self.max_tokens = max_tokens

    def set_response_format(self, response_format: str = TEXT_FORMAT) -> None:
        self.response_format = response_format or TEXT_FORMAT

    @property
    def request(self) -> Optional[Settings]:
        return self._request

    @property
    def response(self) -> Optional[Dict[str, Any]]:
        return self._response

    @property
    def status_code(self) -> Optional[int]:
        return self._status_code

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def last_result(self) -> Optional[GenerationResult]:
        return self._last_result

    @property
    def response_time(self) -> float:
        """Seconds between dispatch and completion of the last call."""
        if self._start_time is None or self._end_time is None:
            return 0.0
        return self._end_time - self._start_time

    def _response_format_payload(self) -> Optional[Dict[str, str]]:
        if self.response_format == TEXT_FORMAT:
            return None
        return {"type": self.response_format}

    def _execute(self, kind: str, url: str, settings: Settings, send: Transport) -> Optional[Dict[str, Any]]:
        """Run one call and record its outcome.

        Args:
            kind: Call type used in log lines ("chat", "completion", "image")
            url: Target URL, logged only
            settings: Request body sent to the vendor
            send: Performs the transport; returns (payload, status code) or
                raises a ProviderCallError subclass

        Returns:
            Raw payload on success, None on any failure
        """
        self._request = settings
        self._response = None
        self._error = None
        self._status_code = None
        self._end_time = None

        logger.info(
            "%s %s request url=%s model=%s temperature=%s has_api_key=%s %s",
            self.provider_name, kind, url, settings.get("model", self.model),
            settings.get("temperature"), bool(self.config.api_key), _size_hint(settings),
        )
        logger.debug("%s %s request body=%s", self.provider_name, kind, settings)

        self._start_time = self._clock()
        try:
            payload, status_code = send(settings)
        except ProviderCallError as e:
            self._end_time = self._clock()
            logger.error(
                "%s %s failed status=%s error=%s model=%s response_time=%.2fs",
                self.provider_name, kind, e.status_code, e, self.model, self.response_time,
            )
            return self._record(GenerationResult.failure(str(e), e.status_code, self.response_time))
        self._end_time = self._clock()

        if isinstance(payload, dict) and payload.get("error") is not None:
            failure = ProviderApplicationError(extract_error_message(payload["error"]))
            logger.error(
                "%s %s error response error=%s model=%s response_time=%.2fs",
                self.provider_name, kind, failure, self.model, self.response_time,
            )
            return self._record(GenerationResult.failure(str(failure), failure.status_code, self.response_time))

        if not isinstance(payload, dict):
            failure = ProviderApplicationError(f"Unexpected response body: {type(payload).__name__}")
            logger.error(
                "%s %s unexpected response error=%s model=%s response_time=%.2fs",
                self.provider_name, kind, failure, self.model, self.response_time,
            )
            return self._record(GenerationResult.failure(str(failure), failure.status_code, self.response_time))

        usage = payload.get("usage") or {}
        logger.info(
            "%s %s success model=%s status=%s response_time=%.2fs "
            "prompt_tokens=%s completion_tokens=%s total_tokens=%s",
            self.provider_name, kind, payload.get("model", self.model), status_code,
            self.response_time, usage.get("prompt_tokens", 0),
            usage.get("completion_tokens", 0), usage.get("total_tokens", 0),
        )
        logger.debug("%s %s response body=%s", self.provider_name, kind, payload)
        return self._record(GenerationResult.success(payload, status_code, self.response_time))

    def _record(self, result: GenerationResult) -> Optional[Dict[str, Any]]:
        self._last_result = result
        self._status_code = result.status_code
        self._error = result.error
        self._response = result.response
        return result.response


def _size_hint(settings: Settings) -> str:
    if "messages" in settings:
        return f"messages={len(settings['messages'])}"
    if "prompt" in settings:
        return f"prompt_length={len(settings['prompt'])}"
    return ""
