"""
Error taxonomy for provider calls.

Provider clients classify failures with these types, but only the outermost
job or caller layer ever sees them raised. Chat services fold them into
``ChatOutcome.error``.
"""

from typing import Optional


class StorytimeAiError(Exception):
    """Base exception for all storytime_ai errors."""


class ConfigError(StorytimeAiError, ValueError):
    """Raised when AI configuration is missing or invalid."""


class UnknownProviderError(StorytimeAiError, ValueError):
    """Raised when a chat driver is requested for an unregistered provider."""

    def __init__(self, provider: str):
        super().__init__(f"Unsupported AI provider: {provider}")
        self.provider = provider


class ProviderCallError(StorytimeAiError):
    """A failed outbound call to an AI vendor.

    Attributes:
        status_code: Status code recorded for the failed call
    """

    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class TransportError(ProviderCallError):
    """Network level failure: timeout, refused connection, DNS, TLS."""

    def __init__(self, message: str):
        super().__init__(f"Request failed: {message}", status_code=500)


class HttpStatusError(ProviderCallError):
    """Vendor answered with a non-2xx status."""

    def __init__(self, body: str, status_code: int):
        super().__init__(body or "No response", status_code=status_code)


class ProviderApplicationError(ProviderCallError):
    """Vendor answered 2xx but the body carries an ``error`` payload."""

    def __init__(self, message: str):
        super().__init__(message or "Unknown error", status_code=500)


class ProviderError(ProviderCallError):
    """Raised by clients whose callers expect a payload, not a result (Stability)."""


class TimeoutExceeded(StorytimeAiError):
    """A polling loop or a job retry deadline ran out."""


class TranscriptionTimeout(TimeoutExceeded):
    """AWS Transcribe job did not finish within the poll budget."""
