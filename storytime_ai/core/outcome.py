"""
Normalized results of provider calls.

GenerationResult is what a provider client produces for one outbound call;
ChatOutcome is the vendor-agnostic contract every chat service returns.
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class GenerationResult:
    """Success/failure result of one outbound provider call.

    Exactly one of ``response`` and ``error`` is set.
    """
    response: Optional[Dict[str, Any]]
    status_code: Optional[int]
    response_time: float
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.response is not None

    @classmethod
    def success(cls, response: Dict[str, Any], status_code: int, response_time: float) -> "GenerationResult":
        return cls(response=response, status_code=status_code, response_time=response_time)

    @classmethod
    def failure(cls, error: str, status_code: int, response_time: float) -> "GenerationResult":
        return cls(response=None, status_code=status_code, response_time=response_time, error=error)


@dataclass(frozen=True)
class ChatOutcome:
    """Vendor-agnostic outcome of one chat or completion call.

    Failed calls carry an ``error`` string and zeroed numeric fields, so
    callers persist failures the same way as successes.
    """
    completion: str
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    total_cost: float
    model: str
    cost_per_token: float
    id: Optional[str] = None
    error: Optional[str] = None
    response: Optional[Dict[str, Any]] = None
    thinking: Optional[str] = None

    @classmethod
    def failed(cls, model: str, error: Optional[str], id: Optional[str] = None) -> "ChatOutcome":
        """Build the zeroed outcome of a failed call."""
        return cls(
            completion="",
            prompt_tokens=0,
            completion_tokens=0,
            total_tokens=0,
            total_cost=0.0,
            model=model,
            cost_per_token=0.0,
            id=id,
            error=error or "Unknown error",
        )

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        """Return the outcome as a plain dict (the shape stored in request logs)."""
        data = asdict(self)
        if data["thinking"] is None:
            del data["thinking"]
        if data["error"] is None:
            del data["error"]
        return data


@dataclass(frozen=True)
class ImageResult:
    """Outcome of one image generation call."""
    url: Optional[str]
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {"url": self.url, "error": self.error}
