"""
Token counting and usage tracking.

Reads token counters out of vendor payloads and estimates them where a
vendor does not report any.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class TokenUsage:
    """Token usage data for cost calculation.
    
    ``reported_total`` keeps the vendor's own total when it sent one; cost is
    always computed from prompt + completion.
    """
    prompt_tokens: int
    completion_tokens: int
    reported_total: Optional[int] = None
    
    @property
    def total_tokens(self) -> int:
        """Total tokens used, as reported by the vendor or prompt + completion."""
        if self.reported_total is not None:
            return self.reported_total
        return self.prompt_tokens + self.completion_tokens

    @property
    def billable_tokens(self) -> int:
        """Tokens that are priced (prompt + completion)."""
        return self.prompt_tokens + self.completion_tokens

    @classmethod
    def from_response(cls, response: Dict[str, Any]) -> "TokenUsage":
        """Read the OpenAI-shaped ``usage`` block of a response.
        
        Args:
            response: Raw vendor payload
            
        Returns:
            TokenUsage with zero for any missing counter
        """
        usage = response.get("usage") or {}
        return cls(
            prompt_tokens=int(usage.get("prompt_tokens") or 0),
            completion_tokens=int(usage.get("completion_tokens") or 0),
            reported_total=usage.get("total_tokens"),
        )


def estimate_tokens(text: str) -> int:
    """Rough token estimate: one token per four characters, rounded up."""
    return math.ceil(len(text) / 4)
