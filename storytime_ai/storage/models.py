"""
Data models for storage layer.

Defines the request log and moderation records.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

TEXT = "text"
IMAGE = "image"


@dataclass(frozen=True)
class UsageLogEntry:
    """Immutable record of one external AI call.
    
    Append-only entries that form the billing ledger. Text calls carry token
    counts, image calls carry image counts; both carry ``total_cost``.
    Once written, these records must never be modified.
    """
    id: str
    created_at: datetime
    item_type: str
    type: str = TEXT
    user_id: Optional[str] = None
    profile_id: Optional[str] = None
    book_id: Optional[str] = None
    chapter_id: Optional[str] = None
    request: Optional[str] = None
    response: Optional[str] = None
    response_status_code: Optional[int] = None
    response_time: Optional[float] = None
    open_ai_id: Optional[str] = None
    model: Optional[str] = None
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None
    cost_per_token: Optional[float] = None
    total_cost: Optional[float] = None
    input_images_count: Optional[int] = None
    output_images_count: Optional[int] = None
    cost_per_input_image: Optional[float] = None
    cost_per_output_image: Optional[float] = None


@dataclass(frozen=True)
class ModerationRecord:
    """Immutable record of one moderation check."""
    id: str
    created_at: datetime
    input: str
    response: str
    flagged: bool
    categories: str
    category_scores: str
    model: str
    user_id: Optional[str] = None
    profile_id: Optional[str] = None
    moderation_id: Optional[str] = None
    source: Optional[str] = None
