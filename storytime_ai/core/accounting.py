"""
Usage accounting.

Prices AI calls and appends them to the request log ledger. Text calls are
priced by the chat service and only persisted here; image calls are priced
here from the image pricing table.
"""

import json
import logging
import uuid
from dataclasses import fields
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Union

from ..storage.models import IMAGE, TEXT, UsageLogEntry
from ..storage.repository import UsageRepository
from .outcome import ChatOutcome
from .pricing import IMAGE_PRICING_TABLE, ImagePricingTable, calculate_image_cost

logger = logging.getLogger(__name__)

STORABLE_FIELDS = frozenset(f.name for f in fields(UsageLogEntry)) - {"id", "created_at"}
OPTIONAL_ID_FIELDS = ("user_id", "profile_id", "book_id", "chapter_id")


class UsageAccounting:
    """Computes costs and stores UsageLogEntry records."""

    def __init__(
        self,
        repository: UsageRepository,
        image_pricing: ImagePricingTable = IMAGE_PRICING_TABLE,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.repository = repository
        self.image_pricing = image_pricing
        self._clock = clock

    def store(self, data: Dict[str, Any]) -> UsageLogEntry:
        """Append one request log entry.

        Args:
            data: Entry fields; empty optional ids are stored as None and
                non-string request/response values are JSON encoded

        Returns:
            The stored entry

        Raises:
            ValueError: If a field is unknown or item_type is missing
        """
        unknown = set(data) - STORABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown request log fields: {sorted(unknown)}")
        if not data.get("item_type"):
            raise ValueError("item_type is required")

        values = dict(data)
        for key in OPTIONAL_ID_FIELDS:
            if not values.get(key):
                values[key] = None
        for key in ("request", "response"):
            if values.get(key) is not None and not isinstance(values[key], str):
                values[key] = json.dumps(values[key], default=str)

        entry = UsageLogEntry(id=str(uuid.uuid4()), created_at=self._clock(), **values)
        self.repository.store(entry)
        logger.debug(
            "stored request log id=%s type=%s item_type=%s status=%s total_cost=%s",
            entry.id, entry.type, entry.item_type, entry.response_status_code, entry.total_cost,
        )
        return entry

    def parse_response_for_store(self, outcome: Union[ChatOutcome, Dict[str, Any]]) -> Dict[str, Any]:
        """Map a chat outcome onto the text columns of the ledger."""
        if isinstance(outcome, ChatOutcome):
            outcome = outcome.to_dict()
        return {
            "type": TEXT,
            "open_ai_id": outcome.get("id"),
            "model": outcome.get("model") or None,
            "prompt_tokens": outcome.get("prompt_tokens"),
            "completion_tokens": outcome.get("completion_tokens"),
            "total_tokens": outcome.get("total_tokens"),
            "cost_per_token": outcome.get("cost_per_token"),
            "total_cost": outcome.get("total_cost"),
        }

    def parse_image_response_for_store(
        self,
        model: str,
        input_images_count: int,
        output_images_count: int,
    ) -> Dict[str, Any]:
        """Price an image call and map it onto the image columns of the ledger.

        Unknown models fall back to the default tier and never raise.
        """
        pricing = self.image_pricing.get_pricing(model)
        return {
            "type": IMAGE,
            "model": model,
            "input_images_count": input_images_count,
            "output_images_count": output_images_count,
            "cost_per_input_image": pricing.cost_per_input_image,
            "cost_per_output_image": pricing.cost_per_output_image,
            "total_cost": calculate_image_cost(pricing, input_images_count, output_images_count),
        }

    def usage_summary(self, user_id: Optional[str] = None, days: int = 30) -> Dict[str, Any]:
        """Totals and per item type breakdown for the usage report."""
        return {
            "stats": self.repository.get_usage_stats(user_id=user_id, days=days),
            "breakdown": self.repository.get_cost_breakdown(user_id=user_id, days=days),
        }
