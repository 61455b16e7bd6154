"""
Content moderation through the OpenAI moderation endpoint.

Scores are compared against per-profile thresholds. The service fails open:
when moderation is disabled or the API call fails, content is allowed.
"""

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import openai
from openai import OpenAI

from ..config.loader import AiConfig
from ..storage.models import ModerationRecord
from ..storage.repository import UsageRepository

logger = logging.getLogger(__name__)

MODERATION_TIMEOUT = 30
DEFAULT_THRESHOLD = 0.5

CATEGORY_LABELS = {
    "sexual": "sexual content",
    "sexual/minors": "sexual content involving minors",
    "harassment": "harassment",
    "harassment/threatening": "threatening harassment",
    "hate": "hate speech",
    "hate/threatening": "threatening hate speech",
    "illicit": "illicit content",
    "illicit/violent": "illicit violent content",
    "self-harm": "self-harm content",
    "self-harm/intent": "self-harm intent",
    "self-harm/instructions": "self-harm instructions",
    "violence": "violence",
    "violence/graphic": "graphic violence",
}
MODERATION_CATEGORIES = tuple(CATEGORY_LABELS)


@dataclass(frozen=True)
class ModerationResult:
    """Outcome of one moderation check."""
    flagged: bool
    categories: Dict[str, bool] = field(default_factory=dict)
    category_scores: Dict[str, float] = field(default_factory=dict)
    moderation_id: Optional[str] = None
    model: Optional[str] = None
    record: Optional[ModerationRecord] = None

    def passed(self) -> bool:
        return not self.flagged

    def failed(self) -> bool:
        return self.flagged

    def flagged_categories(self) -> List[str]:
        return [category for category, value in self.categories.items() if value is True]

    def violation_message(self) -> str:
        """Human readable explanation of a flagged result."""
        flagged = self.flagged_categories()
        if not flagged:
            return "Content was flagged for violating our safety policy."
        labels = [CATEGORY_LABELS.get(category, category) for category in flagged]
        return f"Content violates our safety policy regarding: {', '.join(labels)}."


ALLOWED = ModerationResult(flagged=False)


class ModerationService:
    """Moderates user text and records every real check."""

    def __init__(
        self,
        config: AiConfig,
        client: Optional[OpenAI] = None,
        recorder: Optional[UsageRepository] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.config = config
        self.settings = config.moderation
        self._client = client
        self.recorder = recorder
        self._clock = clock
        self.last_response: Optional[Dict[str, Any]] = None

    @property
    def is_enabled(self) -> bool:
        return self.settings.enabled

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            provider = self.config.providers.get("openai")
            self._client = OpenAI(
                api_key=(provider.api_key if provider else None) or "",
                base_url=provider.base_url if provider else "https://api.openai.com/v1",
                timeout=MODERATION_TIMEOUT,
                max_retries=0,
            )
        return self._client

    def thresholds_for(self, context: Optional[Dict[str, Any]] = None) -> Dict[str, float]:
        """Profile thresholds when the context carries them, else the configured minimum."""
        if context and context.get("thresholds"):
            return dict(context["thresholds"])
        return {category: self.settings.min_threshold for category in MODERATION_CATEGORIES}

    def moderate(self, text: str, context: Optional[Dict[str, Any]] = None) -> ModerationResult:
        """Check text against the moderation model.

        Args:
            text: User supplied text
            context: Optional user_id, profile_id, source and thresholds

        Returns:
            ModerationResult; not flagged when disabled or on API failure
        """
        context = context or {}
        if not self.is_enabled:
            return ALLOWED

        response = self._call_api(text)
        if response is None:
            logger.warning("moderation call failed, allowing content input_length=%d", len(text))
            return ALLOWED
        self.last_response = response

        result = (response.get("results") or [{}])[0]
        categories = result.get("categories") or {}
        scores = result.get("category_scores") or {}
        thresholds = self.thresholds_for(context)

        above_threshold = [
            category for category in categories
            if scores.get(category, 0) >= thresholds.get(category, DEFAULT_THRESHOLD)
        ]
        vendor_flagged = bool(result.get("flagged")) or any(value is True for value in categories.values())
        flagged = bool(above_threshold) or vendor_flagged

        if vendor_flagged and not above_threshold:
            logger.info(
                "moderation flag below threshold source=%s profile_id=%s categories=%s",
                context.get("source", "unknown"), context.get("profile_id"),
                [category for category, value in categories.items() if value is True],
            )
        if flagged:
            logger.warning(
                "content flagged source=%s user_id=%s profile_id=%s categories=%s moderation_id=%s",
                context.get("source", "unknown"), context.get("user_id"), context.get("profile_id"),
                above_threshold, response.get("id"),
            )

        filtered = {
            category: score >= thresholds.get(category, DEFAULT_THRESHOLD) or categories.get(category) is True
            for category, score in scores.items()
        }
        model = response.get("model") or self.settings.model
        record = self._record(text, response, flagged, filtered, scores, model, context)

        return ModerationResult(
            flagged=flagged,
            categories=filtered,
            category_scores=scores,
            moderation_id=response.get("id"),
            model=model,
            record=record,
        )

    def _call_api(self, text: str) -> Optional[Dict[str, Any]]:
        try:
            raw = self.client.moderations.with_raw_response.create(model=self.settings.model, input=text)
        except openai.APIStatusError as e:
            logger.error("moderation request failed status=%s body=%s", e.status_code, e.response.text)
            return None
        except openai.APIConnectionError as e:
            logger.error("moderation request failed error=%s", e)
            return None

        try:
            return json.loads(raw.text)
        except ValueError as e:
            logger.error("moderation response is not JSON error=%s", e)
            return None

    def _record(
        self,
        text: str,
        response: Dict[str, Any],
        flagged: bool,
        categories: Dict[str, bool],
        scores: Dict[str, float],
        model: str,
        context: Dict[str, Any],
    ) -> Optional[ModerationRecord]:
        if self.recorder is None:
            return None
        record = ModerationRecord(
            id=str(uuid.uuid4()),
            created_at=self._clock(),
            input=text,
            response=json.dumps(response),
            flagged=flagged,
            categories=json.dumps(categories),
            category_scores=json.dumps(scores),
            model=model,
            user_id=context.get("user_id"),
            profile_id=context.get("profile_id"),
            moderation_id=response.get("id"),
            source=context.get("source"),
        )
        return self.recorder.store_moderation(record)
