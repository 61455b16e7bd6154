"""
Unit tests for content moderation.
"""

import json
import os
import tempfile
from dataclasses import replace
from unittest.mock import Mock, patch

import httpx
import openai

from storytime_ai.config.loader import ModerationConfig, default_ai_config
from storytime_ai.core.moderation import MODERATION_CATEGORIES, ModerationService
from storytime_ai.storage.repository import UsageRepository, fetch_moderations


def _payload(flagged=False, categories=None, scores=None):
    return {
        "id": "modr-1",
        "model": "omni-moderation-latest",
        "results": [{
            "flagged": flagged,
            "categories": categories or {"violence": False, "hate": False},
            "category_scores": scores or {"violence": 0.01, "hate": 0.02},
        }],
    }


def _config(enabled=True, min_threshold=0.5):
    config = default_ai_config(environ={"OPENAI_API_KEY": "sk-test"})
    return replace(config, moderation=ModerationConfig(enabled=enabled, min_threshold=min_threshold))


def _client(payload=None, side_effect=None):
    client = Mock()
    create = client.moderations.with_raw_response.create
    if side_effect is not None:
        create.side_effect = side_effect
    else:
        create.return_value = Mock(text=json.dumps(payload))
    return client


class TestModerationService:

    def test_disabled_allows_without_calling(self):
        client = _client(_payload())
        service = ModerationService(_config(enabled=False), client=client)

        result = service.moderate("anything")

        assert result.passed()
        client.moderations.with_raw_response.create.assert_not_called()

    def test_clean_text_passes(self):
        client = _client(_payload())
        service = ModerationService(_config(), client=client)

        result = service.moderate("a friendly dragon")

        assert result.passed()
        assert result.moderation_id == "modr-1"
        client.moderations.with_raw_response.create.assert_called_once_with(
            model="omni-moderation-latest", input="a friendly dragon",
        )

    def test_score_above_threshold_flags(self):
        service = ModerationService(_config(min_threshold=0.5), client=_client(_payload(
            scores={"violence": 0.8, "hate": 0.1},
        )))

        result = service.moderate("a battle")

        assert result.failed()
        assert result.flagged_categories() == ["violence"]
        assert result.violation_message() == "Content violates our safety policy regarding: violence."

    def test_context_thresholds(self):
        """Profile thresholds from the context replace the configured minimum."""
        service = ModerationService(_config(min_threshold=0.5), client=_client(_payload(
            scores={"violence": 0.8, "hate": 0.1},
        )))

        result = service.moderate("a battle", context={"thresholds": {"violence": 0.9, "hate": 0.9}})

        assert result.passed()

    def test_vendor_flag_respected(self):
        service = ModerationService(_config(), client=_client(_payload(
            flagged=True,
            categories={"violence": False, "hate": True},
            scores={"violence": 0.01, "hate": 0.2},
        )))

        result = service.moderate("text")

        assert result.failed()
        assert result.flagged_categories() == ["hate"]

    def test_api_failure_fails_open(self):
        request = httpx.Request("POST", "https://api.openai.com/v1/moderations")
        service = ModerationService(_config(), client=_client(side_effect=openai.APIConnectionError(request=request)))

        assert service.moderate("text").passed()

    def test_http_error_fails_open(self):
        request = httpx.Request("POST", "https://api.openai.com/v1/moderations")
        response = httpx.Response(500, text="boom", request=request)
        service = ModerationService(_config(), client=_client(
            side_effect=openai.APIStatusError("boom", response=response, body=None),
        ))

        assert service.moderate("text").passed()

    def test_thresholds_default_to_minimum(self):
        service = ModerationService(_config(min_threshold=0.3), client=Mock())

        thresholds = service.thresholds_for()

        assert set(thresholds) == set(MODERATION_CATEGORIES)
        assert all(value == 0.3 for value in thresholds.values())

    @patch('storytime_ai.core.moderation.OpenAI')
    def test_client_built_from_openai_provider(self, mock_openai_class):
        service = ModerationService(_config())

        assert service.client is mock_openai_class.return_value
        mock_openai_class.assert_called_once_with(
            api_key="sk-test", base_url="https://api.openai.com/v1", timeout=30, max_retries=0,
        )

    def test_checks_are_recorded(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            repository = UsageRepository(os.path.join(temp_dir, "test.db"))
            repository.initialize()
            service = ModerationService(
                _config(), client=_client(_payload(scores={"violence": 0.8, "hate": 0.1})), recorder=repository,
            )

            result = service.moderate("a battle", context={"user_id": "user-1", "source": "prompt"})

            records = fetch_moderations(db_path=repository.db_path)
            assert records == [result.record]
            assert records[0].flagged is True
            assert records[0].user_id == "user-1"
            assert records[0].source == "prompt"
            assert json.loads(records[0].categories) == {"violence": True, "hate": False}
