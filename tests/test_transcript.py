"""
Unit tests for the conversation transcript.
"""

import pytest

from storytime_ai.core.transcript import ASSISTANT, SYSTEM, USER, Transcript


class TestTranscript:

    def test_context_sent_first(self):
        transcript = Transcript()
        transcript.add(USER, "Hi")
        transcript.set_context("You are Alice")

        assert transcript.to_messages() == [
            {"role": "system", "content": "You are Alice"},
            {"role": "user", "content": "Hi"},
        ]

    def test_set_context_replaces(self):
        transcript = Transcript()
        transcript.set_context("You are Alice")
        transcript.set_context("You are Bob")

        assert transcript.context == "You are Bob"
        assert len(transcript) == 1

    def test_system_message_appends_to_context(self):
        transcript = Transcript()
        transcript.add(SYSTEM, "Be brief")
        transcript.add(SYSTEM, "Use rhymes")

        assert transcript.to_messages() == [{"role": "system", "content": "Be brief\n\nUse rhymes"}]

    def test_turn_order_preserved(self):
        transcript = Transcript()
        transcript.add(USER, "one")
        transcript.add(ASSISTANT, "two")
        transcript.add(USER, "three")

        assert [m["content"] for m in transcript.to_messages()] == ["one", "two", "three"]

    def test_empty_text_ignored(self):
        transcript = Transcript()
        transcript.add(USER, "")
        transcript.add(ASSISTANT, None)
        transcript.set_context("")

        assert transcript.to_messages() == []
        assert len(transcript) == 0

    def test_unknown_role_rejected(self):
        with pytest.raises(ValueError, match="Unknown message role: tool"):
            Transcript().add("tool", "x")

    def test_reset_is_idempotent(self):
        transcript = Transcript()
        transcript.set_context("ctx")
        transcript.add(USER, "Hi")

        transcript.reset()
        transcript.reset()

        assert transcript.to_messages() == []
        assert transcript.context is None

    def test_returned_messages_are_copies(self):
        transcript = Transcript()
        transcript.add(USER, "Hi")

        transcript.to_messages()[0]["content"] = "changed"

        assert transcript.to_messages()[0]["content"] == "Hi"
