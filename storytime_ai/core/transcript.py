"""
Conversation transcript owned by one chat service.
"""

from typing import Dict, List, Optional

SYSTEM = "system"
USER = "user"
ASSISTANT = "assistant"

ROLES = (SYSTEM, USER, ASSISTANT)


class Transcript:
    """Ordered list of role-tagged messages sent to a chat provider.

    The system prompt is held apart from the turns and always sent first as
    a single message: ``set_context`` replaces it, ``add(SYSTEM, ...)``
    appends a paragraph to it. Empty messages are ignored, matching how
    callers pass optional text.
    """

    def __init__(self):
        self._context: Optional[str] = None
        self._turns: List[Dict[str, str]] = []

    def set_context(self, message: Optional[str]) -> None:
        if not message:
            return
        self._context = message

    def add(self, role: str, message: Optional[str]) -> None:
        if role not in ROLES:
            raise ValueError(f"Unknown message role: {role}")
        if not message:
            return
        if role == SYSTEM:
            self._context = f"{self._context}\n\n{message}" if self._context else message
            return
        self._turns.append({"role": role, "content": message})

    def reset(self) -> None:
        self._context = None
        self._turns = []

    @property
    def context(self) -> Optional[str]:
        return self._context

    def to_messages(self) -> List[Dict[str, str]]:
        """Return the wire messages, context first."""
        messages = []
        if self._context:
            messages.append({"role": SYSTEM, "content": self._context})
        messages.extend(dict(turn) for turn in self._turns)
        return messages

    def __len__(self) -> int:
        return len(self._turns) + (1 if self._context else 0)
