"""Conversation history for the Helios Muse assistant."""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from datetime import datetime, timezone

GREETING = (
    "Hello, I'm Helios Muse ✨ Your peaceful guide through the world of art. "
    "How may I illuminate your journey today?"
)
APOLOGY = "Apologies, I'm having a moment of artistic contemplation. Please try again shortly. ✨"

QUICK_ACTIONS: dict[str, str] = {
    "scan_art": "How do I scan and analyze an artwork?",
    "learn_painter": "Tell me about Vincent van Gogh",
    "play_game": "How do I play the art memory game?",
    "search_exhibitions": "How can I find art exhibitions?",
    "view_community": "What can I do in the community?",
    "profile_help": "Help me understand my profile and badges",
}

_ids = itertools.count(1)


@dataclass
class Message:
    role: str
    content: str
    id: str = field(default_factory=lambda: str(next(_ids)))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_api(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


class Conversation:
    """Ordered messages, opening with the assistant greeting.

    The greeting is shown to the user but never sent to the endpoint.
    """

    def __init__(self, greeting: str = GREETING):
        self.messages: list[Message] = [Message("assistant", greeting)]

    def add_user(self, content: str) -> Message:
        msg = Message("user", content)
        self.messages.append(msg)
        return msg

    def start_reply(self) -> Message:
        """Append an empty assistant bubble that a streamed reply fills in."""
        msg = Message("assistant", "")
        self.messages.append(msg)
        return msg

    def add_apology(self) -> Message:
        msg = Message("assistant", APOLOGY)
        self.messages.append(msg)
        return msg

    def api_messages(self) -> list[dict[str, str]]:
        return [m.to_api() for m in self.messages[1:] if m.content]

    @property
    def last(self) -> Message:
        return self.messages[-1]


def quick_prompt(action: str) -> str:
    """Prompt text for a quick action; unknown actions give an empty prompt."""
    return QUICK_ACTIONS.get(action, "")
