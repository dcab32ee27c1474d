"""In-memory conversation window and long-term correction notes."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from chatiq.config import settings

if TYPE_CHECKING:
    from chatiq.store.models import Message

logger = logging.getLogger(__name__)

IMAGE_PLACEHOLDER = "[Image]"


@dataclass
class WindowEntry:
    """A single conversation turn as seen by the context builder."""

    sender: str  # "user" or "bot"
    content: str
    message_id: str = ""


@dataclass
class ConversationWindow:
    """Recent messages of the active session, trimmed to a sliding window.

    A cache only; the store's message snapshots are authoritative.
    """

    entries: list[WindowEntry] = field(default_factory=list)
    window_size: int = field(default_factory=lambda: settings.conversation_window_size)

    def __len__(self) -> int:
        return len(self.entries)

    def clear(self) -> int:
        """Clear all entries. Returns the count of cleared entries."""
        count = len(self.entries)
        self.entries = []
        return count

    def rebuild(self, messages: list[Message]) -> None:
        """Replace the window with the tail of a full ordered snapshot."""
        self.entries = [
            WindowEntry(
                sender=m.sender,
                content=IMAGE_PLACEHOLDER if m.is_image else m.content,
                message_id=m.id,
            )
            for m in messages[-self.window_size :]
        ]

    def snapshot(self) -> list[WindowEntry]:
        """Return a copy of the current entries."""
        return list(self.entries)


def correction_key(message_id: str) -> str:
    """Note key under which a correction for *message_id* is stored."""
    return f"correction-{message_id}"


@dataclass
class LongTermNotes:
    """Best-effort corrections keyed by (session id, note key)."""

    _notes: dict[str, dict[str, str]] = field(default_factory=dict)

    def save(self, session_id: str, key: str, value: str) -> None:
        self._notes.setdefault(session_id, {})[key] = value
        logger.debug("Saved note %s for session %s", key, session_id)

    def get(self, session_id: str, key: str) -> str | None:
        return self._notes.get(session_id, {}).get(key)

    def for_session(self, session_id: str) -> dict[str, str]:
        """Return a copy of every note for a session."""
        return dict(self._notes.get(session_id, {}))

    def clear(self) -> None:
        self._notes.clear()
