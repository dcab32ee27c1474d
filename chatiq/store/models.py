"""Data models for sessions, messages, and feedback."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict

# Sentinel id for a chat that has not been persisted yet. Never a real store id.
UNSAVED_SESSION_ID = "unsaved"

Sender = Literal["user", "bot"]
MessageKind = Literal["text", "image"]
FeedbackKind = Literal["helpful", "inaccurate"]


def utc_now() -> str:
    """Return the current UTC time as a fixed-width ISO 8601 string."""
    return datetime.now(UTC).isoformat(timespec="microseconds")


def make_id() -> str:
    """Generate a new store identifier."""
    return uuid.uuid4().hex


class Session(BaseModel):
    """A titled container for one user's ordered message history."""

    id: str
    user_id: str = ""
    title: str = ""
    created_at: str = ""
    last_activity: str = ""

    def display_title(self) -> str:
        """Title for session pickers, falling back to the creation date."""
        if self.title:
            return self.title
        date = self.created_at[:10] if self.created_at else ""
        return f"Chat {date}".strip()


class Message(BaseModel):
    """A single chat message. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    id: str = ""
    session_id: str = ""
    sender: Sender
    kind: MessageKind = "text"
    content: str
    mime_type: str | None = None
    timestamp: str = ""
    seq: int = 0

    @property
    def is_image(self) -> bool:
        return self.kind == "image"


class FeedbackRecord(BaseModel):
    """A user's verdict on a bot answer. Append-only."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    session_id: str
    message_id: str
    kind: FeedbackKind
    content: str
    timestamp: str = ""


def make_title(content: str, max_length: int) -> str:
    """Derive a session title from the first message of a chat."""
    title = content[:max_length]
    if len(content) > max_length:
        title += "..."
    return title
