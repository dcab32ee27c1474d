"""EngineState — the single owned bag of mutable engine state."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import StrEnum

from chatiq.engine.window import ConversationWindow, LongTermNotes
from chatiq.store.models import UNSAVED_SESSION_ID


class Phase(StrEnum):
    """Session identity states."""

    LOGGED_OUT = "logged_out"
    UNSAVED = "unsaved"
    TRANSITIONING = "transitioning"
    ACTIVE = "active"


@dataclass
class EngineState:
    """Everything the engine mutates, in one place.

    Attributes:
        user_id: Signed-in user, or None when logged out.
        phase: Current state-machine phase.
        active_session_id: Persisted id when ACTIVE, ``UNSAVED_SESSION_ID``
            while UNSAVED/TRANSITIONING, None when logged out.
        window: Recent messages of the active session.
        notes: Long-term correction notes.
        epoch: Bumped on every new chat, session switch, or sign-out. Work
            started in an older epoch must not change the current view.
        creation: The in-flight session creation while TRANSITIONING.
    """

    user_id: str | None = None
    phase: Phase = Phase.LOGGED_OUT
    active_session_id: str | None = None
    window: ConversationWindow = field(default_factory=ConversationWindow)
    notes: LongTermNotes = field(default_factory=LongTermNotes)
    epoch: int = 0
    creation: asyncio.Future[str] | None = None

    @property
    def signed_in(self) -> bool:
        return self.user_id is not None

    @property
    def has_persisted_session(self) -> bool:
        return self.phase == Phase.ACTIVE

    def is_active(self, session_id: str) -> bool:
        """True if *session_id* is the persisted session currently shown."""
        return self.phase == Phase.ACTIVE and self.active_session_id == session_id

    def next_epoch(self) -> int:
        self.epoch += 1
        return self.epoch

    def enter_unsaved(self) -> None:
        """Reset to a fresh, unpersisted chat."""
        self.next_epoch()
        self.phase = Phase.UNSAVED
        self.active_session_id = UNSAVED_SESSION_ID
        self.creation = None
        self.window.clear()

    def enter_active(self, session_id: str) -> None:
        """Show a persisted session."""
        self.phase = Phase.ACTIVE
        self.active_session_id = session_id
        self.creation = None

    def reset(self) -> None:
        """Drop everything (sign-out)."""
        self.next_epoch()
        self.user_id = None
        self.phase = Phase.LOGGED_OUT
        self.active_session_id = None
        self.creation = None
        self.window.clear()
        self.notes.clear()
