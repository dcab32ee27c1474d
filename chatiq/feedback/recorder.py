"""FeedbackRecorder — stores user verdicts on bot answers."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, get_args

from chatiq.engine.listener import notify
from chatiq.engine.window import correction_key
from chatiq.errors import StoreError
from chatiq.store.models import UNSAVED_SESSION_ID, FeedbackKind, FeedbackRecord, utc_now

if TYPE_CHECKING:
    from chatiq.engine.listener import EngineListener
    from chatiq.engine.state import EngineState
    from chatiq.store.interface import RemoteStore

logger = logging.getLogger(__name__)

FEEDBACK_KINDS: frozenset[str] = frozenset(get_args(FeedbackKind))
UNSAVED_FEEDBACK = "Only answers in a saved chat can be rated."


class FeedbackRecorder:
    """Appends feedback records and remembers corrections for inaccurate answers.

    Args:
        store: Where feedback records are appended.
        state: Engine state (signed-in user, active session, notes).
        listener: Receives ``on_error`` when a record cannot be stored.
    """

    def __init__(
        self,
        store: RemoteStore,
        state: EngineState,
        listener: EngineListener,
    ) -> None:
        self._store = store
        self._state = state
        self._listener = listener

    async def record(
        self,
        message_id: str,
        kind: str,
        content: str,
        *,
        session_id: str | None = None,
    ) -> bool:
        """Record feedback for a bot message. Returns True if it was stored.

        An ``"inaccurate"`` verdict also saves a long-term note keyed by the
        message id. Raises ValueError for unknown kinds.
        """
        if kind not in FEEDBACK_KINDS:
            msg = f"Unknown feedback kind: {kind}"
            raise ValueError(msg)

        if not self._state.signed_in:
            logger.info("Ignoring feedback while signed out")
            return False
        user_id = self._state.user_id

        target_session = self._resolve_session(session_id)
        if target_session is None:
            logger.info("Ignoring feedback for %s: no saved session", message_id)
            notify(self._listener.on_error, UNSAVED_FEEDBACK)
            return False
        record = FeedbackRecord(
            user_id=user_id,
            session_id=target_session,
            message_id=message_id,
            kind=kind,
            content=content,
            timestamp=utc_now(),
        )
        try:
            await self._store.append_feedback(record)
        except StoreError:
            logger.exception("Error saving feedback for message %s", message_id)
            notify(self._listener.on_error, "Could not save your feedback.")
            return False

        if kind == "inaccurate":
            self._state.notes.save(target_session, correction_key(message_id), content)
        return True

    def note_for(self, message_id: str, session_id: str | None = None) -> str | None:
        """Return the correction note recorded for *message_id*, if any."""
        target_session = self._resolve_session(session_id)
        if target_session is None:
            return None
        return self._state.notes.get(target_session, correction_key(message_id))

    def _resolve_session(self, session_id: str | None) -> str | None:
        """Explicit session, else the active persisted one. Never the unsaved sentinel."""
        if session_id == UNSAVED_SESSION_ID:
            return None
        if session_id:
            return session_id
        if self._state.has_persisted_session:
            return self._state.active_session_id
        return None
