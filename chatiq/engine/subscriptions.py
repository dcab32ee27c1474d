"""SubscriptionController — owns the live session-list and message-list views.

At most one subscription of each kind is live. Opening a new one cancels the
previous one synchronously first, and snapshots arriving for a session that is
no longer active are dropped.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from chatiq.engine.listener import notify
from chatiq.errors import StoreError

if TYPE_CHECKING:
    from chatiq.engine.listener import EngineListener
    from chatiq.engine.state import EngineState
    from chatiq.store.interface import RemoteStore
    from chatiq.store.models import Message, Session
    from chatiq.store.subscription import Snapshot, Subscription

logger = logging.getLogger(__name__)


@dataclass
class _Live:
    """A subscription plus the task draining it."""

    sub: Subscription[Any]
    task: asyncio.Task[None]

    def cancel(self) -> None:
        self.sub.cancel()
        self.task.cancel()


class SubscriptionController:
    """Keeps the UI and the conversation window in step with the store.

    Args:
        store: The remote store to subscribe to.
        state: Shared engine state (read for the active session, writes the window).
        listener: UI callbacks.
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
        self._sessions: _Live | None = None
        self._messages: _Live | None = None
        self._sessions_generation = 0
        self._messages_generation = 0
        self._sessions_lock = asyncio.Lock()
        self._messages_lock = asyncio.Lock()
        self._last_sessions: list[Session] = []

    # -- Introspection ---------------------------------------------------------

    @property
    def session_subscription(self) -> Subscription[Session] | None:
        return self._sessions.sub if self._sessions else None

    @property
    def message_subscription(self) -> Subscription[Message] | None:
        return self._messages.sub if self._messages else None

    @property
    def sessions(self) -> list[Session]:
        """The last session list delivered by the store."""
        return list(self._last_sessions)

    # -- Session list ----------------------------------------------------------

    async def watch_sessions(self) -> bool:
        """(Re)open the signed-in user's session-list subscription."""
        self.cancel_sessions()
        generation = self._sessions_generation
        user_id = self._state.user_id
        if user_id is None:
            return False

        async with self._sessions_lock:
            if generation != self._sessions_generation:
                return False
            try:
                sub = await self._store.subscribe_sessions(user_id)
            except StoreError as exc:
                logger.warning("Session list subscription failed for %s: %s", user_id, exc)
                notify(self._listener.on_error, f"Could not load chat history: {exc}")
                return False
            if generation != self._sessions_generation or self._state.user_id != user_id:
                sub.cancel()
                return False
            task = asyncio.create_task(self._consume_sessions(sub, user_id))
            self._sessions = _Live(sub=sub, task=task)

        logger.info("Watching sessions for %s", user_id)
        return True

    def cancel_sessions(self) -> None:
        """Tear down the session-list subscription, if any."""
        self._sessions_generation += 1
        live, self._sessions = self._sessions, None
        if live is not None:
            live.cancel()

    def refresh_session_list(self) -> None:
        """Re-render the picker from the last snapshot with the current highlight."""
        notify(
            self._listener.on_session_list_changed,
            list(self._last_sessions),
            self._highlight(),
        )

    def _highlight(self) -> str | None:
        if self._state.has_persisted_session:
            return self._state.active_session_id
        return None

    async def _consume_sessions(self, sub: Subscription[Session], user_id: str) -> None:
        async for snapshot in sub:
            if sub.cancelled or self._state.user_id != user_id:
                continue
            if not snapshot.ok:
                logger.warning(
                    "Session list delivery failed: %s; keeping last view", snapshot.error
                )
                continue
            self._last_sessions = list(snapshot.items)
            self.refresh_session_list()

    # -- Message list ----------------------------------------------------------

    async def watch_messages(self, session_id: str) -> bool:
        """Switch the message-list subscription to *session_id*.

        The previous subscription is cancelled before anything is awaited.
        Returns False if the subscription could not be opened or was
        superseded while opening.
        """
        self.cancel_messages()
        generation = self._messages_generation
        user_id = self._state.user_id
        if user_id is None:
            return False

        async with self._messages_lock:
            if generation != self._messages_generation:
                return False
            try:
                sub = await self._store.subscribe_messages(user_id, session_id)
            except StoreError as exc:
                logger.warning("Message subscription failed for %s: %s", session_id, exc)
                notify(self._listener.on_error, f"Could not load chat: {exc}")
                return False
            if generation != self._messages_generation or not self._state.is_active(session_id):
                sub.cancel()
                return False
            # The store queues the current list on subscribe; show it before returning.
            initial = sub.poll()
            if initial is not None:
                self._apply_messages(initial, session_id)
            task = asyncio.create_task(self._consume_messages(sub, session_id))
            self._messages = _Live(sub=sub, task=task)

        logger.info("Watching messages for session %s", session_id)
        return True

    def cancel_messages(self) -> None:
        """Tear down the message-list subscription, if any."""
        self._messages_generation += 1
        live, self._messages = self._messages, None
        if live is not None:
            live.cancel()
            logger.debug("Cancelled message subscription %r", live.sub)

    async def _consume_messages(self, sub: Subscription[Message], session_id: str) -> None:
        async for snapshot in sub:
            if sub.cancelled or not self._state.is_active(session_id):
                logger.debug("Dropping stale snapshot for session %s", session_id)
                continue
            self._apply_messages(snapshot, session_id)

    def _apply_messages(self, snapshot: Snapshot[Message], session_id: str) -> None:
        if not snapshot.ok:
            logger.warning(
                "Message delivery failed for %s: %s; keeping last view",
                session_id,
                snapshot.error,
            )
            return
        self._state.window.rebuild(snapshot.items)
        notify(self._listener.on_message_list_changed, list(snapshot.items))

    # -- Teardown --------------------------------------------------------------

    def cancel_all(self) -> None:
        """Cancel both subscriptions and forget the cached session list."""
        self.cancel_messages()
        self.cancel_sessions()
        self._last_sessions = []
