"""ChatEngine — session state machine and the send pipeline.

State transitions (see ``Phase``):

- ``LOGGED_OUT -> UNSAVED`` on ``sign_in``; a remembered session is
  verified with the store and activated if it still exists.
- ``UNSAVED -> TRANSITIONING -> ACTIVE`` on the first send. One creation
  future exists per new chat; concurrent sends await it.
- ``ACTIVE -> UNSAVED`` on ``start_new_chat``.
- ``ACTIVE -> ACTIVE'`` on ``select_session``; the old message subscription
  is cancelled before the new one opens.
- ``* -> LOGGED_OUT`` on ``sign_out``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from chatiq.config import settings
from chatiq.engine.listener import NullListener, notify
from chatiq.engine.state import EngineState, Phase
from chatiq.engine.subscriptions import SubscriptionController
from chatiq.errors import StoreError
from chatiq.feedback.recorder import FeedbackRecorder
from chatiq.llm.context import IMAGE_ONLY_QUERY, build_turns
from chatiq.store.local import LastSessionStore
from chatiq.store.models import Message, make_title

if TYPE_CHECKING:
    from chatiq.engine.listener import EngineListener
    from chatiq.llm.client import CompletionClient
    from chatiq.llm.policies import QueryPolicy
    from chatiq.llm.types import ImageAttachment
    from chatiq.store.interface import RemoteStore
    from chatiq.store.models import Session

logger = logging.getLogger(__name__)

SIGN_IN_REQUIRED = "Please sign in to send messages."
CREATE_FAILED = "Could not start a new chat."
SAVE_FAILED = "Failed to save your message."
REPLY_SAVE_FAILED = "Failed to save the AI response."
BLOCKED_QUERY = "Please keep the conversation respectful."
IMAGE_TITLE = "Image chat"


class ChatEngine:
    """Keeps one user's chats in sync with the store and runs chat turns.

    Args:
        store: Remote store (source of truth for sessions and messages).
        completion: Completion client used for bot replies.
        listener: UI callbacks (defaults to a no-op listener).
        local_state: Where the last active session id is remembered.
        content_filter: Optional policy that rejects queries before sending.
    """

    def __init__(
        self,
        store: RemoteStore,
        completion: CompletionClient,
        listener: EngineListener | None = None,
        local_state: LastSessionStore | None = None,
        content_filter: QueryPolicy | None = None,
    ) -> None:
        self._store = store
        self._completion = completion
        self._listener = listener or NullListener()
        self._local = local_state or LastSessionStore.get()
        self._content_filter = content_filter
        self.state = EngineState()
        self.subscriptions = SubscriptionController(store, self.state, self._listener)
        self.feedback = FeedbackRecorder(store, self.state, self._listener)

    # -- Read-only views -------------------------------------------------------

    @property
    def phase(self) -> Phase:
        return self.state.phase

    @property
    def user_id(self) -> str | None:
        return self.state.user_id

    @property
    def active_session_id(self) -> str | None:
        return self.state.active_session_id

    @property
    def sessions(self) -> list[Session]:
        return self.subscriptions.sessions

    # -- Authentication transitions -------------------------------------------

    async def sign_in(self, user_id: str) -> None:
        """Enter UNSAVED for *user_id*, then restore the remembered session."""
        if self.state.signed_in:
            if self.state.user_id == user_id:
                if self.subscriptions.session_subscription is None:
                    await self.subscriptions.watch_sessions()
                return
            self.sign_out()

        self.state.user_id = user_id
        self.state.enter_unsaved()
        logger.info("Signed in as %s", user_id)

        await self.subscriptions.watch_sessions()
        await self._restore_last_session()

    def sign_out(self) -> None:
        """Cancel every subscription, drop caches, forget the last session."""
        user_id = self.state.user_id
        if user_id is None:
            return
        self.subscriptions.cancel_all()
        self._local.clear(user_id)
        self.state.reset()
        notify(self._listener.on_session_list_changed, [], None)
        notify(self._listener.on_message_list_changed, [])
        logger.info("Signed out %s", user_id)

    async def _restore_last_session(self) -> None:
        user_id = self.state.user_id
        if user_id is None:
            return
        session_id = self._local.load(user_id)
        if not session_id:
            self.start_new_chat()
            return

        epoch = self.state.epoch
        try:
            session = await self._store.get_session(user_id, session_id)
        except StoreError as exc:
            logger.warning("Could not verify remembered session %s: %s", session_id, exc)
            session = None

        if self.state.epoch != epoch or self.state.user_id != user_id:
            logger.debug("Restore of %s superseded", session_id)
            return

        if session is None:
            logger.info("Remembered session %s no longer exists", session_id)
            self._local.clear(user_id)
            self.start_new_chat()
            return

        await self.select_session(session_id)

    # -- Session transitions ---------------------------------------------------

    def start_new_chat(self) -> None:
        """Leave the current session and show a fresh, unsaved chat."""
        user_id = self.state.user_id
        if user_id is None:
            return
        self.subscriptions.cancel_messages()
        self.state.enter_unsaved()
        self._local.clear(user_id)
        self.subscriptions.refresh_session_list()
        notify(self._listener.on_message_list_changed, [])
        logger.info("Started new unsaved chat")

    async def select_session(self, session_id: str) -> bool:
        """Switch the view to *session_id*. Returns True if it is now shown.

        Selecting the already-active session is a no-op. If the store refuses
        the subscription, the engine falls back to a new unsaved chat.
        """
        user_id = self.state.user_id
        if user_id is None or not session_id:
            return False
        if self.state.is_active(session_id):
            return True

        # Cancel before anything else can run; the new view starts empty.
        self.subscriptions.cancel_messages()
        self.state.next_epoch()
        self.state.enter_active(session_id)
        self.state.window.clear()
        epoch = self.state.epoch
        self._local.save(user_id, session_id)
        self.subscriptions.refresh_session_list()

        opened = await self.subscriptions.watch_messages(session_id)
        if not opened and self.state.epoch == epoch:
            logger.warning("Falling back to a new chat after failing to open %s", session_id)
            self.start_new_chat()
            return False
        return opened

    async def delete_session(self, session_id: str) -> bool:
        """Delete a session (and its messages). Returns True on success."""
        user_id = self.state.user_id
        if user_id is None or not session_id:
            notify(self._listener.on_error, "Cannot delete session.")
            return False
        try:
            await self._store.delete_session(user_id, session_id)
        except StoreError as exc:
            logger.exception("Error deleting session %s", session_id)
            notify(self._listener.on_error, f"Failed to delete chat: {exc}")
            return False

        if self.state.active_session_id == session_id and self.state.user_id == user_id:
            self.start_new_chat()
        return True

    # -- Sending ---------------------------------------------------------------

    async def send(self, text: str = "", image: ImageAttachment | None = None) -> Message | None:
        """Run one chat turn. Returns the stored bot message, or None.

        The image (if any) is stored before the text. The bot reply is always
        stored in the session the turn started in; the UI is only told about
        it if that session is still the active one.
        """
        user_id = self.state.user_id
        if user_id is None:
            notify(self._listener.on_error, SIGN_IN_REQUIRED)
            return None

        text = text.strip()
        if not text and image is None:
            return None
        if self._content_filter is not None and self._content_filter.matches(text):
            notify(self._listener.on_error, BLOCKED_QUERY)
            return None

        await self._resume_message_watch()
        if self.state.user_id != user_id:
            return None

        # Captured before session creation; the window may change later.
        started_active = self.state.has_persisted_session
        history = self.state.window.snapshot() if started_active else []
        title = make_title(text, settings.session_title_length) if text else IMAGE_TITLE

        try:
            session_id = await self._ensure_session(user_id, title)
        except StoreError:
            logger.exception("Error creating new session")
            notify(self._listener.on_error, CREATE_FAILED)
            return None

        if not started_active and self.state.is_active(session_id):
            # Queued behind a creation: earlier turns of this chat may be in view now.
            history = self.state.window.snapshot()

        try:
            if image is not None:
                await self._persist(
                    user_id,
                    session_id,
                    Message(
                        sender="user",
                        kind="image",
                        content=image.data,
                        mime_type=image.mime_type,
                    ),
                )
            if text:
                await self._persist(
                    user_id, session_id, Message(sender="user", kind="text", content=text)
                )
        except StoreError:
            # No rollback: an image stored before a failed text write stays.
            logger.exception("Error saving user message to %s", session_id)
            notify(self._listener.on_error, SAVE_FAILED)
            return None

        turns = build_turns(
            history,
            text,
            image,
            notes=self.state.notes.for_session(session_id),
        )
        reply = await self._completion.complete(turns, query=text or IMAGE_ONLY_QUERY)

        try:
            bot_message = await self._persist(
                user_id, session_id, Message(sender="bot", kind="text", content=reply)
            )
        except StoreError:
            logger.exception("Error saving bot reply to %s", session_id)
            if self.state.is_active(session_id):
                notify(self._listener.on_error, REPLY_SAVE_FAILED)
            return None

        if self.state.is_active(session_id) and self.state.user_id == user_id:
            notify(self._listener.on_turn_completed, bot_message)
        else:
            logger.info("Reply stored to inactive session %s; view left unchanged", session_id)
        return bot_message

    async def _resume_message_watch(self) -> None:
        """Reopen the active session's message subscription if opening it failed."""
        if not self.state.has_persisted_session:
            return
        if self.subscriptions.message_subscription is not None:
            return
        session_id = self.state.active_session_id
        logger.info("Reopening message subscription for %s", session_id)
        await self.subscriptions.watch_messages(session_id)

    async def _ensure_session(self, user_id: str, title: str) -> str:
        """Return the persisted id for this turn, creating the session once."""
        if self.state.phase == Phase.ACTIVE and self.state.active_session_id:
            return self.state.active_session_id

        if self.state.phase == Phase.TRANSITIONING and self.state.creation is not None:
            return await asyncio.shield(self.state.creation)

        self.state.phase = Phase.TRANSITIONING
        creation = asyncio.ensure_future(self._create_session(user_id, title, self.state.epoch))
        self.state.creation = creation
        return await asyncio.shield(creation)

    async def _create_session(self, user_id: str, title: str, epoch: int) -> str:
        try:
            session_id = await self._store.create_session(user_id, title)
        except StoreError:
            if self.state.epoch == epoch:
                self.state.phase = Phase.UNSAVED
                self.state.creation = None
            raise

        if self.state.epoch != epoch:
            logger.info("Session %s created after its chat was abandoned", session_id)
            return session_id

        self.state.enter_active(session_id)
        self._local.save(user_id, session_id)
        self.subscriptions.refresh_session_list()
        await self.subscriptions.watch_messages(session_id)
        return session_id

    async def _persist(self, user_id: str, session_id: str, message: Message) -> Message:
        """Append a message and bump the session's activity timestamp."""
        stored = await self._store.append_message(user_id, session_id, message)
        try:
            await self._store.update_session_activity(user_id, session_id, stored.timestamp)
        except StoreError:
            logger.warning(
                "Stored message %s but could not update activity for %s",
                stored.id,
                session_id,
                exc_info=True,
            )
        return stored

    # -- Feedback --------------------------------------------------------------

    async def record_feedback(self, message_id: str, kind: str, content: str) -> bool:
        """Record a verdict on a bot message (``helpful`` or ``inaccurate``)."""
        return await self.feedback.record(message_id, kind, content)

    def get_note(self, message_id: str) -> str | None:
        """Return the correction note saved for *message_id* in the active session."""
        return self.feedback.note_for(message_id)

    # -- Shutdown --------------------------------------------------------------

    def close(self) -> None:
        """Cancel subscriptions without forgetting the remembered session."""
        self.subscriptions.cancel_all()
