"""RemoteStore protocol — the operations the engine needs from the store."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from datetime import datetime

    from chatiq.store.models import FeedbackRecord, Message, Session
    from chatiq.store.subscription import Subscription


@runtime_checkable
class RemoteStore(Protocol):
    """Source of truth for sessions, messages, and feedback.

    Failures raise ``StoreUnavailableError`` (transport) or
    ``StoreRejectedError`` (permission/validation).
    """

    async def create_session(self, user_id: str, title: str) -> str:
        """Create a session and return its id."""
        ...

    async def get_session(self, user_id: str, session_id: str) -> Session | None:
        """Fetch a session, or None if it does not exist for this user."""
        ...

    async def delete_session(self, user_id: str, session_id: str) -> None:
        """Delete a session and all of its messages."""
        ...

    async def append_message(
        self, user_id: str, session_id: str, message: Message
    ) -> Message:
        """Persist a message. Returns it with store-assigned id and timestamp."""
        ...

    async def update_session_activity(
        self, user_id: str, session_id: str, timestamp: str
    ) -> None:
        """Advance ``last_activity``. Never moves it backwards."""
        ...

    async def subscribe_sessions(self, user_id: str) -> Subscription[Session]:
        """Open a live view of the user's sessions, newest activity first."""
        ...

    async def subscribe_messages(
        self, user_id: str, session_id: str
    ) -> Subscription[Message]:
        """Open a live view of a session's messages in log order."""
        ...

    async def append_feedback(self, record: FeedbackRecord) -> None:
        """Append a feedback record."""
        ...

    async def query_feedback(self, since: datetime) -> list[FeedbackRecord]:
        """Return feedback recorded strictly after *since*."""
        ...
