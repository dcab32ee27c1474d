"""EngineListener protocol — what the engine tells the UI."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Callable

    from chatiq.store.models import Message, Session

logger = logging.getLogger(__name__)


@runtime_checkable
class EngineListener(Protocol):
    """Protocol that every UI front end must satisfy.

    Callbacks are synchronous and run on the event loop; they must not block.
    """

    def on_session_list_changed(
        self, sessions: list[Session], active_session_id: str | None
    ) -> None:
        """Re-render the session picker. Highlight *active_session_id*."""
        ...

    def on_message_list_changed(self, messages: list[Message]) -> None:
        """Replace the chat view with *messages* (empty means a fresh chat)."""
        ...

    def on_turn_completed(self, bot_message: Message) -> None:
        """A reply for the active session was stored."""
        ...

    def on_error(self, message: str) -> None:
        """Show a recoverable error."""
        ...


class NullListener:
    """Listener that ignores everything (headless use and tests)."""

    def on_session_list_changed(
        self, sessions: list[Session], active_session_id: str | None
    ) -> None:
        pass

    def on_message_list_changed(self, messages: list[Message]) -> None:
        pass

    def on_turn_completed(self, bot_message: Message) -> None:
        pass

    def on_error(self, message: str) -> None:
        pass


def notify(callback: Callable[..., None], *args: Any) -> None:
    """Invoke a listener callback; a failing UI must not break the engine."""
    try:
        callback(*args)
    except Exception:
        logger.exception("Listener callback %s failed", getattr(callback, "__name__", callback))
