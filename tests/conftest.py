"""Shared test fixtures."""

from pathlib import Path

import pytest

from chatiq.store.local import LastSessionStore
from chatiq.store.sqlite import SqliteStore


@pytest.fixture
async def store(tmp_path: Path) -> SqliteStore:
    """Create a SqliteStore backed by a temp database."""
    return SqliteStore(db_path=tmp_path / "test.db")


@pytest.fixture
def local_state(tmp_path: Path):
    """Create a LastSessionStore rooted in a temporary directory."""
    LastSessionStore._reset()
    s = LastSessionStore(root=tmp_path / "state")
    LastSessionStore._instance = s
    yield s
    LastSessionStore._reset()


class RecordingListener:
    """EngineListener that keeps every callback for assertions."""

    def __init__(self) -> None:
        self.session_lists: list[tuple[list, str | None]] = []
        self.message_lists: list[list] = []
        self.completed: list = []
        self.errors: list[str] = []

    def on_session_list_changed(self, sessions, active_session_id) -> None:
        self.session_lists.append((sessions, active_session_id))

    def on_message_list_changed(self, messages) -> None:
        self.message_lists.append(messages)

    def on_turn_completed(self, bot_message) -> None:
        self.completed.append(bot_message)

    def on_error(self, message: str) -> None:
        self.errors.append(message)


@pytest.fixture
def listener() -> RecordingListener:
    return RecordingListener()
