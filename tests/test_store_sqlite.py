"""Tests for SqliteStore — aiosqlite CRUD and live subscriptions."""

import asyncio
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from chatiq.errors import StoreRejectedError, StoreUnavailableError
from chatiq.store.models import FeedbackRecord, Message
from chatiq.store.sqlite import SqliteStore


def _text(sender: str = "user", content: str = "hello") -> Message:
    return Message(sender=sender, kind="text", content=content)


# -- Sessions ------------------------------------------------------------------


async def test_create_and_get_session(store: SqliteStore) -> None:
    session_id = await store.create_session("alice", "First chat")

    session = await store.get_session("alice", session_id)
    assert session is not None
    assert session.title == "First chat"
    assert session.user_id == "alice"
    assert session.created_at == session.last_activity


async def test_get_session_of_other_user_is_none(store: SqliteStore) -> None:
    session_id = await store.create_session("alice", "Private")
    assert await store.get_session("bob", session_id) is None


async def test_get_session_not_found(store: SqliteStore) -> None:
    assert await store.get_session("alice", "missing") is None


async def test_list_sessions_most_recent_activity_first(store: SqliteStore) -> None:
    older = await store.create_session("alice", "Older")
    newer = await store.create_session("alice", "Newer")
    await store.create_session("bob", "Not mine")

    sessions = await store.list_sessions("alice")
    assert [s.id for s in sessions] == [newer, older]

    await store.append_message("alice", older, _text())
    stored = (await store.list_messages(older))[-1]
    await store.update_session_activity("alice", older, stored.timestamp)

    sessions = await store.list_sessions("alice")
    assert [s.id for s in sessions] == [older, newer]


async def test_update_session_activity_never_moves_backwards(store: SqliteStore) -> None:
    session_id = await store.create_session("alice", "Chat")
    await store.update_session_activity("alice", session_id, "2099-01-01T00:00:00.000000+00:00")
    await store.update_session_activity("alice", session_id, "2000-01-01T00:00:00.000000+00:00")

    session = await store.get_session("alice", session_id)
    assert session.last_activity == "2099-01-01T00:00:00.000000+00:00"


async def test_update_session_activity_missing_session(store: SqliteStore) -> None:
    with pytest.raises(StoreRejectedError):
        await store.update_session_activity("alice", "missing", "2025-01-01")


async def test_delete_session_cascades_to_messages(store: SqliteStore) -> None:
    session_id = await store.create_session("alice", "Chat")
    await store.append_message("alice", session_id, _text())
    await store.append_message("alice", session_id, _text("bot", "hi"))

    await store.delete_session("alice", session_id)

    assert await store.get_session("alice", session_id) is None
    assert await store.list_messages(session_id) == []


async def test_delete_session_of_other_user_rejected(store: SqliteStore) -> None:
    session_id = await store.create_session("alice", "Chat")
    with pytest.raises(StoreRejectedError, match="Permission denied"):
        await store.delete_session("bob", session_id)
    assert await store.get_session("alice", session_id) is not None


# -- Messages ------------------------------------------------------------------


async def test_append_message_assigns_id_and_timestamp(store: SqliteStore) -> None:
    session_id = await store.create_session("alice", "Chat")

    stored = await store.append_message("alice", session_id, _text())
    assert stored.id
    assert stored.timestamp
    assert stored.session_id == session_id
    assert stored.content == "hello"


async def test_list_messages_in_append_order(store: SqliteStore) -> None:
    session_id = await store.create_session("alice", "Chat")
    await store.append_message(
        "alice",
        session_id,
        Message(sender="user", kind="image", content="aGk=", mime_type="image/png"),
    )
    await store.append_message("alice", session_id, _text("user", "what is this?"))
    await store.append_message("alice", session_id, _text("bot", "a cat"))

    messages = await store.list_messages(session_id)
    assert [m.kind for m in messages] == ["image", "text", "text"]
    assert [m.sender for m in messages] == ["user", "user", "bot"]
    assert messages[0].mime_type == "image/png"
    assert messages[0].seq < messages[1].seq < messages[2].seq


async def test_append_message_to_missing_session_rejected(store: SqliteStore) -> None:
    with pytest.raises(StoreRejectedError, match="does not exist"):
        await store.append_message("alice", "missing", _text())


async def test_append_message_to_other_users_session_rejected(store: SqliteStore) -> None:
    session_id = await store.create_session("alice", "Chat")
    with pytest.raises(StoreRejectedError, match="Permission denied"):
        await store.append_message("bob", session_id, _text())


# -- Feedback ------------------------------------------------------------------


async def test_query_feedback_since(store: SqliteStore) -> None:
    now = datetime.now(UTC)
    old = FeedbackRecord(
        user_id="alice",
        session_id="s1",
        message_id="m1",
        kind="helpful",
        content="old answer",
        timestamp=(now - timedelta(days=30)).isoformat(timespec="microseconds"),
    )
    recent = FeedbackRecord(
        user_id="alice",
        session_id="s1",
        message_id="m2",
        kind="inaccurate",
        content="wrong answer",
    )
    await store.append_feedback(old)
    await store.append_feedback(recent)

    records = await store.query_feedback(now - timedelta(days=7))
    assert [r.message_id for r in records] == ["m2"]
    assert records[0].timestamp


# -- Availability --------------------------------------------------------------


async def test_unreachable_database_raises_unavailable(tmp_path: Path) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x")
    broken = SqliteStore(db_path=blocker / "test.db")

    with pytest.raises(StoreUnavailableError):
        await broken.create_session("alice", "Chat")


def test_singleton_reset() -> None:
    SqliteStore._reset()
    try:
        assert SqliteStore.get() is SqliteStore.get()
    finally:
        SqliteStore._reset()


# -- Subscriptions -------------------------------------------------------------


async def test_subscribe_sessions_delivers_initial_snapshot(store: SqliteStore) -> None:
    session_id = await store.create_session("alice", "Chat")

    sub = await store.subscribe_sessions("alice")
    snapshot = await asyncio.wait_for(anext(sub), timeout=1)
    assert [s.id for s in snapshot.items] == [session_id]
    sub.cancel()


async def test_session_snapshot_pushed_on_create(store: SqliteStore) -> None:
    sub = await store.subscribe_sessions("alice")
    first = await anext(sub)
    assert first.items == []

    await store.create_session("alice", "New")
    await store.create_session("bob", "Other user")

    snapshot = await asyncio.wait_for(anext(sub), timeout=1)
    assert [s.title for s in snapshot.items] == ["New"]
    sub.cancel()


async def test_message_snapshot_pushed_on_append(store: SqliteStore) -> None:
    session_id = await store.create_session("alice", "Chat")
    sub = await store.subscribe_messages("alice", session_id)
    await anext(sub)

    await store.append_message("alice", session_id, _text("user", "one"))
    await store.append_message("alice", session_id, _text("bot", "two"))

    snapshot = await asyncio.wait_for(anext(sub), timeout=1)
    assert [m.content for m in snapshot.items] == ["one", "two"]
    sub.cancel()


async def test_subscribe_messages_of_other_user_rejected(store: SqliteStore) -> None:
    session_id = await store.create_session("alice", "Chat")
    with pytest.raises(StoreRejectedError):
        await store.subscribe_messages("bob", session_id)
    assert store.active_subscriptions("messages") == []


async def test_cancel_removes_subscription(store: SqliteStore) -> None:
    session_id = await store.create_session("alice", "Chat")
    sub = await store.subscribe_messages("alice", session_id)
    assert store.active_subscriptions("messages") == [sub]

    sub.cancel()
    assert store.active_subscriptions("messages") == []

    # Writes after cancel are not delivered
    await store.append_message("alice", session_id, _text())
    with pytest.raises(StopAsyncIteration):
        await anext(sub)


async def test_delete_publishes_to_session_watchers(store: SqliteStore) -> None:
    keep = await store.create_session("alice", "Keep")
    drop = await store.create_session("alice", "Drop")
    sub = await store.subscribe_sessions("alice")
    await anext(sub)

    await store.delete_session("alice", drop)

    snapshot = await asyncio.wait_for(anext(sub), timeout=1)
    assert [s.id for s in snapshot.items] == [keep]
    sub.cancel()
