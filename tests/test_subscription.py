"""Tests for Subscription snapshot streams."""

import asyncio
from unittest.mock import MagicMock

import pytest

from chatiq.errors import StoreUnavailableError
from chatiq.store.subscription import Snapshot, Subscription


async def test_delivers_pushed_snapshot() -> None:
    sub = Subscription("messages", "s1")
    sub.push(Snapshot(items=["a"]))

    snapshot = await anext(sub)
    assert snapshot.ok
    assert snapshot.items == ["a"]


async def test_coalesces_to_latest_snapshot() -> None:
    sub = Subscription("messages", "s1")
    sub.push(Snapshot(items=["a"]))
    sub.push(Snapshot(items=["a", "b"]))
    sub.push(Snapshot(items=["a", "b", "c"]))

    snapshot = await anext(sub)
    assert snapshot.items == ["a", "b", "c"]


async def test_error_does_not_hide_good_snapshot() -> None:
    sub = Subscription("messages", "s1")
    sub.push(Snapshot(items=["a"]))
    sub.push(Snapshot(error=StoreUnavailableError("offline")))

    snapshot = await anext(sub)
    assert snapshot.ok
    assert snapshot.items == ["a"]


async def test_error_alone_is_delivered() -> None:
    sub = Subscription("messages", "s1")
    sub.push(Snapshot(error=StoreUnavailableError("offline")))

    snapshot = await anext(sub)
    assert not snapshot.ok
    assert isinstance(snapshot.error, StoreUnavailableError)


async def test_cancel_wakes_waiting_consumer() -> None:
    sub = Subscription("sessions", "alice")

    async def consume() -> list:
        return [snapshot async for snapshot in sub]

    waiter = asyncio.create_task(consume())
    await asyncio.sleep(0)

    sub.cancel()
    assert await asyncio.wait_for(waiter, timeout=1) == []


async def test_cancel_drops_pending_snapshots() -> None:
    sub = Subscription("messages", "s1")
    sub.push(Snapshot(items=["stale"]))
    sub.cancel()

    with pytest.raises(StopAsyncIteration):
        await anext(sub)


async def test_poll_returns_latest_without_waiting() -> None:
    sub = Subscription("messages", "s1")
    sub.push(Snapshot(items=["a"]))
    sub.push(Snapshot(items=["a", "b"]))

    snapshot = sub.poll()
    assert snapshot.items == ["a", "b"]
    assert sub.poll() is None


async def test_poll_prefers_good_snapshot_over_error() -> None:
    sub = Subscription("messages", "s1")
    sub.push(Snapshot(items=["a"]))
    sub.push(Snapshot(error=StoreUnavailableError("offline")))

    assert sub.poll().items == ["a"]


async def test_poll_empty_or_cancelled_returns_none() -> None:
    sub = Subscription("messages", "s1")
    assert sub.poll() is None

    sub.push(Snapshot(items=["stale"]))
    sub.cancel()
    assert sub.poll() is None


def test_cancel_is_idempotent_and_calls_back_once() -> None:
    on_cancel = MagicMock()
    sub = Subscription("messages", "s1", on_cancel=on_cancel)

    sub.cancel()
    sub.cancel()

    assert sub.cancelled
    on_cancel.assert_called_once_with(sub)


def test_push_after_cancel_ignored() -> None:
    sub = Subscription("messages", "s1")
    sub.cancel()
    sub.push(Snapshot(items=["late"]))
    assert "cancelled" in repr(sub)
