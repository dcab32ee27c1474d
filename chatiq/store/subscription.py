"""Subscription — a cancellable stream of full snapshots from the store.

Consumers iterate with ``async for snapshot in sub``. Each snapshot replaces
the previous one entirely; when several arrive before the consumer wakes up,
only the latest is delivered. ``cancel()`` is synchronous so callers can tear
a subscription down before opening its replacement.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable

T = TypeVar("T")

_CLOSED = object()


@dataclass
class Snapshot(Generic[T]):
    """A full ordered view of a subscribed collection.

    ``error`` is set instead of ``items`` when a delivery failed; consumers
    keep their last good view in that case.
    """

    items: list[T] = field(default_factory=list)
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class Subscription(Generic[T]):
    """Live view of one store collection.

    Args:
        kind: ``"sessions"`` or ``"messages"``.
        key: The watched key (user id or session id).
        on_cancel: Called once, synchronously, when the subscription is cancelled.
    """

    def __init__(
        self,
        kind: str,
        key: str,
        on_cancel: Callable[[Subscription[Any]], None] | None = None,
    ) -> None:
        self.kind = kind
        self.key = key
        self._on_cancel = on_cancel
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._cancelled = False

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "live"
        return f"<Subscription {self.kind}:{self.key} {state}>"

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def push(self, snapshot: Snapshot[T]) -> None:
        """Queue a snapshot for the consumer. Ignored after cancellation."""
        if not self._cancelled:
            self._queue.put_nowait(snapshot)

    def cancel(self) -> None:
        """Stop delivery immediately. Safe to call more than once."""
        if self._cancelled:
            return
        self._cancelled = True
        if self._on_cancel is not None:
            self._on_cancel(self)
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> Subscription[T]:
        return self

    async def __anext__(self) -> Snapshot[T]:
        if self._cancelled:
            raise StopAsyncIteration
        pending = [await self._queue.get()]
        snapshot = self._coalesce(pending)
        if snapshot is None:
            raise StopAsyncIteration
        return snapshot

    def poll(self) -> Snapshot[T] | None:
        """Return the newest queued snapshot without waiting, or None."""
        if self._cancelled or self._queue.empty():
            return None
        return self._coalesce([])

    def _coalesce(self, pending: list[Any]) -> Snapshot[T] | None:
        while not self._queue.empty():
            pending.append(self._queue.get_nowait())
        if self._cancelled or any(item is _CLOSED for item in pending):
            return None
        # Newest good snapshot wins; errors only surface on their own.
        good = [item for item in pending if item.ok]
        return good[-1] if good else pending[-1]
