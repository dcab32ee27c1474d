"""SqliteStore — aiosqlite-backed remote store with live snapshot subscriptions.

Every write that changes a watched collection re-reads that collection and
pushes a full snapshot to its subscribers. Subscribers only see changes made
through the same ``SqliteStore`` instance.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import aiosqlite

from chatiq.config import settings
from chatiq.errors import StoreRejectedError, StoreUnavailableError
from chatiq.store.models import FeedbackRecord, Message, Session, make_id, utc_now
from chatiq.store.subscription import Snapshot, Subscription

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from datetime import datetime
    from pathlib import Path

logger = logging.getLogger(__name__)

_CREATE_TABLES = (
    """
    CREATE TABLE IF NOT EXISTS sessions (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        title TEXT NOT NULL DEFAULT '',
        created_at TEXT NOT NULL,
        last_activity TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        id TEXT NOT NULL UNIQUE,
        session_id TEXT NOT NULL REFERENCES sessions(id),
        sender TEXT NOT NULL,
        kind TEXT NOT NULL,
        content TEXT NOT NULL,
        mime_type TEXT,
        timestamp TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS feedback (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        session_id TEXT NOT NULL,
        message_id TEXT NOT NULL,
        kind TEXT NOT NULL,
        content TEXT NOT NULL,
        timestamp TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_messages_session ON messages (session_id, timestamp, seq)",
    "CREATE INDEX IF NOT EXISTS idx_feedback_timestamp ON feedback (timestamp)",
)

_SESSION_COLUMNS = "id, user_id, title, created_at, last_activity"
_MESSAGE_COLUMNS = "id, session_id, sender, kind, content, mime_type, timestamp, seq"


def _session_from_row(row: tuple) -> Session:
    return Session(
        id=row[0],
        user_id=row[1],
        title=row[2] or "",
        created_at=row[3],
        last_activity=row[4],
    )


def _message_from_row(row: tuple) -> Message:
    return Message(
        id=row[0],
        session_id=row[1],
        sender=row[2],
        kind=row[3],
        content=row[4],
        mime_type=row[5],
        timestamp=row[6],
        seq=row[7],
    )


class SqliteStore:
    """Persists chat sessions, messages, and feedback in SQLite.

    Singleton accessed via ``SqliteStore.get()``.  Pass an explicit *db_path*
    for test isolation (e.g. ``tmp_path / "test.db"``).
    """

    _instance: SqliteStore | None = None

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path or settings.database_path
        self._initialised = False
        self._session_watchers: dict[str, set[Subscription[Any]]] = {}
        self._message_watchers: dict[str, set[Subscription[Any]]] = {}

    @classmethod
    def get(cls) -> SqliteStore:
        """Return the shared SqliteStore instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    # -- Internal helpers ------------------------------------------------------

    async def _connect(self) -> aiosqlite.Connection:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        db = await aiosqlite.connect(str(self._db_path))
        if not self._initialised:
            for statement in _CREATE_TABLES:
                await db.execute(statement)
            await db.commit()
            self._initialised = True
        return db

    @asynccontextmanager
    async def _open(self) -> AsyncIterator[aiosqlite.Connection]:
        """Yield a connection, translating driver errors into store errors."""
        try:
            db = await self._connect()
        except (aiosqlite.Error, OSError) as exc:
            raise StoreUnavailableError(f"Store unavailable: {exc}") from exc
        try:
            yield db
        except aiosqlite.IntegrityError as exc:
            raise StoreRejectedError(f"Write rejected: {exc}") from exc
        except aiosqlite.Error as exc:
            raise StoreUnavailableError(f"Store operation failed: {exc}") from exc
        finally:
            await db.close()

    @staticmethod
    async def _require_session(
        db: aiosqlite.Connection, user_id: str, session_id: str
    ) -> Session:
        cursor = await db.execute(
            f"SELECT {_SESSION_COLUMNS} FROM sessions WHERE id = ?", (session_id,)
        )
        row = await cursor.fetchone()
        if row is None:
            msg = f"Session {session_id} does not exist"
            raise StoreRejectedError(msg)
        session = _session_from_row(row)
        if session.user_id != user_id:
            msg = f"Permission denied for session {session_id}"
            raise StoreRejectedError(msg)
        return session

    # -- Sessions --------------------------------------------------------------

    async def create_session(self, user_id: str, title: str) -> str:
        """Insert a new session. Returns its id."""
        session_id = make_id()
        now = utc_now()
        async with self._open() as db:
            await db.execute(
                f"INSERT INTO sessions ({_SESSION_COLUMNS}) VALUES (?, ?, ?, ?, ?)",
                (session_id, user_id, title, now, now),
            )
            await db.commit()
        logger.info("Created session %s for %s", session_id, user_id)
        await self._publish_sessions(user_id)
        return session_id

    async def get_session(self, user_id: str, session_id: str) -> Session | None:
        """Fetch a session by id, or None if absent or owned by someone else."""
        async with self._open() as db:
            cursor = await db.execute(
                f"SELECT {_SESSION_COLUMNS} FROM sessions WHERE id = ? AND user_id = ?",
                (session_id, user_id),
            )
            row = await cursor.fetchone()
        return _session_from_row(row) if row else None

    async def list_sessions(self, user_id: str) -> list[Session]:
        """Return the user's sessions, most recently active first."""
        async with self._open() as db:
            cursor = await db.execute(
                f"SELECT {_SESSION_COLUMNS} FROM sessions WHERE user_id = ? "
                "ORDER BY last_activity DESC, created_at DESC",
                (user_id,),
            )
            rows = await cursor.fetchall()
        return [_session_from_row(row) for row in rows]

    async def delete_session(self, user_id: str, session_id: str) -> None:
        """Delete a session and cascade to its messages."""
        async with self._open() as db:
            await self._require_session(db, user_id, session_id)
            await db.execute("DELETE FROM messages WHERE session_id = ?", (session_id,))
            await db.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
            await db.commit()
        logger.info("Deleted session %s", session_id)
        await self._publish_sessions(user_id)
        await self._publish_messages(session_id)

    async def update_session_activity(
        self, user_id: str, session_id: str, timestamp: str
    ) -> None:
        """Advance last_activity to *timestamp* unless it is already later."""
        async with self._open() as db:
            cursor = await db.execute(
                "UPDATE sessions SET last_activity = MAX(last_activity, ?) "
                "WHERE id = ? AND user_id = ?",
                (timestamp, session_id, user_id),
            )
            await db.commit()
            if cursor.rowcount == 0:
                msg = f"Session {session_id} does not exist"
                raise StoreRejectedError(msg)
        await self._publish_sessions(user_id)

    # -- Messages --------------------------------------------------------------

    async def append_message(
        self, user_id: str, session_id: str, message: Message
    ) -> Message:
        """Insert a message with a fresh id and timestamp. Returns the stored copy."""
        message_id = make_id()
        timestamp = utc_now()
        async with self._open() as db:
            await self._require_session(db, user_id, session_id)
            cursor = await db.execute(
                """
                INSERT INTO messages
                    (id, session_id, sender, kind, content, mime_type, timestamp)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    message_id,
                    session_id,
                    message.sender,
                    message.kind,
                    message.content,
                    message.mime_type,
                    timestamp,
                ),
            )
            seq = cursor.lastrowid or 0
            await db.commit()
        logger.debug(
            "Appended %s/%s message %s to session %s",
            message.sender,
            message.kind,
            message_id,
            session_id,
        )
        await self._publish_messages(session_id)
        return message.model_copy(
            update={
                "id": message_id,
                "session_id": session_id,
                "timestamp": timestamp,
                "seq": seq,
            }
        )

    async def list_messages(self, session_id: str) -> list[Message]:
        """Return a session's messages ordered by timestamp, then arrival."""
        async with self._open() as db:
            cursor = await db.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE session_id = ? "
                "ORDER BY timestamp ASC, seq ASC",
                (session_id,),
            )
            rows = await cursor.fetchall()
        return [_message_from_row(row) for row in rows]

    # -- Feedback --------------------------------------------------------------

    async def append_feedback(self, record: FeedbackRecord) -> None:
        """Insert a feedback record, stamping it if no timestamp was given."""
        async with self._open() as db:
            await db.execute(
                """
                INSERT INTO feedback
                    (id, user_id, session_id, message_id, kind, content, timestamp)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    make_id(),
                    record.user_id,
                    record.session_id,
                    record.message_id,
                    record.kind,
                    record.content,
                    record.timestamp or utc_now(),
                ),
            )
            await db.commit()
        logger.info("Recorded %s feedback for message %s", record.kind, record.message_id)

    async def query_feedback(self, since: datetime) -> list[FeedbackRecord]:
        """Return feedback recorded after *since*, oldest first."""
        cutoff = since.isoformat(timespec="microseconds")
        async with self._open() as db:
            cursor = await db.execute(
                "SELECT user_id, session_id, message_id, kind, content, timestamp "
                "FROM feedback WHERE timestamp > ? ORDER BY timestamp",
                (cutoff,),
            )
            rows = await cursor.fetchall()
        return [
            FeedbackRecord(
                user_id=row[0],
                session_id=row[1],
                message_id=row[2],
                kind=row[3],
                content=row[4],
                timestamp=row[5],
            )
            for row in rows
        ]

    # -- Subscriptions ---------------------------------------------------------

    async def subscribe_sessions(self, user_id: str) -> Subscription[Session]:
        """Watch the user's session list. The first snapshot is delivered at once."""
        initial = await self.list_sessions(user_id)
        sub: Subscription[Session] = Subscription(
            "sessions", user_id, on_cancel=self._forget_session_watcher
        )
        self._session_watchers.setdefault(user_id, set()).add(sub)
        sub.push(Snapshot(items=initial))
        return sub

    async def subscribe_messages(
        self, user_id: str, session_id: str
    ) -> Subscription[Message]:
        """Watch a session's messages. Raises StoreRejectedError if not the owner."""
        async with self._open() as db:
            await self._require_session(db, user_id, session_id)
        initial = await self.list_messages(session_id)
        sub: Subscription[Message] = Subscription(
            "messages", session_id, on_cancel=self._forget_message_watcher
        )
        self._message_watchers.setdefault(session_id, set()).add(sub)
        sub.push(Snapshot(items=initial))
        return sub

    def active_subscriptions(self, kind: str) -> list[Subscription[Any]]:
        """Return the live subscriptions of a kind (``sessions`` or ``messages``)."""
        watchers = self._session_watchers if kind == "sessions" else self._message_watchers
        return [sub for subs in watchers.values() for sub in subs]

    def _forget_session_watcher(self, sub: Subscription[Any]) -> None:
        self._discard(self._session_watchers, sub)

    def _forget_message_watcher(self, sub: Subscription[Any]) -> None:
        self._discard(self._message_watchers, sub)

    @staticmethod
    def _discard(watchers: dict[str, set[Subscription[Any]]], sub: Subscription[Any]) -> None:
        subs = watchers.get(sub.key)
        if subs is None:
            return
        subs.discard(sub)
        if not subs:
            del watchers[sub.key]

    async def _publish_sessions(self, user_id: str) -> None:
        if not self._session_watchers.get(user_id):
            return
        try:
            snapshot: Snapshot[Session] = Snapshot(items=await self.list_sessions(user_id))
        except StoreUnavailableError as exc:
            logger.warning("Session list delivery failed for %s: %s", user_id, exc)
            snapshot = Snapshot(error=exc)
        for sub in list(self._session_watchers.get(user_id, ())):
            sub.push(snapshot)

    async def _publish_messages(self, session_id: str) -> None:
        if not self._message_watchers.get(session_id):
            return
        try:
            snapshot: Snapshot[Message] = Snapshot(items=await self.list_messages(session_id))
        except StoreUnavailableError as exc:
            logger.warning("Message delivery failed for %s: %s", session_id, exc)
            snapshot = Snapshot(error=exc)
        for sub in list(self._message_watchers.get(session_id, ())):
            sub.push(snapshot)
