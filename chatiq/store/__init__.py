"""Remote store collaborator — models, protocol, and the SQLite implementation."""

from chatiq.store.interface import RemoteStore
from chatiq.store.local import LastSessionStore
from chatiq.store.models import (
    UNSAVED_SESSION_ID,
    FeedbackRecord,
    Message,
    Session,
)
from chatiq.store.sqlite import SqliteStore
from chatiq.store.subscription import Snapshot, Subscription

__all__ = [
    "UNSAVED_SESSION_ID",
    "FeedbackRecord",
    "LastSessionStore",
    "Message",
    "RemoteStore",
    "Session",
    "Snapshot",
    "SqliteStore",
    "Subscription",
]
