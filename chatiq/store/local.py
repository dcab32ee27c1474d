"""LastSessionStore — remembers the last active session per user across reloads."""

from __future__ import annotations

import json
import logging
import re
from typing import TYPE_CHECKING

from chatiq.config import settings
from chatiq.store.models import UNSAVED_SESSION_ID

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

_SAFE_NAME_RE = re.compile(r"[^a-zA-Z0-9._\-]")


class LastSessionStore:
    """One small JSON file per user under ``local_state_dir``.

    All methods are synchronous; the files are a few bytes each.
    """

    _instance: LastSessionStore | None = None

    def __init__(self, root: Path | None = None) -> None:
        self._root = root or settings.local_state_dir

    @classmethod
    def get(cls) -> LastSessionStore:
        """Return the shared LastSessionStore instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Clear the singleton (for tests)."""
        cls._instance = None

    def _path(self, user_id: str) -> Path:
        return self._root / f"{_SAFE_NAME_RE.sub('_', user_id)}.json"

    def load(self, user_id: str) -> str | None:
        """Return the remembered session id, or None."""
        path = self._path(user_id)
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("Ignoring unreadable local state at %s", path)
            return None
        session_id = data.get("last_session_id") if isinstance(data, dict) else None
        if not session_id or session_id == UNSAVED_SESSION_ID:
            return None
        return str(session_id)

    def save(self, user_id: str, session_id: str) -> None:
        """Remember *session_id* as the user's last active session."""
        path = self._path(user_id)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps({"last_session_id": session_id}), encoding="utf-8")
        except OSError:
            logger.warning("Could not persist last session for %s", user_id, exc_info=True)

    def clear(self, user_id: str) -> None:
        """Forget the user's last session."""
        try:
            self._path(user_id).unlink(missing_ok=True)
        except OSError:
            logger.warning("Could not clear last session for %s", user_id, exc_info=True)
