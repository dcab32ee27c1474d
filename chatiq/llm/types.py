"""Request/response shapes shared by the context builder and completion backends."""

from __future__ import annotations

import base64
import mimetypes
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class ImageAttachment:
    """An inline image: base64 data plus its MIME type."""

    data: str
    mime_type: str

    @classmethod
    def from_path(cls, path: str | Path) -> ImageAttachment:
        """Load an image file. Raises ValueError for non-image files."""
        file_path = Path(path)
        mime_type = mimetypes.guess_type(file_path.name)[0] or ""
        if not mime_type.startswith("image/"):
            msg = f"Not an image file: {file_path.name}"
            raise ValueError(msg)
        data = base64.b64encode(file_path.read_bytes()).decode("ascii")
        return cls(data=data, mime_type=mime_type)


@dataclass
class Turn:
    """One entry of a completion request."""

    role: str  # "user" or "model"
    text: str
    image: ImageAttachment | None = None


@dataclass
class GenerateResult:
    """What a backend got back: text on success, error detail on rejection."""

    text: str = ""
    error_detail: str | None = None

    @property
    def ok(self) -> bool:
        return self.error_detail is None
