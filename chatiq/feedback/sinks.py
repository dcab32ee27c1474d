"""Feedback export sinks — where exported feedback batches are delivered."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import httpx

from chatiq.config import settings

if TYPE_CHECKING:
    from chatiq.store.models import FeedbackRecord

logger = logging.getLogger(__name__)


@runtime_checkable
class FeedbackSink(Protocol):
    """Protocol for training/reporting destinations."""

    @property
    def name(self) -> str: ...

    async def send(self, records: list[FeedbackRecord]) -> bool:
        """Deliver a batch. Returns True on success."""
        ...


class HttpFeedbackSink:
    """POSTs the batch as a JSON array to a training endpoint."""

    def __init__(self, url: str, timeout: float = 30) -> None:
        self._url = url
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "http"

    async def send(self, records: list[FeedbackRecord]) -> bool:
        payload = [record.model_dump() for record in records]
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self._url, json=payload)
        except httpx.HTTPError:
            logger.exception("Feedback export failed (network error)")
            return False

        if not resp.is_success:
            logger.error(
                "Feedback export failed: status=%d body=%s", resp.status_code, resp.text[:200]
            )
            return False
        logger.info("Exported %d feedback record(s) to %s", len(records), self._url)
        return True


class LogFeedbackSink:
    """Fallback sink when no export endpoint is configured: logs the batch size."""

    @property
    def name(self) -> str:
        return "log"

    async def send(self, records: list[FeedbackRecord]) -> bool:
        helpful = sum(1 for r in records if r.kind == "helpful")
        logger.info(
            "Feedback batch: %d record(s) (%d helpful, %d inaccurate); "
            "set FEEDBACK_EXPORT_URL to forward them",
            len(records),
            helpful,
            len(records) - helpful,
        )
        return True


def get_sink() -> FeedbackSink:
    """Return the configured sink."""
    if settings.feedback_export_url:
        return HttpFeedbackSink(settings.feedback_export_url)
    return LogFeedbackSink()
