"""FeedbackExporter — periodic APScheduler job that forwards recent feedback."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from chatiq.config import settings
from chatiq.errors import StoreError

if TYPE_CHECKING:
    from chatiq.feedback.sinks import FeedbackSink
    from chatiq.store.interface import RemoteStore

logger = logging.getLogger(__name__)

JOB_ID = "feedback-export"


class FeedbackExporter:
    """Runs the export pass on a fixed interval.

    Args:
        store: Source of feedback records.
        sink: Destination for each non-empty batch.
        interval_days: Days between runs (default from settings).
        lookback_days: How far back each run looks (default from settings).
        timezone: IANA timezone for the scheduler (default from settings).
    """

    def __init__(
        self,
        store: RemoteStore,
        sink: FeedbackSink,
        *,
        interval_days: int | None = None,
        lookback_days: int | None = None,
        timezone: str | None = None,
    ) -> None:
        self._store = store
        self._sink = sink
        self._interval = timedelta(days=interval_days or settings.feedback_export_interval_days)
        self._lookback = timedelta(days=lookback_days or settings.feedback_lookback_days)
        self._timezone = timezone or settings.scheduler_timezone
        self._scheduler = AsyncIOScheduler(timezone=self._timezone)
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Add the export job and start the scheduler."""
        self._scheduler.add_job(
            self.run_once,
            trigger=IntervalTrigger(days=self._interval.days, timezone=self._timezone),
            id=JOB_ID,
            name="Export feedback",
            coalesce=True,
            misfire_grace_time=None,
            replace_existing=True,
        )
        self._scheduler.start()
        self._running = True
        logger.info(
            "Feedback exporter started (every %s, lookback %s, sink=%s)",
            self._interval,
            self._lookback,
            self._sink.name,
        )

    async def stop(self) -> None:
        """Shut down the scheduler."""
        if self._running:
            self._scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Feedback exporter stopped")

    # -- Export ----------------------------------------------------------------

    async def run_once(self, now: datetime | None = None) -> int:
        """Export feedback newer than the lookback window.

        Returns the number of records delivered (0 when there was nothing to
        send or delivery failed).
        """
        logger.info("Checking for feedback to process...")
        since = (now or datetime.now(UTC)) - self._lookback
        try:
            records = await self._store.query_feedback(since)
        except StoreError:
            logger.exception("Feedback query failed")
            return 0

        if not records:
            logger.info("No new feedback to process.")
            return 0

        logger.info("Sending %d feedback items to %s sink.", len(records), self._sink.name)
        try:
            delivered = await self._sink.send(records)
        except Exception:
            logger.exception("Feedback sink %s raised", self._sink.name)
            return 0
        return len(records) if delivered else 0
