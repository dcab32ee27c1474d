"""ChatIQ entry point."""

import asyncio
import logging

from chatiq.config import settings

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
)
logger = logging.getLogger(__name__)


async def _run() -> None:
    from chatiq.cli import TerminalApp
    from chatiq.feedback.exporter import FeedbackExporter
    from chatiq.feedback.sinks import get_sink
    from chatiq.llm.client import get_completion_client
    from chatiq.llm.policies import content_filter
    from chatiq.store.local import LastSessionStore
    from chatiq.store.sqlite import SqliteStore

    store = SqliteStore.get()
    completion = get_completion_client()
    if not completion.configured:
        logger.warning("No completion backend configured; replies will be fallback text")

    exporter = FeedbackExporter(store, get_sink())
    app = TerminalApp(
        store,
        completion,
        local_state=LastSessionStore.get(),
        content_filter=content_filter(),
        exporter=exporter,
    )

    await exporter.start()
    try:
        await app.run(settings.default_user_id)
    finally:
        await exporter.stop()


def main() -> None:
    """Start the terminal client."""
    logger.info("Starting ChatIQ (provider=%s)...", settings.completion_provider)
    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
