"""
Background Worker

Runs the counter consumer and the rollup scheduler outside the API process.
Deploy exactly one worker per database; the scheduler relies on it for
non-overlapping runs.

Usage:
    python -m game_analytics.worker
"""

import asyncio
import signal

import structlog

from game_analytics.config import get_settings
from game_analytics.config.logging import configure_logging
from game_analytics.database.connection import close_database, get_session_factory, init_database
from game_analytics.pipeline import AnalyticsPipeline

logger = structlog.get_logger(__name__)


async def run_worker() -> None:
    """Start the pipeline and block until SIGINT or SIGTERM"""
    settings = get_settings()
    await init_database()

    pipeline = AnalyticsPipeline(get_session_factory(), settings)
    shutdown = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown.set)

    logger.info(
        "Worker starting",
        environment=settings.app_env,
        workers=settings.analytics.aggregator_workers,
        rollup_interval_seconds=settings.analytics.rollup_interval_seconds,
    )

    await pipeline.start()
    try:
        await shutdown.wait()
    finally:
        await pipeline.stop()
        await close_database()
        logger.info("Worker stopped")


def main() -> None:
    configure_logging(role="worker")
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
