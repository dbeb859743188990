"""
Analytics Pipeline

Wires the event log, counter store, aggregator consumer, rollup store and
rollup scheduler from settings and exposes the operations the API and the
maintenance flows call.
"""

from datetime import date, datetime, time
from typing import Any, Callable, Dict, Iterable, List, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from game_analytics.aggregation import (
    ConsumerConfig,
    CounterStore,
    EventStreamConsumer,
    IncrementalAggregator,
    PlayerCounters,
)
from game_analytics.config import Settings, get_settings
from game_analytics.core.clock import utcnow
from game_analytics.core.exceptions import ConfigurationError
from game_analytics.database.connection import get_session_factory
from game_analytics.ingestion import BatchIngestResult, EventLog
from game_analytics.rollups import (
    CohortRow,
    RollupRunResult,
    RollupScheduler,
    RollupStore,
    RollupVersionInfo,
)
from game_analytics.rollups.families import DailyRow

logger = structlog.get_logger(__name__)


def _check_range(start: Optional[date], end: Optional[date]) -> None:
    if start is not None and end is not None and start > end:
        raise ConfigurationError(
            "Range start must not be after range end",
            {"start": start.isoformat(), "end": end.isoformat()},
        )


class AnalyticsPipeline:
    """
    Facade over the analytics core.

    Example:
        pipeline = AnalyticsPipeline(session_factory)
        event_id = await pipeline.ingest_event({"player_id": "p1", "event_name": "game_start"})
        await pipeline.consumer.run_once()
        counters = await pipeline.get_player_counters("p1")
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings or get_settings()
        self.session_factory = session_factory = session_factory or get_session_factory()
        analytics = self.settings.analytics

        self.event_log = EventLog(session_factory, analytics, clock=clock)
        self.counter_store = CounterStore(session_factory, analytics)
        self.aggregator = IncrementalAggregator(self.counter_store, analytics)
        self.consumer = EventStreamConsumer(
            self.event_log,
            self.aggregator,
            session_factory,
            ConsumerConfig.from_settings(analytics),
            clock=clock,
        )
        self.rollup_store = RollupStore(session_factory, analytics)
        self.scheduler = RollupScheduler(self.event_log, self.rollup_store, analytics, clock=clock)
        self._clock = clock

    # -------------------------------------------------------------------------
    # Inbound
    # -------------------------------------------------------------------------

    async def ingest_event(self, payload: Any) -> int:
        """Append one event; raises ValidationError for malformed payloads"""
        return await self.event_log.append(payload)

    async def ingest_batch(self, payloads: Iterable[Any]) -> BatchIngestResult:
        """Append a batch; each payload is accepted or rejected on its own"""
        return await self.event_log.append_many(payloads)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def get_player_counters(self, player_id: str) -> PlayerCounters:
        """Live counters; raises NotFoundError for unknown players"""
        return await self.counter_store.get(player_id)

    async def get_daily_rollup(
        self,
        family: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
        version_id: Optional[int] = None,
    ) -> List[DailyRow]:
        """Rows of one family from a single published version, ordered by date"""
        _check_range(start, end)
        return await self.rollup_store.get_daily_rows(family, start, end, version_id=version_id)

    async def get_cohort_retention(
        self,
        start_week: Optional[date] = None,
        end_week: Optional[date] = None,
        version_id: Optional[int] = None,
    ) -> List[CohortRow]:
        """Cohort rows from a single published version, ordered by install week"""
        _check_range(start_week, end_week)
        return await self.rollup_store.get_cohort_rows(start_week, end_week, version_id=version_id)

    async def current_rollup_version(self) -> Optional[RollupVersionInfo]:
        return await self.rollup_store.current_version()

    async def rollup_status(self) -> Dict[str, Any]:
        """Published version metadata plus scheduler and consumer state"""
        version = await self.rollup_store.current_version()
        last = self.scheduler.last_result
        return {
            "current_version": version.model_dump(mode="json") if version else None,
            "scheduler": {
                "running": self.scheduler.running,
                "run_in_progress": self.scheduler.in_progress,
                "interval_seconds": self.settings.analytics.rollup_interval_seconds,
                "window_days": self.settings.analytics.rollup_window_days,
                "last_run_version_id": last.version_id if last else None,
                "last_run_duration_seconds": last.duration_seconds if last else None,
                "last_error": self.scheduler.last_error,
            },
            "consumer": {
                "running": self.consumer.running,
                "watermark": self.consumer.watermark,
            },
        }

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    async def refresh_rollups(self) -> Optional[RollupRunResult]:
        """One scheduler run; None when a run is already in progress"""
        return await self.scheduler.run_once()

    async def purge_expired_events(self, now: Optional[datetime] = None) -> int:
        """
        Retention eviction bounded by the published rollup window and the
        consumer watermark.
        """
        version = await self.rollup_store.current_version()
        window_start = datetime.combine(version.window_start, time.min) if version else None
        watermark = await self.consumer.load_watermark()
        return await self.event_log.purge_expired(window_start, watermark, now=now or self._clock())

    # -------------------------------------------------------------------------
    # Background tasks
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Run the counter consumer and rollup scheduler in the background"""
        await self.consumer.start()
        await self.scheduler.start()
        logger.info("Analytics pipeline started")

    async def stop(self) -> None:
        await self.scheduler.stop()
        await self.consumer.stop()
        logger.info("Analytics pipeline stopped")
