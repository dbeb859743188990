"""
Event Stream Consumer

Delivery layer between the event log and the incremental aggregator:
- Persistent watermark per consumer name
- Hash partitioning by player id across worker queues (per-player order kept)
- Watermark advances only over a contiguous prefix of applied ids
- Failed events are redelivered on the next poll (at-least-once)
- Events applied past a failure are remembered so a redelivery skips them
- Ids skipped at a gap are re-checked until they turn up or are abandoned
- Graceful shutdown
- Metrics and observability
"""

import asyncio
import zlib
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Set

import structlog
from prometheus_client import Counter, Gauge
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from game_analytics.aggregation.aggregator import BatchApplyResult, IncrementalAggregator
from game_analytics.config import AnalyticsSettings, get_settings
from game_analytics.core.clock import utcnow
from game_analytics.core.exceptions import GameAnalyticsError
from game_analytics.database.connection import get_session_factory, storage_guard
from game_analytics.database.models import ConsumerWatermark
from game_analytics.ingestion.event_log import EventLog
from game_analytics.ingestion.events import Event

logger = structlog.get_logger(__name__)


# =============================================================================
# METRICS
# =============================================================================

CONSUMER_WATERMARK = Gauge(
    "game_analytics_consumer_watermark",
    "Highest event id fully applied by the consumer",
    ["consumer"],
)

CONSUMER_BATCH_FAILURES = Counter(
    "game_analytics_consumer_failed_events_total",
    "Events left for redelivery after a failed apply",
    ["consumer"],
)

CONSUMER_GAP_EVENTS = Counter(
    "game_analytics_consumer_gap_ids_total",
    "Ids skipped at a gap, by how they were resolved",
    ["consumer", "outcome"],
)


# =============================================================================
# STREAM CONSUMER
# =============================================================================

@dataclass
class ConsumerConfig:
    """Event stream consumer configuration"""
    name: str = "player_counters"
    workers: int = 4
    batch_size: int = 500
    poll_interval_seconds: float = 1.0
    gap_grace_seconds: float = 5.0
    gap_abandon_seconds: float = 3600.0

    @classmethod
    def from_settings(cls, settings: AnalyticsSettings, name: str = "player_counters") -> "ConsumerConfig":
        return cls(
            name=name,
            workers=settings.aggregator_workers,
            batch_size=settings.aggregator_batch_size,
            poll_interval_seconds=settings.aggregator_poll_interval_seconds,
            gap_grace_seconds=settings.watermark_gap_grace_seconds,
            gap_abandon_seconds=settings.watermark_gap_abandon_seconds,
        )


@dataclass
class PollResult:
    """Outcome of one consumer poll"""
    events_read: int
    applied: int
    failed: int
    watermark: int
    recovered: int = 0


def partition_for(player_id: str, partitions: int) -> int:
    """Stable worker index for a player"""
    return zlib.crc32(player_id.encode("utf-8")) % partitions


class EventStreamConsumer:
    """
    Polls the event log after its watermark and feeds the aggregator.

    Example:
        consumer = EventStreamConsumer(event_log, aggregator, session_factory)
        await consumer.start()
        ...
        await consumer.stop()
    """

    def __init__(
        self,
        event_log: EventLog,
        aggregator: IncrementalAggregator,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        config: Optional[ConsumerConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.event_log = event_log
        self.aggregator = aggregator
        self.config = config or ConsumerConfig.from_settings(get_settings().analytics)
        self._session_factory = session_factory or get_session_factory()
        self._clock = clock

        self._watermark: Optional[int] = None
        self._applied_ahead: Set[int] = set()
        self._pending_gaps: Dict[int, datetime] = {}
        self._task: Optional[asyncio.Task] = None
        self._shutdown_event = asyncio.Event()

    @property
    def watermark(self) -> Optional[int]:
        """Last persisted watermark, None before the first poll"""
        return self._watermark

    @property
    def pending_gaps(self) -> List[int]:
        """Skipped ids still being re-checked"""
        return sorted(self._pending_gaps)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def load_watermark(self) -> int:
        """Read the persisted watermark, 0 for a new consumer"""
        async with storage_guard("consumer_watermarks"):
            async with self._session_factory() as session:
                value = (
                    await session.execute(
                        select(ConsumerWatermark.last_event_id).where(
                            ConsumerWatermark.consumer_name == self.config.name
                        )
                    )
                ).scalar_one_or_none()
        self._watermark = int(value or 0)
        CONSUMER_WATERMARK.labels(consumer=self.config.name).set(self._watermark)
        return self._watermark

    async def _save_watermark(self, value: int) -> None:
        async with storage_guard("consumer_watermarks"):
            async with self._session_factory() as session:
                record = await session.get(ConsumerWatermark, self.config.name)
                if record is None:
                    session.add(ConsumerWatermark(consumer_name=self.config.name, last_event_id=value))
                else:
                    record.last_event_id = value
                    record.updated_at = self._clock()
                await session.commit()

        self._watermark = value
        CONSUMER_WATERMARK.labels(consumer=self.config.name).set(value)
        logger.debug("Watermark advanced", consumer=self.config.name, watermark=value)

    def _deliverable_prefix(self, events: List[Event], watermark: int) -> List[Event]:
        """
        Events that may be applied now.

        A missing id may belong to an append that has not committed yet; the
        prefix stops there until the event after the gap is older than the
        grace period. Ids skipped past that point are kept for re-checking.
        """
        grace = timedelta(seconds=self.config.gap_grace_seconds)
        now = self._clock()
        previous = watermark
        deliverable = []
        for event in events:
            if event.id != previous + 1:
                ingested_at = event.ingested_at or event.created_at
                if now - ingested_at < grace:
                    logger.debug(
                        "Holding watermark at id gap",
                        consumer=self.config.name,
                        after=previous,
                        next_id=event.id,
                    )
                    break
                skipped = [
                    event_id for event_id in range(previous + 1, event.id)
                    if event_id not in self._pending_gaps
                ]
                if skipped:
                    logger.info(
                        "Skipping id gap",
                        consumer=self.config.name,
                        first_id=skipped[0],
                        last_id=skipped[-1],
                    )
                    for event_id in skipped:
                        self._pending_gaps[event_id] = now
            self._pending_gaps.pop(event.id, None)
            deliverable.append(event)
            previous = event.id
        return deliverable

    async def _recheck_gaps(self, watermark: int) -> BatchApplyResult:
        """
        Apply skipped ids at or below the watermark that have since committed.

        Found events are applied out of order relative to their player's later
        events. Ids still missing after the abandon horizon are dropped.
        """
        outcome = BatchApplyResult()
        behind = [event_id for event_id in self._pending_gaps if event_id <= watermark]
        if not behind:
            return outcome

        late = await self.event_log.read_ids(behind)
        if late:
            outcome = await self._dispatch(late)
            for event_id in outcome.applied:
                del self._pending_gaps[event_id]
            CONSUMER_GAP_EVENTS.labels(consumer=self.config.name, outcome="recovered").inc(len(outcome.applied))
            logger.info(
                "Applied late events from id gap",
                consumer=self.config.name,
                event_ids=sorted(outcome.applied),
            )

        horizon = timedelta(seconds=self.config.gap_abandon_seconds)
        now = self._clock()
        expired = sorted(
            event_id for event_id in behind
            if event_id in self._pending_gaps and now - self._pending_gaps[event_id] >= horizon
        )
        if expired:
            for event_id in expired:
                del self._pending_gaps[event_id]
            CONSUMER_GAP_EVENTS.labels(consumer=self.config.name, outcome="abandoned").inc(len(expired))
            logger.warning(
                "Abandoning id gap",
                consumer=self.config.name,
                event_ids=expired,
                horizon_seconds=self.config.gap_abandon_seconds,
            )
        return outcome

    async def _drain_partition(self, events: List[Event], outcome: BatchApplyResult) -> None:
        by_player: "OrderedDict[str, List[Event]]" = OrderedDict()
        for event in events:
            by_player.setdefault(event.player_id, []).append(event)
        for player_events in by_player.values():
            await self.aggregator.apply_player_events(player_events, outcome)

    async def _dispatch(self, events: List[Event]) -> BatchApplyResult:
        """Apply events across hash-partitioned worker queues"""
        queues: List[List[Event]] = [[] for _ in range(self.config.workers)]
        for event in events:
            queues[partition_for(event.player_id, self.config.workers)].append(event)

        outcome = BatchApplyResult()
        await asyncio.gather(
            *(self._drain_partition(queue, outcome) for queue in queues if queue)
        )
        return outcome

    async def run_once(self) -> PollResult:
        """
        Read one batch after the watermark, apply it, and advance the
        watermark over the contiguous applied prefix.
        """
        watermark = self._watermark if self._watermark is not None else await self.load_watermark()
        recovered = await self._recheck_gaps(watermark)

        events = await self.event_log.read_after(watermark, self.config.batch_size)
        deliverable = self._deliverable_prefix(events, watermark)
        pending = [event for event in deliverable if event.id not in self._applied_ahead]

        outcome = await self._dispatch(pending)
        self._applied_ahead.update(outcome.applied)

        failed = {**recovered.failed, **outcome.failed}
        if failed:
            CONSUMER_BATCH_FAILURES.labels(consumer=self.config.name).inc(len(failed))
            logger.error(
                "Consumer batch had failures",
                consumer=self.config.name,
                failed=len(failed),
                first_failed_id=min(failed),
            )

        advanced = watermark
        for event in deliverable:
            if event.id not in self._applied_ahead:
                break
            advanced = event.id

        if advanced > watermark:
            await self._save_watermark(advanced)
            self._applied_ahead = {event_id for event_id in self._applied_ahead if event_id > advanced}

        return PollResult(
            events_read=len(events),
            applied=len(outcome.applied) + len(recovered.applied),
            failed=len(failed),
            watermark=advanced,
            recovered=len(recovered.applied),
        )

    async def _run(self) -> None:
        while not self._shutdown_event.is_set():
            before = self._watermark
            try:
                result = await self.run_once()
                caught_up = result.events_read < self.config.batch_size or result.watermark == before
            except GameAnalyticsError as e:
                logger.error("Consumer poll failed", consumer=self.config.name, error=e.message)
                caught_up = True
            except Exception:
                logger.exception("Consumer poll failed unexpectedly", consumer=self.config.name)
                caught_up = True

            if caught_up:
                try:
                    await asyncio.wait_for(
                        self._shutdown_event.wait(),
                        timeout=self.config.poll_interval_seconds,
                    )
                except asyncio.TimeoutError:
                    pass

    async def start(self) -> None:
        """Start polling in the background"""
        if self.running:
            logger.warning("Stream consumer already running", consumer=self.config.name)
            return
        logger.info(
            "Starting stream consumer",
            consumer=self.config.name,
            workers=self.config.workers,
            batch_size=self.config.batch_size,
        )
        self._shutdown_event.clear()
        self._task = asyncio.create_task(self._run(), name=f"consumer:{self.config.name}")

    async def stop(self) -> None:
        """Stop the consumer gracefully"""
        logger.info("Stopping stream consumer", consumer=self.config.name)
        self._shutdown_event.set()
        if self._task is not None:
            try:
                await asyncio.wait_for(self._task, timeout=30)
            except asyncio.TimeoutError:
                self._task.cancel()
            self._task = None
        logger.info("Stream consumer stopped", consumer=self.config.name)
