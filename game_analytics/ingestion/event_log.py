"""
Event Log

Append-only store of player action events.

- append / append_many validate payloads and insert them; rejected payloads
  never reach storage
- scan yields events over an explicit time window, ordered by event time,
  paged with short independent reads and bounded by the highest id present
  when the scan started, so concurrent appends never leak into a running scan
- read_after serves consumers that track their own watermark
- purge_expired is the only path that deletes events
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional, Sequence

import structlog
from prometheus_client import Counter
from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from game_analytics.config import AnalyticsSettings, get_settings
from game_analytics.core.clock import utcnow
from game_analytics.core.exceptions import ConfigurationError, ValidationError
from game_analytics.database.connection import get_session_factory, storage_guard
from game_analytics.database.models import GameEvent
from game_analytics.ingestion.events import Event, validate_event

logger = structlog.get_logger(__name__)


# =============================================================================
# METRICS
# =============================================================================

EVENTS_INGESTED = Counter(
    "game_analytics_events_ingested_total",
    "Events offered to the event log",
    ["status"],
)

EVENTS_PURGED = Counter(
    "game_analytics_events_purged_total",
    "Events removed by retention eviction",
)


@dataclass
class EventFilter:
    """Optional predicates applied to a scan"""
    event_names: Optional[Sequence[str]] = None
    player_id: Optional[str] = None
    platform: Optional[str] = None

    def clauses(self) -> list:
        conditions = []
        if self.event_names:
            conditions.append(GameEvent.event_name.in_(list(self.event_names)))
        if self.player_id:
            conditions.append(GameEvent.player_id == self.player_id)
        if self.platform:
            conditions.append(GameEvent.platform == self.platform.lower())
        return conditions


@dataclass
class BatchIngestResult:
    """Outcome of a batch append"""
    accepted: List[int] = field(default_factory=list)
    rejected: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def accepted_count(self) -> int:
        return len(self.accepted)

    @property
    def rejected_count(self) -> int:
        return len(self.rejected)


class EventLog:
    """
    Append-only event log backed by the `game_events` table.

    Example:
        log = EventLog(session_factory)
        event_id = await log.append({"player_id": "p1", "event_name": "game_start"})
        async for event in log.scan(start, end):
            ...
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        settings: Optional[AnalyticsSettings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory or get_session_factory()
        self.settings = settings or get_settings().analytics
        self._clock = clock

    async def append(self, payload: Any) -> int:
        """
        Validate and append one event.

        Returns:
            The new event id

        Raises:
            ValidationError: If player_id or event_name is missing
            StorageUnavailable: If the log cannot be written
        """
        try:
            event = validate_event(payload)
        except ValidationError:
            EVENTS_INGESTED.labels(status="rejected").inc()
            raise

        record = GameEvent(**event.to_row(now=self._clock()))
        async with storage_guard("event_log"):
            async with self._session_factory() as session:
                session.add(record)
                await session.commit()

        EVENTS_INGESTED.labels(status="accepted").inc()
        logger.debug(
            "Event appended",
            event_id=record.id,
            player_id=record.player_id,
            event_name=record.event_name,
        )
        return record.id

    async def append_many(self, payloads: Iterable[Any]) -> BatchIngestResult:
        """
        Validate each payload independently and append the valid ones in a
        single transaction.
        """
        result = BatchIngestResult()
        now = self._clock()
        records: List[GameEvent] = []

        for index, payload in enumerate(payloads):
            try:
                event = validate_event(payload)
            except ValidationError as e:
                result.rejected.append({"index": index, "error": e.message, "details": e.details})
                continue
            records.append(GameEvent(**event.to_row(now=now)))

        if records:
            async with storage_guard("event_log"):
                async with self._session_factory() as session:
                    session.add_all(records)
                    await session.commit()
            result.accepted = [record.id for record in records]

        EVENTS_INGESTED.labels(status="accepted").inc(result.accepted_count)
        EVENTS_INGESTED.labels(status="rejected").inc(result.rejected_count)
        logger.info(
            "Event batch appended",
            accepted=result.accepted_count,
            rejected=result.rejected_count,
        )
        return result

    def scan(
        self,
        start: Optional[datetime],
        end: Optional[datetime],
        event_filter: Optional[EventFilter] = None,
    ) -> AsyncIterator[Event]:
        """
        Lazily iterate events with start <= created_at < end.

        Each call re-reads storage; nothing is consumed.

        Raises:
            ConfigurationError: If a bound is missing, inverted, or the window
                exceeds `max_scan_days`
        """
        if start is None or end is None:
            raise ConfigurationError("Event log scans require an explicit start and end")
        if end <= start:
            raise ConfigurationError(
                "Scan end must be after start",
                {"start": start.isoformat(), "end": end.isoformat()},
            )
        if end - start > timedelta(days=self.settings.max_scan_days):
            raise ConfigurationError(
                "Scan window exceeds max_scan_days",
                {"max_scan_days": self.settings.max_scan_days},
            )
        return self._scan_pages(start, end, event_filter or EventFilter())

    async def _scan_pages(
        self,
        start: datetime,
        end: datetime,
        event_filter: EventFilter,
    ) -> AsyncIterator[Event]:
        ceiling = await self.max_event_id()
        page_size = self.settings.scan_page_size
        cursor: Optional[tuple] = None

        while True:
            conditions = [
                GameEvent.created_at >= start,
                GameEvent.created_at < end,
                GameEvent.id <= ceiling,
                *event_filter.clauses(),
            ]
            if cursor is not None:
                last_ts, last_id = cursor
                conditions.append(
                    or_(
                        GameEvent.created_at > last_ts,
                        and_(GameEvent.created_at == last_ts, GameEvent.id > last_id),
                    )
                )

            query = (
                select(GameEvent)
                .where(and_(*conditions))
                .order_by(GameEvent.created_at, GameEvent.id)
                .limit(page_size)
            )
            async with storage_guard("event_log"):
                async with self._session_factory() as session:
                    records = (await session.execute(query)).scalars().all()

            for record in records:
                yield Event.from_record(record)

            if len(records) < page_size:
                return
            cursor = (records[-1].created_at, records[-1].id)

    async def read_after(self, event_id: int, limit: int) -> List[Event]:
        """Events with id greater than `event_id`, in id order"""
        query = (
            select(GameEvent)
            .where(GameEvent.id > event_id)
            .order_by(GameEvent.id)
            .limit(limit)
        )
        async with storage_guard("event_log"):
            async with self._session_factory() as session:
                records = (await session.execute(query)).scalars().all()
        return [Event.from_record(record) for record in records]

    async def read_ids(self, event_ids: Iterable[int]) -> List[Event]:
        """Events among `event_ids` that exist, in id order"""
        wanted = sorted(set(event_ids))
        if not wanted:
            return []
        query = select(GameEvent).where(GameEvent.id.in_(wanted)).order_by(GameEvent.id)
        async with storage_guard("event_log"):
            async with self._session_factory() as session:
                records = (await session.execute(query)).scalars().all()
        return [Event.from_record(record) for record in records]

    async def max_event_id(self) -> int:
        """Highest id currently in the log, 0 when empty"""
        async with storage_guard("event_log"):
            async with self._session_factory() as session:
                value = (await session.execute(select(func.max(GameEvent.id)))).scalar()
        return int(value or 0)

    async def purge_expired(
        self,
        rollup_window_start: Optional[datetime],
        applied_through_id: int,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Delete events past the retention horizon.

        An event is only removed when it is older than `event_retention_days`,
        older than the start of the published rollup window, and already
        applied by the counter consumer.

        Args:
            rollup_window_start: Start of the currently published rollup
                window; nothing is purged until a rollup has been published
            applied_through_id: Counter consumer watermark

        Returns:
            Number of events deleted
        """
        if rollup_window_start is None:
            logger.info("Skipping purge, no rollup published yet")
            return 0

        now = now or self._clock()
        cutoff = min(now - timedelta(days=self.settings.event_retention_days), rollup_window_start)

        statement = delete(GameEvent).where(
            GameEvent.created_at < cutoff,
            GameEvent.id <= applied_through_id,
        )
        async with storage_guard("event_log"):
            async with self._session_factory() as session:
                result = await session.execute(statement)
                await session.commit()

        purged = result.rowcount or 0
        EVENTS_PURGED.inc(purged)
        logger.info("Expired events purged", purged=purged, cutoff=cutoff.isoformat())
        return purged
