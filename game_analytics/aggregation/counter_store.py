"""
Counter Store

Keyed per-player counters with an atomic read-modify-write upsert.

Updates for one player are serialized two ways:
- in process, through a per-key asyncio.Lock
- across processes, through compare-and-swap on the row's `version` column

A lost race (version moved, duplicate insert, lock wait or serialization
failure) is retried with exponential backoff up to `counter_max_attempts`,
after which ContentionExceeded is raised and nothing is written.
"""

import asyncio
import random
import weakref
from datetime import date
from typing import Awaitable, Callable, Optional

import structlog
from prometheus_client import Counter
from sqlalchemy import insert, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from game_analytics.aggregation.counters import PlayerCounters, decreased_fields
from game_analytics.aggregation.deltas import DeltaFn
from game_analytics.config import AnalyticsSettings, get_settings
from game_analytics.core.clock import utcnow
from game_analytics.core.exceptions import (
    ContentionExceeded,
    CounterInvariantError,
    NotFoundError,
    StorageUnavailable,
)
from game_analytics.database.connection import get_session_factory, is_lock_conflict
from game_analytics.database.models import PlayerCounterRecord

logger = structlog.get_logger(__name__)


COUNTER_CONFLICTS = Counter(
    "game_analytics_counter_conflicts_total",
    "Counter upserts that lost a compare-and-swap race",
)

COUNTER_CONTENTION_EXCEEDED = Counter(
    "game_analytics_counter_contention_exceeded_total",
    "Counter upserts that exhausted their retry budget",
)


class _Conflict(Exception):
    """Another writer got there first"""


class CounterStore:
    """
    Per-player counter store.

    Example:
        store = CounterStore(session_factory)
        counters = await store.upsert("p1", build_delta(event), install_date=event.event_date)
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        settings: Optional[AnalyticsSettings] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._session_factory = session_factory or get_session_factory()
        self.settings = settings or get_settings().analytics
        self._sleep = sleep
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, player_id: str) -> asyncio.Lock:
        lock = self._locks.get(player_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[player_id] = lock
        return lock

    def _backoff(self, attempt: int) -> float:
        delay = min(
            self.settings.counter_backoff_max_seconds,
            self.settings.counter_backoff_base_seconds * (2 ** (attempt - 1)),
        )
        return delay * (0.5 + random.random() / 2)

    async def get(self, player_id: str) -> PlayerCounters:
        """
        Current counters for a player.

        Raises:
            NotFoundError: If the player has no counters yet
            StorageUnavailable: If the store cannot be read
        """
        try:
            async with self._session_factory() as session:
                record = (
                    await session.execute(
                        select(PlayerCounterRecord).where(PlayerCounterRecord.player_id == player_id)
                    )
                ).scalar_one_or_none()
        except (OperationalError, InterfaceError, OSError) as e:
            raise StorageUnavailable("counter_store", str(e)) from e

        if record is None:
            raise NotFoundError("PlayerCounters", player_id)
        return PlayerCounters.from_record(record)

    async def upsert(
        self,
        player_id: str,
        delta_fn: DeltaFn,
        *,
        install_date: Optional[date] = None,
    ) -> PlayerCounters:
        """
        Apply `delta_fn` to the player's counters atomically.

        Args:
            player_id: Counter key
            delta_fn: Pure function from current to updated counters; may be
                called more than once when a write is retried
            install_date: Install date used only when the player is new;
                defaults to today

        Returns:
            The counters as written

        Raises:
            ContentionExceeded: If every attempt lost a race
            CounterInvariantError: If delta_fn decreased a cumulative counter
            StorageUnavailable: If the store cannot be reached
        """
        max_attempts = self.settings.counter_max_attempts

        async with self._lock_for(player_id):
            for attempt in range(1, max_attempts + 1):
                try:
                    return await self._attempt(player_id, delta_fn, install_date)
                except _Conflict:
                    COUNTER_CONFLICTS.inc()
                    logger.debug("Counter write conflict", player_id=player_id, attempt=attempt)
                    if attempt < max_attempts:
                        await self._sleep(self._backoff(attempt))

        COUNTER_CONTENTION_EXCEEDED.inc()
        logger.error("Counter contention exceeded", player_id=player_id, attempts=max_attempts)
        raise ContentionExceeded(player_id, max_attempts)

    async def _attempt(
        self,
        player_id: str,
        delta_fn: DeltaFn,
        install_date: Optional[date],
    ) -> PlayerCounters:
        try:
            async with self._session_factory() as session:
                record = (
                    await session.execute(
                        select(PlayerCounterRecord).where(PlayerCounterRecord.player_id == player_id)
                    )
                ).scalar_one_or_none()

            if record is None:
                current = PlayerCounters.new(player_id, install_date or utcnow().date())
                expected_version = None
            else:
                current = PlayerCounters.from_record(record)
                expected_version = record.version

            updated = delta_fn(current)
            decreased = decreased_fields(current, updated)
            if decreased:
                raise CounterInvariantError(player_id, decreased)

            async with self._session_factory() as session:
                if expected_version is None:
                    await session.execute(
                        insert(PlayerCounterRecord).values(
                            player_id=player_id,
                            version=1,
                            **updated.to_columns(),
                        )
                    )
                else:
                    result = await session.execute(
                        update(PlayerCounterRecord)
                        .where(
                            PlayerCounterRecord.player_id == player_id,
                            PlayerCounterRecord.version == expected_version,
                        )
                        .values(
                            version=expected_version + 1,
                            updated_at=utcnow(),
                            **updated.to_columns(),
                        )
                    )
                    if result.rowcount == 0:
                        raise _Conflict()
                await session.commit()

        except IntegrityError as e:
            raise _Conflict() from e
        except DBAPIError as e:
            if is_lock_conflict(e):
                raise _Conflict() from e
            if isinstance(e, (OperationalError, InterfaceError)):
                raise StorageUnavailable("counter_store", str(e)) from e
            raise
        except OSError as e:
            raise StorageUnavailable("counter_store", str(e)) from e

        return updated
