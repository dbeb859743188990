"""
Incremental Aggregator

Applies one event's delta to the counter store. Delivery, ordering and
redelivery are the consumer's job; this class only maps events to upserts.
"""

import asyncio
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

import structlog
from prometheus_client import Counter, Histogram

from game_analytics.aggregation.counter_store import CounterStore
from game_analytics.aggregation.counters import PlayerCounters
from game_analytics.aggregation.deltas import build_delta
from game_analytics.config import AnalyticsSettings, get_settings
from game_analytics.core.exceptions import GameAnalyticsError
from game_analytics.ingestion.events import Event

logger = structlog.get_logger(__name__)


EVENTS_APPLIED = Counter(
    "game_analytics_events_applied_total",
    "Events applied to player counters",
    ["status"],
)

APPLY_DURATION = Histogram(
    "game_analytics_event_apply_seconds",
    "Time spent applying one event to the counter store",
)


@dataclass
class BatchApplyResult:
    """Per-event outcome of a batch apply"""
    applied: List[int] = field(default_factory=list)
    failed: Dict[int, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


class IncrementalAggregator:
    """
    Maps events to counter-store upserts.

    Example:
        aggregator = IncrementalAggregator(CounterStore(session_factory))
        await aggregator.apply(event)
    """

    def __init__(self, store: CounterStore, settings: Optional[AnalyticsSettings] = None):
        self.store = store
        self.settings = settings or get_settings().analytics

    async def apply(self, event: Event) -> PlayerCounters:
        """
        Apply one event.

        Raises:
            ContentionExceeded: The event should be redelivered
            StorageUnavailable: The counter store is unreachable
        """
        delta_fn = build_delta(event, self.settings.high_engagement_threshold_seconds)
        start = time.perf_counter()
        try:
            counters = await self.store.upsert(
                event.player_id,
                delta_fn,
                install_date=event.event_date,
            )
        except Exception:
            EVENTS_APPLIED.labels(status="failed").inc()
            raise
        APPLY_DURATION.observe(time.perf_counter() - start)
        EVENTS_APPLIED.labels(status="applied").inc()
        return counters

    async def apply_player_events(self, events: List[Event], result: BatchApplyResult) -> None:
        """
        Apply one player's events in order.

        After a failure the player's remaining events are not attempted, so a
        redelivery replays them in their original order.
        """
        for index, event in enumerate(events):
            try:
                await self.apply(event)
            except GameAnalyticsError as e:
                logger.error(
                    "Failed to apply event",
                    event_id=event.id,
                    player_id=event.player_id,
                    error=e.message,
                )
                result.failed[event.id] = e.message
                for skipped in events[index + 1:]:
                    result.failed[skipped.id] = "skipped after earlier failure"
                return
            except Exception as e:
                logger.exception("Unexpected error applying event", event_id=event.id, player_id=event.player_id)
                result.failed[event.id] = f"{type(e).__name__}: {e}"
                for skipped in events[index + 1:]:
                    result.failed[skipped.id] = "skipped after earlier failure"
                return
            result.applied.append(event.id)

    async def apply_batch(self, events: Iterable[Event]) -> BatchApplyResult:
        """
        Apply a batch: players run concurrently, each player's events in order.
        """
        by_player: "OrderedDict[str, List[Event]]" = OrderedDict()
        for event in events:
            by_player.setdefault(event.player_id, []).append(event)

        result = BatchApplyResult()
        await asyncio.gather(
            *(self.apply_player_events(player_events, result) for player_events in by_player.values())
        )
        result.applied.sort()
        return result
