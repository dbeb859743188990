"""
Rollup Snapshot

The complete, immutable result of one recompute: every family's daily rows
plus cohort retention for one window. Snapshots are pure functions of the
events they were computed from.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, Iterable, List, Type

import structlog

from game_analytics.ingestion.events import Event
from game_analytics.rollups.cohorts import CohortRow, compute_cohorts
from game_analytics.rollups.families import DAILY_FAMILIES, ROW_MODELS, DailyRow, build_event_frame
from game_analytics.rollups.summary import SummaryRow, build_summary

logger = structlog.get_logger(__name__)

SUMMARY_FAMILY = "summary"

FAMILY_MODELS: Dict[str, Type[DailyRow]] = {**ROW_MODELS, SUMMARY_FAMILY: SummaryRow}

FAMILY_NAMES: List[str] = list(FAMILY_MODELS)


@dataclass(frozen=True)
class RollupSnapshot:
    """Rows for every family over one window"""
    window_start: date
    window_end: date
    computed_at: datetime
    event_count: int
    max_event_id: int
    daily: Dict[str, List[DailyRow]] = field(default_factory=dict)
    cohorts: List[CohortRow] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return sum(len(rows) for rows in self.daily.values()) + len(self.cohorts)


def compute_snapshot(
    events: Iterable[Event],
    window_start: date,
    window_end: date,
    computed_at: datetime,
    cohort_min_size: int = 5,
    high_engagement_threshold: int = 300,
) -> RollupSnapshot:
    """
    Recompute every family from a window of events.

    Example:
        snapshot = compute_snapshot(events, date(2024, 1, 1), date(2024, 3, 31), utcnow())
        snapshot.daily["dau"]
    """
    events = list(events)
    frame = build_event_frame(events)

    daily: Dict[str, List[DailyRow]] = {
        name: reducer(frame, high_engagement_threshold=high_engagement_threshold)
        for name, reducer in DAILY_FAMILIES.items()
    }
    daily[SUMMARY_FAMILY] = build_summary(daily)

    cohorts = compute_cohorts(frame, min_size=cohort_min_size)

    logger.debug(
        "Rollup snapshot computed",
        events=len(events),
        dates=len(daily["dau"]),
        cohorts=len(cohorts),
    )

    return RollupSnapshot(
        window_start=window_start,
        window_end=window_end,
        computed_at=computed_at,
        event_count=len(events),
        max_event_id=max((event.id for event in events), default=0),
        daily=daily,
        cohorts=cohorts,
    )
