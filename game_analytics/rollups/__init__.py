"""
Rollups Module

Day-bucketed aggregates recomputed from the event log and published as
atomic versions.
"""
from .cohorts import CohortRow, compute_cohorts
from .families import DAILY_FAMILIES, build_event_frame
from .scheduler import RollupRunResult, RollupScheduler
from .snapshot import FAMILY_NAMES, RollupSnapshot, compute_snapshot
from .store import RollupStore, RollupVersionInfo
from .summary import SummaryRow, build_summary_row

__all__ = [
    "CohortRow",
    "DAILY_FAMILIES",
    "FAMILY_NAMES",
    "RollupRunResult",
    "RollupScheduler",
    "RollupSnapshot",
    "RollupStore",
    "RollupVersionInfo",
    "SummaryRow",
    "build_event_frame",
    "build_summary_row",
    "compute_cohorts",
    "compute_snapshot",
]
