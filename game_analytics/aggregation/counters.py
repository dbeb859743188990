"""
Player Counters

Immutable value object for one player's cumulative statistics. Delta
functions take a PlayerCounters and return a new one; the counter store maps
it to and from the `player_counters` table.
"""

from dataclasses import asdict, dataclass, fields, replace
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from game_analytics.aggregation.parameters import ZERO_MONEY


@dataclass(frozen=True)
class PlayerCounters:
    """Cumulative counters for one player"""

    player_id: str
    install_date: date
    last_seen_date: date
    platform: Optional[str] = None
    app_version: Optional[str] = None

    # Engagement
    total_sessions: int = 0
    total_play_time_seconds: int = 0
    high_engagement_sessions: int = 0

    # Gameplay
    total_games_played: int = 0
    best_score: int = 0
    total_score: int = 0

    # Missions and achievements
    missions_completed: int = 0
    achievements_unlocked: int = 0

    # Continues
    continues_used_total: int = 0
    continues_via_ad: int = 0
    continues_via_gems: int = 0

    # Ad funnel
    ads_shown_total: int = 0
    ads_completed_total: int = 0
    ads_abandoned_total: int = 0

    # Currency ledgers
    coins_earned_total: int = 0
    gems_earned_total: int = 0
    coins_spent_total: int = 0
    gems_spent_total: int = 0

    # Monetization
    total_purchases: int = 0
    total_revenue_usd: Decimal = ZERO_MONEY

    # Retention
    day1_retained: bool = False
    day7_retained: bool = False
    day30_retained: bool = False

    # Errors
    total_errors: int = 0
    fatal_errors: int = 0

    @classmethod
    def new(cls, player_id: str, install_date: date) -> "PlayerCounters":
        """Zero-valued counters for a player seen for the first time"""
        return cls(player_id=player_id, install_date=install_date, last_seen_date=install_date)

    @classmethod
    def from_record(cls, record: Any) -> "PlayerCounters":
        """Build from a PlayerCounterRecord row"""
        values = {f.name: getattr(record, f.name) for f in fields(cls)}
        values["total_revenue_usd"] = Decimal(values["total_revenue_usd"] or 0).quantize(ZERO_MONEY)
        for name in COUNTER_FIELDS:
            values[name] = int(values[name] or 0)
        for name in RETENTION_FIELDS:
            values[name] = bool(values[name])
        return cls(**values)

    def to_columns(self) -> Dict[str, Any]:
        """Column values for the counter store, without the key"""
        values = asdict(self)
        values.pop("player_id")
        return values

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly representation for API responses"""
        values = asdict(self)
        values["install_date"] = self.install_date.isoformat()
        values["last_seen_date"] = self.last_seen_date.isoformat()
        values["total_revenue_usd"] = str(self.total_revenue_usd)
        return values

    def incremented(self, **amounts: Any) -> "PlayerCounters":
        """Copy with the given fields increased by the given amounts"""
        return replace(self, **{name: getattr(self, name) + amount for name, amount in amounts.items()})


COUNTER_FIELDS = (
    "total_sessions",
    "total_play_time_seconds",
    "high_engagement_sessions",
    "total_games_played",
    "best_score",
    "total_score",
    "missions_completed",
    "achievements_unlocked",
    "continues_used_total",
    "continues_via_ad",
    "continues_via_gems",
    "ads_shown_total",
    "ads_completed_total",
    "ads_abandoned_total",
    "coins_earned_total",
    "gems_earned_total",
    "coins_spent_total",
    "gems_spent_total",
    "total_purchases",
    "total_errors",
    "fatal_errors",
)

RETENTION_FIELDS = ("day1_retained", "day7_retained", "day30_retained")

# Fields that may only grow; retention flags may be set but never cleared
MONOTONIC_FIELDS = COUNTER_FIELDS + ("total_revenue_usd", "last_seen_date") + RETENTION_FIELDS


def decreased_fields(before: PlayerCounters, after: PlayerCounters) -> List[str]:
    """Names of cumulative fields that went down between two snapshots"""
    decreased = [name for name in MONOTONIC_FIELDS if getattr(after, name) < getattr(before, name)]
    if after.install_date != before.install_date:
        decreased.append("install_date")
    return decreased
