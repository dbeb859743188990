"""
Daily Metric Families

Polars reducers that turn a window of events into one row per calendar date
for each metric family, or per ISO week (keyed by its Monday) for the weekly
family. Parameters are parsed once, tolerantly, while the
frame is built; the reducers only see clean typed columns.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Type

import polars as pl
from pydantic import BaseModel, ConfigDict

from game_analytics.aggregation.parameters import (
    CENTS,
    count_param,
    flag_param,
    money_param,
    optional_count_param,
    text_param,
)
from game_analytics.ingestion.events import Event, EventName
from game_analytics.rollups.ratios import average, percentage

EVENT_SCHEMA = {
    "id": pl.Int64,
    "player_id": pl.Utf8,
    "event_name": pl.Utf8,
    "platform": pl.Utf8,
    "session_id": pl.Utf8,
    "date": pl.Date,
    "price_cents": pl.Int64,
    "product_type": pl.Utf8,
    "session_duration": pl.Int64,
    "games_in_session": pl.Int64,
    "achievements_count": pl.Int64,
    "all_missions_completed": pl.Boolean,
    "continue_type": pl.Utf8,
    "currency_type": pl.Utf8,
    "amount": pl.Int64,
}


def _parameter_columns(event: Event) -> Dict[str, Any]:
    params = event.parameters
    name = event.event_name
    columns: Dict[str, Any] = {}

    if name == EventName.IAP_PURCHASE.value:
        columns["price_cents"] = int(money_param(params, "price_usd", event.id) / CENTS)
        columns["product_type"] = text_param(params, "product_type")
    elif name == EventName.SESSION_END.value:
        columns["session_duration"] = optional_count_param(params, "session_duration_seconds", event.id)
    elif name == EventName.GAME_START.value:
        columns["games_in_session"] = optional_count_param(params, "games_in_session", event.id)
    elif name == EventName.ACHIEVEMENT_UNLOCK.value:
        columns["achievements_count"] = optional_count_param(params, "achievements_count", event.id)
    elif name == EventName.DAILY_MISSION_CYCLE_COMPLETE.value:
        columns["all_missions_completed"] = flag_param(params, "all_missions_completed")
    elif name == EventName.CONTINUE_USED.value:
        columns["continue_type"] = text_param(params, "continue_type")
    elif name in (EventName.CURRENCY_EARNED.value, EventName.CURRENCY_SPENT.value):
        currency_type = text_param(params, "currency_type")
        columns["currency_type"] = currency_type
        if currency_type in ("coins", "gems"):
            columns["amount"] = count_param(params, "amount", event.id)

    return columns


def build_event_frame(events: Iterable[Event]) -> pl.DataFrame:
    """Flatten events into a typed frame, one row per event"""
    data: Dict[str, List[Any]] = {column: [] for column in EVENT_SCHEMA}
    for event in events:
        row = {
            "id": event.id,
            "player_id": event.player_id,
            "event_name": event.event_name,
            "platform": event.platform,
            "session_id": event.session_id,
            "date": event.event_date,
            **_parameter_columns(event),
        }
        for column, values in data.items():
            values.append(row.get(column))
    return pl.DataFrame(data, schema=EVENT_SCHEMA)


# =============================================================================
# ROW MODELS
# =============================================================================

class DailyRow(BaseModel):
    """Base for per-date rollup rows"""
    model_config = ConfigDict(frozen=True)

    date: date


class DauRow(DailyRow):
    dau: int = 0
    mau: int = 0
    session_users: int = 0
    gaming_users: int = 0
    android_users: int = 0
    ios_users: int = 0


class RevenueRow(DailyRow):
    total_purchases: int = 0
    paying_users: int = 0
    total_revenue_usd: Decimal = Decimal("0.00")
    gem_purchases: int = 0
    heart_purchases: int = 0
    jet_purchases: int = 0
    remove_ads_purchases: int = 0


class EngagementRow(DailyRow):
    total_sessions: int = 0
    total_games: int = 0
    avg_session_duration: float = 0.0
    avg_games_per_session: float = 0.0
    high_engagement_sessions: int = 0


class MissionsRow(DailyRow):
    missions_completed: int = 0
    users_completed_missions: int = 0
    users_all_missions: int = 0
    achievements_unlocked: int = 0
    users_unlocked_achievements: int = 0
    avg_achievements_per_user: float = 0.0


class FunnelRow(DailyRow):
    ads_shown: int = 0
    ads_completed: int = 0
    ads_abandoned: int = 0
    continues_used: int = 0
    continues_via_ad: int = 0
    continues_via_gems: int = 0
    ad_completion_rate: float = 0.0


class CurrencyRow(DailyRow):
    coins_earned: int = 0
    gems_earned: int = 0
    coins_spent: int = 0
    gems_spent: int = 0


class WeeklyRow(DailyRow):
    """`date` is the Monday starting the ISO week"""
    wau: int = 0
    android_users: int = 0
    ios_users: int = 0
    total_events: int = 0
    unique_event_types: int = 0
    games_started: int = 0
    paying_users: int = 0
    purchase_count: int = 0
    total_revenue_usd: Decimal = Decimal("0.00")


# =============================================================================
# REDUCERS
# =============================================================================

def _is(event_name: EventName) -> pl.Expr:
    return pl.col("event_name") == event_name.value


def _count(condition: pl.Expr) -> pl.Expr:
    return condition.fill_null(False).cast(pl.Int64).sum()


def _distinct_players(condition: pl.Expr) -> pl.Expr:
    return pl.col("player_id").filter(condition.fill_null(False)).n_unique()


def _by_date(frame: pl.DataFrame, aggregations: List[pl.Expr]) -> List[Dict[str, Any]]:
    if frame.is_empty():
        return []
    return frame.group_by("date").agg(aggregations).sort("date").to_dicts()


MAU_LOOKBACK = timedelta(days=29)


def _active_between(active: pl.DataFrame, start: date, end: date) -> int:
    return active.filter(pl.col("date").is_between(start, end)).get_column("player_id").n_unique()


def reduce_dau(frame: pl.DataFrame, **_: Any) -> List[DauRow]:
    rows = _by_date(frame, [
        pl.col("player_id").n_unique().alias("dau"),
        _distinct_players(_is(EventName.SESSION_START)).alias("session_users"),
        _distinct_players(_is(EventName.GAME_START)).alias("gaming_users"),
        _distinct_players(pl.col("platform") == "android").alias("android_users"),
        _distinct_players(pl.col("platform") == "ios").alias("ios_users"),
    ])
    active = frame.select("date", "player_id").unique()
    # Trailing 30 days ending on the row's date, limited to the window
    return [
        DauRow(mau=max(_active_between(active, row["date"] - MAU_LOOKBACK, row["date"]), row["dau"]), **row)
        for row in rows
    ]


def reduce_revenue(frame: pl.DataFrame, **_: Any) -> List[RevenueRow]:
    purchase = _is(EventName.IAP_PURCHASE)
    rows = _by_date(frame, [
        _count(purchase).alias("total_purchases"),
        _distinct_players(purchase).alias("paying_users"),
        pl.col("price_cents").fill_null(0).sum().alias("revenue_cents"),
        _count(purchase & (pl.col("product_type") == "gems")).alias("gem_purchases"),
        _count(purchase & (pl.col("product_type") == "hearts")).alias("heart_purchases"),
        _count(purchase & (pl.col("product_type") == "jet")).alias("jet_purchases"),
        _count(purchase & (pl.col("product_type") == "remove_ads")).alias("remove_ads_purchases"),
    ])
    result = []
    for row in rows:
        cents = row.pop("revenue_cents")
        result.append(RevenueRow(total_revenue_usd=(Decimal(cents) * CENTS).quantize(CENTS), **row))
    return result


def reduce_engagement(frame: pl.DataFrame, high_engagement_threshold: int = 300, **_: Any) -> List[EngagementRow]:
    rows = _by_date(frame, [
        pl.col("session_id").drop_nulls().n_unique().alias("total_sessions"),
        _count(_is(EventName.GAME_START)).alias("total_games"),
        pl.col("session_duration").fill_null(0).sum().alias("duration_sum"),
        _count(pl.col("session_duration").is_not_null()).alias("duration_count"),
        pl.col("games_in_session").fill_null(0).sum().alias("games_sum"),
        _count(pl.col("games_in_session").is_not_null()).alias("games_count"),
        _count(pl.col("session_duration") > high_engagement_threshold).alias("high_engagement_sessions"),
    ])
    result = []
    for row in rows:
        result.append(EngagementRow(
            date=row["date"],
            total_sessions=row["total_sessions"],
            total_games=row["total_games"],
            avg_session_duration=average(row["duration_sum"], row["duration_count"]),
            avg_games_per_session=average(row["games_sum"], row["games_count"]),
            high_engagement_sessions=row["high_engagement_sessions"],
        ))
    return result


def reduce_missions(frame: pl.DataFrame, **_: Any) -> List[MissionsRow]:
    mission = _is(EventName.MISSION_COMPLETE)
    achievement = _is(EventName.ACHIEVEMENT_UNLOCK)
    rows = _by_date(frame, [
        _count(mission).alias("missions_completed"),
        _distinct_players(mission).alias("users_completed_missions"),
        _distinct_players(
            _is(EventName.DAILY_MISSION_CYCLE_COMPLETE) & pl.col("all_missions_completed")
        ).alias("users_all_missions"),
        _count(achievement).alias("achievements_unlocked"),
        _distinct_players(achievement).alias("users_unlocked_achievements"),
        pl.col("achievements_count").fill_null(0).sum().alias("achievements_sum"),
        _count(pl.col("achievements_count").is_not_null()).alias("achievements_samples"),
    ])
    result = []
    for row in rows:
        total = row.pop("achievements_sum")
        samples = row.pop("achievements_samples")
        result.append(MissionsRow(avg_achievements_per_user=average(total, samples), **row))
    return result


def reduce_funnel(frame: pl.DataFrame, **_: Any) -> List[FunnelRow]:
    continued = _is(EventName.CONTINUE_USED)
    rows = _by_date(frame, [
        _count(_is(EventName.AD_SHOWN)).alias("ads_shown"),
        _count(_is(EventName.AD_COMPLETED)).alias("ads_completed"),
        _count(_is(EventName.AD_ABANDONED)).alias("ads_abandoned"),
        _count(continued).alias("continues_used"),
        _count(continued & (pl.col("continue_type") == "ad")).alias("continues_via_ad"),
        _count(continued & (pl.col("continue_type") == "gems")).alias("continues_via_gems"),
    ])
    return [
        FunnelRow(ad_completion_rate=percentage(row["ads_completed"], row["ads_shown"]), **row)
        for row in rows
    ]


def reduce_currency(frame: pl.DataFrame, **_: Any) -> List[CurrencyRow]:
    def ledger(event_name: EventName, currency_type: str) -> pl.Expr:
        selected = (_is(event_name) & (pl.col("currency_type") == currency_type)).fill_null(False)
        return pl.when(selected).then(pl.col("amount").fill_null(0)).otherwise(0).sum()

    rows = _by_date(frame, [
        ledger(EventName.CURRENCY_EARNED, "coins").alias("coins_earned"),
        ledger(EventName.CURRENCY_EARNED, "gems").alias("gems_earned"),
        ledger(EventName.CURRENCY_SPENT, "coins").alias("coins_spent"),
        ledger(EventName.CURRENCY_SPENT, "gems").alias("gems_spent"),
    ])
    return [CurrencyRow(**row) for row in rows]


def reduce_weekly(frame: pl.DataFrame, **_: Any) -> List[WeeklyRow]:
    purchase = _is(EventName.IAP_PURCHASE)
    weeks = frame.with_columns(pl.col("date").dt.truncate("1w"))
    rows = _by_date(weeks, [
        pl.col("player_id").n_unique().alias("wau"),
        _distinct_players(pl.col("platform") == "android").alias("android_users"),
        _distinct_players(pl.col("platform") == "ios").alias("ios_users"),
        pl.len().alias("total_events"),
        pl.col("event_name").n_unique().alias("unique_event_types"),
        _count(_is(EventName.GAME_START)).alias("games_started"),
        _distinct_players(purchase).alias("paying_users"),
        _count(purchase).alias("purchase_count"),
        pl.col("price_cents").fill_null(0).sum().alias("revenue_cents"),
    ])
    result = []
    for row in rows:
        cents = row.pop("revenue_cents")
        result.append(WeeklyRow(total_revenue_usd=(Decimal(cents) * CENTS).quantize(CENTS), **row))
    return result


Reducer = Callable[..., List[DailyRow]]

DAILY_FAMILIES: Dict[str, Reducer] = {
    "dau": reduce_dau,
    "revenue": reduce_revenue,
    "engagement": reduce_engagement,
    "missions": reduce_missions,
    "funnel": reduce_funnel,
    "currency": reduce_currency,
    "weekly": reduce_weekly,
}

ROW_MODELS: Dict[str, Type[DailyRow]] = {
    "dau": DauRow,
    "revenue": RevenueRow,
    "engagement": EngagementRow,
    "missions": MissionsRow,
    "funnel": FunnelRow,
    "currency": CurrencyRow,
    "weekly": WeeklyRow,
}
