"""
Daily KPI Summary

Joins every metric family on date and adds the derived ratios dashboards
chart directly.
"""

from decimal import Decimal
from typing import Dict, List, Optional

from game_analytics.rollups.families import (
    CurrencyRow,
    DailyRow,
    DauRow,
    EngagementRow,
    FunnelRow,
    MissionsRow,
    RevenueRow,
)
from game_analytics.rollups.ratios import percentage, ratio


class SummaryRow(DauRow, EngagementRow, RevenueRow, MissionsRow, FunnelRow, CurrencyRow):
    """All family columns for one date plus derived ratios"""
    arpu: float = 0.0
    arppu: float = 0.0
    avg_continues_per_user: float = 0.0
    mission_completion_rate: float = 0.0


def _columns(row: Optional[DailyRow]) -> Dict:
    if row is None:
        return {}
    values = row.model_dump()
    values.pop("date")
    return values


def build_summary_row(
    dau: DauRow,
    revenue: Optional[RevenueRow] = None,
    engagement: Optional[EngagementRow] = None,
    missions: Optional[MissionsRow] = None,
    funnel: Optional[FunnelRow] = None,
    currency: Optional[CurrencyRow] = None,
) -> SummaryRow:
    """
    One summary row. Families missing for the date contribute zeros; every
    ratio falls back to 0 when its denominator is 0.
    """
    revenue_usd = revenue.total_revenue_usd if revenue else Decimal("0.00")
    paying_users = revenue.paying_users if revenue else 0
    continues_used = funnel.continues_used if funnel else 0
    users_all = missions.users_all_missions if missions else 0
    users_completed = missions.users_completed_missions if missions else 0

    return SummaryRow(
        date=dau.date,
        **_columns(dau),
        **_columns(engagement),
        **_columns(revenue),
        **_columns(missions),
        **_columns(funnel),
        **_columns(currency),
        arpu=ratio(revenue_usd, dau.dau, places=4),
        arppu=ratio(revenue_usd, paying_users, places=2),
        avg_continues_per_user=ratio(continues_used, dau.dau, places=2),
        mission_completion_rate=percentage(users_all, users_completed),
    )


def build_summary(families: Dict[str, List[DailyRow]]) -> List[SummaryRow]:
    """Summary rows for every date with DAU, ordered by date"""
    indexed = {
        name: {row.date: row for row in rows}
        for name, rows in families.items()
    }
    return [
        build_summary_row(
            dau=dau,
            revenue=indexed.get("revenue", {}).get(dau.date),
            engagement=indexed.get("engagement", {}).get(dau.date),
            missions=indexed.get("missions", {}).get(dau.date),
            funnel=indexed.get("funnel", {}).get(dau.date),
            currency=indexed.get("currency", {}).get(dau.date),
        )
        for dau in families.get("dau", [])
    ]
