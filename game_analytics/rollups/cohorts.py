"""
Cohort Retention

Buckets players by the ISO week of their first event in the window and
measures how many came back exactly 1, 7 and 30 days after install.
"""

from datetime import date
from typing import List

import polars as pl
from pydantic import BaseModel, ConfigDict

from game_analytics.rollups.ratios import percentage

RETENTION_DAYS = (1, 7, 30)


class CohortRow(BaseModel):
    """Retention for one install week"""
    model_config = ConfigDict(frozen=True)

    install_week: date
    cohort_size: int
    day1_retained: int = 0
    day7_retained: int = 0
    day30_retained: int = 0
    day1_retention_rate: float = 0.0
    day7_retention_rate: float = 0.0
    day30_retention_rate: float = 0.0


def compute_cohorts(frame: pl.DataFrame, min_size: int = 5) -> List[CohortRow]:
    """
    Cohort rows ordered by install week.

    Args:
        frame: Event frame with at least `player_id` and `date`
        min_size: Cohorts with fewer distinct players produce no row
    """
    if frame.is_empty():
        return []

    activity = frame.select("player_id", "date").unique()

    installs = activity.group_by("player_id").agg(
        pl.col("date").min().alias("install_date"),
    ).with_columns(
        pl.col("install_date").dt.truncate("1w").alias("install_week"),
    )

    retention = activity.join(installs, on="player_id").with_columns(
        (pl.col("date") - pl.col("install_date")).dt.total_days().alias("days_since_install"),
    )

    cohorts = (
        retention.group_by("install_week")
        .agg([
            pl.col("player_id").n_unique().alias("cohort_size"),
            *[
                pl.col("player_id").filter(pl.col("days_since_install") == days).n_unique().alias(f"day{days}_retained")
                for days in RETENTION_DAYS
            ],
        ])
        .filter(pl.col("cohort_size") >= min_size)
        .sort("install_week")
    )

    rows = []
    for row in cohorts.to_dicts():
        rates = {
            f"day{days}_retention_rate": percentage(row[f"day{days}_retained"], row["cohort_size"])
            for days in RETENTION_DAYS
        }
        rows.append(CohortRow(**row, **rates))
    return rows
