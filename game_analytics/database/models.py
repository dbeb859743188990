"""
Database Models

Storage layout for the analytics core:

Event Log:
- GameEvent: append-only player action log keyed by a monotonic id

Counter Store:
- PlayerCounterRecord: one row of cumulative counters per player, versioned
  for compare-and-swap updates
- ConsumerWatermark: last event id a delivery consumer has fully applied

Rollups (versioned, swapped atomically through RollupPointer):
- RollupVersion: one row per scheduler run
- RollupDailyRow: one row per (version, family, date)
- RollupCohortRow: one row per (version, install week)
- RollupPointer: names the version readers should see
- RollupLease: held by the scheduler instance currently recomputing
"""

from datetime import datetime, date
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# SQLite only autoincrements INTEGER PRIMARY KEY columns
BigIntId = BigInteger().with_variant(Integer(), "sqlite")
JSONDocument = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


# =============================================================================
# EVENT LOG
# =============================================================================

class GameEvent(Base):
    """
    Event Log Table

    Immutable player action events. Rows are only ever inserted, and deleted
    by retention eviction once rollups no longer cover them.
    """
    __tablename__ = "game_events"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    player_id: Mapped[str] = mapped_column(String(255), nullable=False)
    event_name: Mapped[str] = mapped_column(String(100), nullable=False)
    event_category: Mapped[str] = mapped_column(String(50), nullable=False, default="other")
    event_priority: Mapped[str] = mapped_column(String(20), nullable=False, default="low")
    parameters: Mapped[dict] = mapped_column(JSONDocument, nullable=False, default=dict)
    session_id: Mapped[Optional[str]] = mapped_column(String(255))
    platform: Mapped[str] = mapped_column(String(20), nullable=False, default="unknown")
    app_version: Mapped[Optional[str]] = mapped_column(String(20))
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    ingested_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_game_events_created_at", "created_at"),
        Index("ix_game_events_player_created", "player_id", "created_at"),
        Index("ix_game_events_name_created", "event_name", "created_at"),
    )


# =============================================================================
# COUNTER STORE
# =============================================================================

class PlayerCounterRecord(Base):
    """
    Player Counters Table

    Cumulative per-player statistics. Written only through the counter store's
    compare-and-swap upsert; `version` increments on every successful write.
    """
    __tablename__ = "player_counters"

    player_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Lifecycle
    install_date: Mapped[date] = mapped_column(Date, nullable=False)
    last_seen_date: Mapped[date] = mapped_column(Date, nullable=False)
    platform: Mapped[Optional[str]] = mapped_column(String(20))
    app_version: Mapped[Optional[str]] = mapped_column(String(20))

    # Engagement
    total_sessions: Mapped[int] = mapped_column(Integer, default=0)
    total_play_time_seconds: Mapped[int] = mapped_column(BigInteger, default=0)
    high_engagement_sessions: Mapped[int] = mapped_column(Integer, default=0)

    # Gameplay
    total_games_played: Mapped[int] = mapped_column(Integer, default=0)
    best_score: Mapped[int] = mapped_column(BigInteger, default=0)
    total_score: Mapped[int] = mapped_column(BigInteger, default=0)

    # Missions and achievements
    missions_completed: Mapped[int] = mapped_column(Integer, default=0)
    achievements_unlocked: Mapped[int] = mapped_column(Integer, default=0)

    # Continues
    continues_used_total: Mapped[int] = mapped_column(Integer, default=0)
    continues_via_ad: Mapped[int] = mapped_column(Integer, default=0)
    continues_via_gems: Mapped[int] = mapped_column(Integer, default=0)

    # Ad funnel
    ads_shown_total: Mapped[int] = mapped_column(Integer, default=0)
    ads_completed_total: Mapped[int] = mapped_column(Integer, default=0)
    ads_abandoned_total: Mapped[int] = mapped_column(Integer, default=0)

    # Currency ledgers
    coins_earned_total: Mapped[int] = mapped_column(BigInteger, default=0)
    gems_earned_total: Mapped[int] = mapped_column(BigInteger, default=0)
    coins_spent_total: Mapped[int] = mapped_column(BigInteger, default=0)
    gems_spent_total: Mapped[int] = mapped_column(BigInteger, default=0)

    # Monetization
    total_purchases: Mapped[int] = mapped_column(Integer, default=0)
    total_revenue_usd: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)

    # Retention
    day1_retained: Mapped[bool] = mapped_column(Boolean, default=False)
    day7_retained: Mapped[bool] = mapped_column(Boolean, default=False)
    day30_retained: Mapped[bool] = mapped_column(Boolean, default=False)

    # Errors
    total_errors: Mapped[int] = mapped_column(Integer, default=0)
    fatal_errors: Mapped[int] = mapped_column(Integer, default=0)

    # Audit
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_player_counters_install_date", "install_date"),
        Index("ix_player_counters_last_seen", "last_seen_date"),
    )


class ConsumerWatermark(Base):
    """
    Consumer Watermark Table

    Highest event id below which every event has been applied by the named
    consumer.
    """
    __tablename__ = "consumer_watermarks"

    consumer_name: Mapped[str] = mapped_column(String(100), primary_key=True)
    last_event_id: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )


# =============================================================================
# ROLLUPS
# =============================================================================

class RollupVersion(Base):
    """
    Rollup Version Table

    One row per scheduler run that reached publication.
    """
    __tablename__ = "rollup_versions"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    window_start: Mapped[date] = mapped_column(Date, nullable=False)
    window_end: Mapped[date] = mapped_column(Date, nullable=False)
    computed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    event_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_event_id: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


class RollupDailyRow(Base):
    """
    Daily Bucket Table

    Metric-family rows keyed by (version, family, date). `metrics` holds the
    family's columns as a JSON document.
    """
    __tablename__ = "rollup_daily_rows"

    version_id: Mapped[int] = mapped_column(
        BigIntId, ForeignKey("rollup_versions.id", ondelete="CASCADE"), primary_key=True
    )
    family: Mapped[str] = mapped_column(String(32), primary_key=True)
    bucket_date: Mapped[date] = mapped_column(Date, primary_key=True)
    metrics: Mapped[dict] = mapped_column(JSONDocument, nullable=False)


class RollupCohortRow(Base):
    """
    Cohort Retention Table

    One row per install week meeting the minimum cohort size.
    """
    __tablename__ = "rollup_cohort_rows"

    version_id: Mapped[int] = mapped_column(
        BigIntId, ForeignKey("rollup_versions.id", ondelete="CASCADE"), primary_key=True
    )
    install_week: Mapped[date] = mapped_column(Date, primary_key=True)
    cohort_size: Mapped[int] = mapped_column(Integer, nullable=False)
    day1_retained: Mapped[int] = mapped_column(Integer, nullable=False)
    day7_retained: Mapped[int] = mapped_column(Integer, nullable=False)
    day30_retained: Mapped[int] = mapped_column(Integer, nullable=False)
    day1_retention_rate: Mapped[float] = mapped_column(Float, nullable=False)
    day7_retention_rate: Mapped[float] = mapped_column(Float, nullable=False)
    day30_retention_rate: Mapped[float] = mapped_column(Float, nullable=False)


class RollupPointer(Base):
    """
    Rollup Pointer Table

    Single named row pointing at the version dashboards read. Flipping it is
    the only step that makes a new rollup visible.
    """
    __tablename__ = "rollup_pointer"

    name: Mapped[str] = mapped_column(String(32), primary_key=True)
    version_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )


class RollupLease(Base):
    """
    Rollup Lease Table

    Named lease a scheduler instance must hold while it computes and
    publishes. A lease past `expires_at` may be taken over by any instance.
    """
    __tablename__ = "rollup_leases"

    name: Mapped[str] = mapped_column(String(32), primary_key=True)
    holder: Mapped[str] = mapped_column(String(64), nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
