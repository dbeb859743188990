"""
Rollup Store

Versioned storage for rollup snapshots. A publish writes the new version's
rows and flips the pointer in one transaction, so readers see either the
previous version or the new one, never a mix. Readers resolve the pointer
once per query. A publish older than the current version is refused.

Scheduler instances coordinate through a lease row: only the holder of an
unexpired lease computes and publishes.
"""

from datetime import date, datetime, timedelta
from typing import List, Optional

import structlog
from pydantic import BaseModel
from sqlalchemy import delete, insert, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from game_analytics.config import AnalyticsSettings, get_settings
from game_analytics.core.exceptions import NotFoundError, SchedulerOverlap
from game_analytics.database.connection import get_session_factory, storage_guard
from game_analytics.database.models import (
    RollupCohortRow,
    RollupDailyRow,
    RollupLease,
    RollupPointer,
    RollupVersion,
)
from game_analytics.rollups.cohorts import CohortRow
from game_analytics.rollups.families import DailyRow
from game_analytics.rollups.snapshot import FAMILY_MODELS, RollupSnapshot

logger = structlog.get_logger(__name__)

POINTER_NAME = "current"
LEASE_NAME = "rollup_scheduler"


class RollupVersionInfo(BaseModel):
    """Metadata of a published rollup version"""
    version_id: int
    window_start: date
    window_end: date
    computed_at: datetime
    event_count: int
    max_event_id: int

    @classmethod
    def from_record(cls, record: RollupVersion) -> "RollupVersionInfo":
        return cls(
            version_id=record.id,
            window_start=record.window_start,
            window_end=record.window_end,
            computed_at=record.computed_at,
            event_count=record.event_count,
            max_event_id=record.max_event_id,
        )


class RollupStore:
    """
    Versioned rollup tables behind a single pointer row.

    Example:
        store = RollupStore(session_factory)
        version_id = await store.publish(snapshot)
        rows = await store.get_daily_rows("dau", date(2024, 1, 1), date(2024, 1, 31))
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        settings: Optional[AnalyticsSettings] = None,
    ):
        self._session_factory = session_factory or get_session_factory()
        self.settings = settings or get_settings().analytics

    async def publish(self, snapshot: RollupSnapshot) -> int:
        """
        Write a snapshot as a new version and make it current.

        Returns:
            The new version id

        Raises:
            SchedulerOverlap: If the current version was computed after this snapshot
        """
        async with storage_guard("rollup_store"):
            async with self._session_factory() as session:
                async with session.begin():
                    pointer = (
                        await session.execute(
                            select(RollupPointer).where(RollupPointer.name == POINTER_NAME).with_for_update()
                        )
                    ).scalar_one_or_none()
                    if pointer is not None:
                        current = await session.get(RollupVersion, pointer.version_id)
                        if current is not None and current.computed_at > snapshot.computed_at:
                            raise SchedulerOverlap(
                                f"Snapshot computed at {snapshot.computed_at.isoformat()} is older than "
                                f"published version {current.id}"
                            )

                    version = RollupVersion(
                        window_start=snapshot.window_start,
                        window_end=snapshot.window_end,
                        computed_at=snapshot.computed_at,
                        event_count=snapshot.event_count,
                        max_event_id=snapshot.max_event_id,
                    )
                    session.add(version)
                    await session.flush()

                    daily_rows = [
                        {
                            "version_id": version.id,
                            "family": family,
                            "bucket_date": row.date,
                            "metrics": row.model_dump(mode="json", exclude={"date"}),
                        }
                        for family, rows in snapshot.daily.items()
                        for row in rows
                    ]
                    if daily_rows:
                        await session.execute(insert(RollupDailyRow), daily_rows)

                    cohort_rows = [
                        {"version_id": version.id, **row.model_dump()}
                        for row in snapshot.cohorts
                    ]
                    if cohort_rows:
                        await session.execute(insert(RollupCohortRow), cohort_rows)

                    if pointer is None:
                        session.add(RollupPointer(name=POINTER_NAME, version_id=version.id))
                    else:
                        pointer.version_id = version.id
                        pointer.updated_at = snapshot.computed_at

                version_id = version.id

        logger.info(
            "Rollup version published",
            version_id=version_id,
            rows=snapshot.row_count,
            window_start=snapshot.window_start.isoformat(),
            window_end=snapshot.window_end.isoformat(),
        )
        await self.collect_garbage()
        return version_id

    async def collect_garbage(self) -> int:
        """Delete versions beyond `retained_rollup_versions`, never the current one"""
        async with storage_guard("rollup_store"):
            async with self._session_factory() as session:
                async with session.begin():
                    current = await self._current_version_id(session)
                    stale = (
                        await session.execute(
                            select(RollupVersion.id)
                            .order_by(RollupVersion.id.desc())
                            .offset(self.settings.retained_rollup_versions)
                        )
                    ).scalars().all()
                    stale = [version_id for version_id in stale if version_id != current]
                    if stale:
                        await session.execute(delete(RollupDailyRow).where(RollupDailyRow.version_id.in_(stale)))
                        await session.execute(delete(RollupCohortRow).where(RollupCohortRow.version_id.in_(stale)))
                        await session.execute(delete(RollupVersion).where(RollupVersion.id.in_(stale)))

        if stale:
            logger.debug("Old rollup versions removed", versions=stale)
        return len(stale)

    async def acquire_lease(self, holder: str, now: datetime, ttl_seconds: float) -> bool:
        """
        Take or renew the scheduler lease.

        Succeeds when no lease exists, the existing one has expired, or
        `holder` already holds it.
        """
        expires_at = now + timedelta(seconds=ttl_seconds)
        async with storage_guard("rollup_store"):
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        update(RollupLease)
                        .where(
                            RollupLease.name == LEASE_NAME,
                            or_(RollupLease.expires_at <= now, RollupLease.holder == holder),
                        )
                        .values(holder=holder, acquired_at=now, expires_at=expires_at)
                    )
                if result.rowcount == 1:
                    return True

                try:
                    async with session.begin():
                        session.add(
                            RollupLease(name=LEASE_NAME, holder=holder, acquired_at=now, expires_at=expires_at)
                        )
                except IntegrityError:
                    return False
        return True

    async def release_lease(self, holder: str) -> bool:
        """Drop the lease if `holder` still holds it"""
        async with storage_guard("rollup_store"):
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        delete(RollupLease).where(RollupLease.name == LEASE_NAME, RollupLease.holder == holder)
                    )
        return result.rowcount == 1

    async def _current_version_id(self, session: AsyncSession) -> Optional[int]:
        return (
            await session.execute(
                select(RollupPointer.version_id).where(RollupPointer.name == POINTER_NAME)
            )
        ).scalar_one_or_none()

    async def current_version(self) -> Optional[RollupVersionInfo]:
        """Metadata of the published version, None before the first publish"""
        async with storage_guard("rollup_store"):
            async with self._session_factory() as session:
                version_id = await self._current_version_id(session)
                if version_id is None:
                    return None
                record = await session.get(RollupVersion, version_id)
        return RollupVersionInfo.from_record(record) if record is not None else None

    async def get_daily_rows(
        self,
        family: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
        version_id: Optional[int] = None,
    ) -> List[DailyRow]:
        """
        Rows of one family ordered by date, both bounds inclusive.

        Raises:
            NotFoundError: If the family is unknown
        """
        model = FAMILY_MODELS.get(family)
        if model is None:
            raise NotFoundError("RollupFamily", family)

        async with storage_guard("rollup_store"):
            async with self._session_factory() as session:
                if version_id is None:
                    version_id = await self._current_version_id(session)
                    if version_id is None:
                        return []

                query = select(RollupDailyRow).where(
                    RollupDailyRow.version_id == version_id,
                    RollupDailyRow.family == family,
                )
                if start is not None:
                    query = query.where(RollupDailyRow.bucket_date >= start)
                if end is not None:
                    query = query.where(RollupDailyRow.bucket_date <= end)
                records = (await session.execute(query.order_by(RollupDailyRow.bucket_date))).scalars().all()

        return [model.model_validate({"date": record.bucket_date, **record.metrics}) for record in records]

    async def get_cohort_rows(
        self,
        start_week: Optional[date] = None,
        end_week: Optional[date] = None,
        version_id: Optional[int] = None,
    ) -> List[CohortRow]:
        """Cohort rows ordered by install week, both bounds inclusive"""
        async with storage_guard("rollup_store"):
            async with self._session_factory() as session:
                if version_id is None:
                    version_id = await self._current_version_id(session)
                    if version_id is None:
                        return []

                query = select(RollupCohortRow).where(RollupCohortRow.version_id == version_id)
                if start_week is not None:
                    query = query.where(RollupCohortRow.install_week >= start_week)
                if end_week is not None:
                    query = query.where(RollupCohortRow.install_week <= end_week)
                records = (await session.execute(query.order_by(RollupCohortRow.install_week))).scalars().all()

        return [
            CohortRow(
                install_week=record.install_week,
                cohort_size=record.cohort_size,
                day1_retained=record.day1_retained,
                day7_retained=record.day7_retained,
                day30_retained=record.day30_retained,
                day1_retention_rate=record.day1_retention_rate,
                day7_retention_rate=record.day7_retention_rate,
                day30_retention_rate=record.day30_retention_rate,
            )
            for record in records
        ]
