"""
Unit Tests - Rollup Store and Scheduler
"""
import asyncio
from datetime import date, datetime, timedelta

import pytest
from sqlalchemy import func, select

from game_analytics.core.exceptions import NotFoundError, SchedulerOverlap
from game_analytics.database.models import RollupDailyRow, RollupVersion
from game_analytics.rollups import RollupScheduler, RollupStore, compute_snapshot

DAY = date(2024, 3, 14)


@pytest.fixture
def rollup_store(session_factory, analytics_settings):
    return RollupStore(session_factory, analytics_settings)


@pytest.fixture
def scheduler(event_log, rollup_store, analytics_settings, clock):
    return RollupScheduler(event_log, rollup_store, analytics_settings, clock=clock)


async def seed(event_log, players=3, on=DAY):
    for i in range(players):
        await event_log.append({
            "player_id": f"p{i}",
            "event_name": "game_start",
            "platform": "ios",
            "created_at": datetime.combine(on, datetime.min.time()) + timedelta(hours=i),
        })


def snapshot_for(make_event, players, computed_at):
    events = [make_event("app_launch", player_id=f"p{i}", on=DAY) for i in range(players)]
    return compute_snapshot(events, DAY, DAY, computed_at)


class TestRollupStore:
    """Tests for versioned publish and reads"""

    async def test_nothing_published(self, rollup_store):
        assert await rollup_store.current_version() is None
        assert await rollup_store.get_daily_rows("dau") == []
        assert await rollup_store.get_cohort_rows() == []

    async def test_publish_and_read(self, rollup_store, make_event, clock):
        version_id = await rollup_store.publish(snapshot_for(make_event, 2, clock.now))

        info = await rollup_store.current_version()
        [row] = await rollup_store.get_daily_rows("dau", DAY, DAY)

        assert info.version_id == version_id
        assert info.window_start == DAY
        assert row.dau == 2

    async def test_publish_switches_every_family_together(self, rollup_store, make_event, clock):
        first = await rollup_store.publish(snapshot_for(make_event, 2, clock.now))
        second = await rollup_store.publish(snapshot_for(make_event, 4, clock.now))

        [dau] = await rollup_store.get_daily_rows("dau")
        [summary] = await rollup_store.get_daily_rows("summary")
        [old] = await rollup_store.get_daily_rows("dau", version_id=first)

        assert second > first
        assert dau.dau == summary.dau == 4
        assert old.dau == 2

    async def test_garbage_collection_keeps_recent_versions(
        self, rollup_store, make_event, clock, session_factory, analytics_settings
    ):
        versions = [await rollup_store.publish(snapshot_for(make_event, n, clock.now)) for n in (1, 2, 3)]

        async with session_factory() as session:
            kept = (await session.execute(select(RollupVersion.id).order_by(RollupVersion.id))).scalars().all()
            orphaned = (
                await session.execute(
                    select(func.count()).select_from(RollupDailyRow).where(RollupDailyRow.version_id == versions[0])
                )
            ).scalar()

        assert len(kept) == analytics_settings.retained_rollup_versions
        assert kept == versions[1:]
        assert orphaned == 0

    async def test_date_range_inclusive(self, rollup_store, make_event, clock):
        events = [make_event("app_launch", on=DAY + timedelta(days=d)) for d in range(3)]
        await rollup_store.publish(compute_snapshot(events, DAY, DAY + timedelta(days=2), clock.now))

        rows = await rollup_store.get_daily_rows("dau", DAY + timedelta(days=1), DAY + timedelta(days=2))

        assert [r.date for r in rows] == [DAY + timedelta(days=1), DAY + timedelta(days=2)]

    async def test_unknown_family(self, rollup_store):
        with pytest.raises(NotFoundError):
            await rollup_store.get_daily_rows("retention_by_moon_phase")

    async def test_older_snapshot_not_published(self, rollup_store, make_event, clock):
        newer = await rollup_store.publish(snapshot_for(make_event, 3, clock.now))

        with pytest.raises(SchedulerOverlap):
            await rollup_store.publish(snapshot_for(make_event, 1, clock.now - timedelta(minutes=5)))

        [row] = await rollup_store.get_daily_rows("dau")
        assert (await rollup_store.current_version()).version_id == newer
        assert row.dau == 3


class TestRollupLease:
    """Tests for the cross-instance scheduler lease"""

    async def test_lease_is_exclusive_until_expiry(self, rollup_store, clock):
        assert await rollup_store.acquire_lease("a", clock.now, 60)
        assert not await rollup_store.acquire_lease("b", clock.now, 60)
        assert not await rollup_store.acquire_lease("b", clock.now + timedelta(seconds=59), 60)

        assert await rollup_store.acquire_lease("b", clock.now + timedelta(seconds=60), 60)
        assert not await rollup_store.acquire_lease("a", clock.now + timedelta(seconds=61), 60)

    async def test_holder_renews(self, rollup_store, clock):
        assert await rollup_store.acquire_lease("a", clock.now, 60)
        assert await rollup_store.acquire_lease("a", clock.now + timedelta(seconds=30), 60)
        assert not await rollup_store.acquire_lease("b", clock.now + timedelta(seconds=70), 60)

    async def test_release_only_by_holder(self, rollup_store, clock):
        await rollup_store.acquire_lease("a", clock.now, 60)

        assert not await rollup_store.release_lease("b")
        assert await rollup_store.release_lease("a")
        assert await rollup_store.acquire_lease("b", clock.now, 60)


class TestRollupScheduler:
    """Tests for the periodic recompute"""

    async def test_window_is_trailing_days(self, scheduler, clock, analytics_settings):
        start, end = scheduler.window()

        assert end == clock.now.date()
        assert (end - start).days == analytics_settings.rollup_window_days

    async def test_run_once_publishes(self, scheduler, event_log, rollup_store):
        await seed(event_log)

        result = await scheduler.run_once()

        [row] = await rollup_store.get_daily_rows("dau", DAY, DAY)
        assert result.version_id == (await rollup_store.current_version()).version_id
        assert result.event_count == 3
        assert row.dau == 3
        assert row.ios_users == 3
        assert scheduler.last_result == result

    async def test_events_outside_window_ignored(self, scheduler, event_log, rollup_store, clock):
        await seed(event_log, on=clock.now.date() - timedelta(days=200))

        result = await scheduler.run_once()

        assert result.event_count == 0
        assert await rollup_store.get_daily_rows("dau") == []

    async def test_overlapping_run_skipped(self, scheduler, event_log, monkeypatch):
        await seed(event_log)
        release = asyncio.Event()
        real_compute = scheduler.compute

        async def slow_compute(*args):
            await release.wait()
            return await real_compute(*args)

        monkeypatch.setattr(scheduler, "compute", slow_compute)

        first = asyncio.create_task(scheduler.run_once())
        await asyncio.sleep(0)
        assert scheduler.in_progress

        assert await scheduler.run_once() is None

        release.set()
        assert (await first) is not None
        assert not scheduler.in_progress

    async def test_second_instance_skipped_while_lease_held(
        self, scheduler, event_log, rollup_store, analytics_settings, clock, monkeypatch
    ):
        await seed(event_log)
        other = RollupScheduler(event_log, rollup_store, analytics_settings, clock=clock)
        release = asyncio.Event()
        computing = asyncio.Event()
        real_compute = scheduler.compute

        async def slow_compute(*args):
            computing.set()
            await release.wait()
            return await real_compute(*args)

        monkeypatch.setattr(scheduler, "compute", slow_compute)

        first = asyncio.create_task(scheduler.run_once())
        await computing.wait()

        assert await other.run_once() is None

        release.set()
        assert (await first) is not None
        assert (await other.run_once()) is not None

    async def test_run_overtaken_by_newer_version_is_discarded(
        self, scheduler, event_log, rollup_store, make_event, clock, monkeypatch
    ):
        await seed(event_log)
        started_at = clock.now
        real_compute = scheduler.compute

        async def overtaken_compute(*args):
            snapshot = await real_compute(*args)
            await rollup_store.publish(snapshot_for(make_event, 5, started_at + timedelta(minutes=1)))
            return snapshot

        monkeypatch.setattr(scheduler, "compute", overtaken_compute)

        assert await scheduler.run_once() is None

        [row] = await rollup_store.get_daily_rows("dau", DAY, DAY)
        assert row.dau == 5
        assert scheduler.last_error is None

    async def test_cancelled_run_leaves_published_version(
        self, scheduler, event_log, rollup_store, monkeypatch
    ):
        await seed(event_log)
        published = await scheduler.run_once()

        started = asyncio.Event()

        async def hanging_compute(*args):
            started.set()
            await asyncio.Event().wait()

        monkeypatch.setattr(scheduler, "compute", hanging_compute)

        task = asyncio.create_task(scheduler.run_once())
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert (await rollup_store.current_version()).version_id == published.version_id
        assert not scheduler.in_progress

    async def test_failed_run_publishes_nothing(self, scheduler, rollup_store, monkeypatch):
        async def broken_compute(*args):
            raise RuntimeError("reducer exploded")

        monkeypatch.setattr(scheduler, "compute", broken_compute)

        await scheduler.trigger()

        assert await rollup_store.current_version() is None
        assert scheduler.last_error == "reducer exploded"

    async def test_start_runs_immediately_and_stops(self, scheduler, event_log):
        await seed(event_log)

        await scheduler.start()
        for _ in range(200):
            if scheduler.last_result is not None:
                break
            await asyncio.sleep(0.01)
        await scheduler.stop()

        assert scheduler.last_result is not None
        assert not scheduler.running
