"""
Unit Tests - Event Stream Consumer
"""
import asyncio
from datetime import datetime

import pytest
from sqlalchemy import delete

from game_analytics.aggregation import ConsumerConfig, EventStreamConsumer
from game_analytics.aggregation.stream_consumer import partition_for
from game_analytics.core.exceptions import StorageUnavailable
from game_analytics.database.models import GameEvent

DAY = datetime(2024, 3, 1, 9, 0)


def payload(player_id="p1", event_name="session_start", **fields):
    return {"player_id": player_id, "event_name": event_name, "created_at": DAY, **fields}


@pytest.fixture
def consumer(event_log, aggregator, session_factory, clock):
    config = ConsumerConfig(workers=3, batch_size=100, poll_interval_seconds=0.01, gap_grace_seconds=5.0)
    return EventStreamConsumer(event_log, aggregator, session_factory, config, clock=clock)


class TestRunOnce:
    """Tests for a single poll"""

    async def test_applies_events_and_advances_watermark(self, consumer, event_log, counter_store):
        ids = [await event_log.append(payload(player_id=f"p{i % 4}")) for i in range(10)]

        result = await consumer.run_once()

        assert result.events_read == 10
        assert result.applied == 10
        assert result.watermark == ids[-1]
        total = sum([(await counter_store.get(f"p{i}")).total_sessions for i in range(4)])
        assert total == 10

    async def test_idle_poll(self, consumer):
        result = await consumer.run_once()

        assert result.events_read == 0
        assert result.watermark == 0

    async def test_watermark_persists_across_instances(
        self, consumer, event_log, aggregator, session_factory, clock
    ):
        last = 0
        for _ in range(3):
            last = await event_log.append(payload())
        await consumer.run_once()

        restarted = EventStreamConsumer(event_log, aggregator, session_factory, consumer.config, clock=clock)

        assert await restarted.load_watermark() == last
        assert (await restarted.run_once()).events_read == 0

    async def test_each_event_applied_once_across_polls(self, consumer, event_log, counter_store):
        await event_log.append(payload())
        await consumer.run_once()
        await event_log.append(payload())
        await consumer.run_once()
        await consumer.run_once()

        assert (await counter_store.get("p1")).total_sessions == 2

    async def test_failed_event_redelivered_without_double_counting(
        self, consumer, event_log, counter_store, aggregator, monkeypatch
    ):
        first = await event_log.append(payload("flaky"))
        second = await event_log.append(payload("steady"))

        real_upsert = aggregator.store.upsert
        failures = {"remaining": 1}

        async def upsert(player_id, delta_fn, **kwargs):
            if player_id == "flaky" and failures["remaining"]:
                failures["remaining"] -= 1
                raise StorageUnavailable("counter_store", "connection reset")
            return await real_upsert(player_id, delta_fn, **kwargs)

        monkeypatch.setattr(aggregator.store, "upsert", upsert)

        result = await consumer.run_once()
        assert result.failed == 1
        assert result.watermark == first - 1

        result = await consumer.run_once()
        assert result.failed == 0
        assert result.watermark == second

        assert (await counter_store.get("flaky")).total_sessions == 1
        assert (await counter_store.get("steady")).total_sessions == 1


class TestIdGaps:
    """Tests for holes left by uncommitted or rolled-back appends"""

    async def _make_gap(self, event_log, session_factory):
        ids = [await event_log.append(payload()) for _ in range(3)]
        async with session_factory() as session:
            await session.execute(delete(GameEvent).where(GameEvent.id == ids[1]))
            await session.commit()
        return ids

    async def test_recent_gap_holds_watermark(self, consumer, event_log, session_factory, counter_store):
        ids = await self._make_gap(event_log, session_factory)

        result = await consumer.run_once()

        assert result.watermark == ids[0]
        assert (await counter_store.get("p1")).total_sessions == 1

    async def test_gap_older_than_grace_is_skipped(
        self, consumer, event_log, session_factory, counter_store, clock
    ):
        ids = await self._make_gap(event_log, session_factory)
        await consumer.run_once()

        clock.advance(seconds=10)
        result = await consumer.run_once()

        assert result.watermark == ids[2]
        assert (await counter_store.get("p1")).total_sessions == 2

    async def test_late_commit_into_skipped_gap_is_counted(
        self, consumer, event_log, session_factory, counter_store, clock
    ):
        ids = await self._make_gap(event_log, session_factory)
        await consumer.run_once()
        clock.advance(seconds=10)
        await consumer.run_once()
        assert consumer.pending_gaps == [ids[1]]

        async with session_factory() as session:
            session.add(
                GameEvent(
                    id=ids[1],
                    player_id="p1",
                    event_name="session_start",
                    created_at=DAY,
                    ingested_at=clock(),
                )
            )
            await session.commit()

        result = await consumer.run_once()

        assert result.recovered == 1
        assert result.watermark == ids[2]
        assert consumer.pending_gaps == []
        assert (await counter_store.get("p1")).total_sessions == 3

    async def test_gap_abandoned_after_horizon(self, consumer, event_log, session_factory, counter_store, clock):
        ids = await self._make_gap(event_log, session_factory)
        await consumer.run_once()
        clock.advance(seconds=10)
        await consumer.run_once()

        clock.advance(seconds=consumer.config.gap_abandon_seconds)
        result = await consumer.run_once()

        assert result.recovered == 0
        assert consumer.pending_gaps == []

        async with session_factory() as session:
            session.add(GameEvent(id=ids[1], player_id="p1", event_name="session_start", created_at=DAY))
            await session.commit()
        await consumer.run_once()

        assert (await counter_store.get("p1")).total_sessions == 2


class TestLifecycle:
    """Tests for background start and stop"""

    async def test_start_drains_and_stops(self, consumer, event_log, counter_store):
        for _ in range(5):
            await event_log.append(payload())

        await consumer.start()
        assert consumer.running
        for _ in range(200):
            if consumer.watermark == 5:
                break
            await asyncio.sleep(0.01)
        await consumer.stop()

        assert not consumer.running
        assert (await counter_store.get("p1")).total_sessions == 5

    async def test_unexpected_poll_error_does_not_stop_consumer(
        self, consumer, event_log, counter_store, monkeypatch
    ):
        for _ in range(3):
            await event_log.append(payload())

        real_run_once = consumer.run_once
        failures = {"remaining": 1}

        async def run_once():
            if failures["remaining"]:
                failures["remaining"] -= 1
                raise OverflowError("int too big to convert")
            return await real_run_once()

        monkeypatch.setattr(consumer, "run_once", run_once)

        await consumer.start()
        for _ in range(200):
            if consumer.watermark == 3:
                break
            await asyncio.sleep(0.01)
        assert consumer.running
        await consumer.stop()

        assert failures["remaining"] == 0
        assert (await counter_store.get("p1")).total_sessions == 3


class TestPartitioning:
    """Tests for player hash partitioning"""

    def test_partition_is_stable(self):
        assert partition_for("player-42", 4) == partition_for("player-42", 4)
        assert {partition_for(f"p{i}", 4) for i in range(100)} == {0, 1, 2, 3}
