"""
Test Suite Configuration
"""
from datetime import date, datetime, timedelta
from typing import Any, Dict, Optional

import pytest

from game_analytics.aggregation import CounterStore, IncrementalAggregator
from game_analytics.config import AnalyticsSettings, Settings
from game_analytics.database.connection import create_engine_for_url, create_session_factory, create_tables
from game_analytics.ingestion import Event, EventLog
from game_analytics.pipeline import AnalyticsPipeline


class FakeClock:
    """Settable clock injected wherever components read the current time"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 3, 15, 12, 0, 0))


@pytest.fixture
def analytics_settings() -> AnalyticsSettings:
    """Small pages and fast retries so tests exercise paging and backoff quickly"""
    return AnalyticsSettings(
        rollup_window_days=90,
        cohort_min_size=5,
        retained_rollup_versions=2,
        scan_page_size=3,
        counter_max_attempts=5,
        counter_backoff_base_seconds=0.001,
        counter_backoff_max_seconds=0.002,
        aggregator_workers=3,
        aggregator_batch_size=100,
        aggregator_poll_interval_seconds=0.01,
        watermark_gap_grace_seconds=5.0,
    )


@pytest.fixture
def test_settings(analytics_settings) -> Settings:
    """Create test settings"""
    return Settings(analytics=analytics_settings)


@pytest.fixture
async def test_engine(tmp_path):
    """File-backed SQLite so concurrent sessions see each other's commits"""
    engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'analytics.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return create_session_factory(test_engine)


@pytest.fixture
def event_log(session_factory, analytics_settings, clock) -> EventLog:
    return EventLog(session_factory, analytics_settings, clock=clock)


@pytest.fixture
def counter_store(session_factory, analytics_settings) -> CounterStore:
    return CounterStore(session_factory, analytics_settings)


@pytest.fixture
def aggregator(counter_store, analytics_settings) -> IncrementalAggregator:
    return IncrementalAggregator(counter_store, analytics_settings)


@pytest.fixture
def pipeline(session_factory, test_settings, clock) -> AnalyticsPipeline:
    return AnalyticsPipeline(session_factory, test_settings, clock=clock)


@pytest.fixture
def make_event():
    """Build in-memory events without touching storage"""
    counter = {"next_id": 0}

    def factory(
        event_name: str,
        player_id: str = "p1",
        on: Optional[date] = None,
        parameters: Optional[Dict[str, Any]] = None,
        platform: str = "android",
        event_id: Optional[int] = None,
        **fields: Any,
    ) -> Event:
        counter["next_id"] += 1
        created_at = datetime.combine(on or date(2024, 3, 1), datetime.min.time()) + timedelta(
            seconds=counter["next_id"]
        )
        return Event(
            id=event_id if event_id is not None else counter["next_id"],
            player_id=player_id,
            event_name=event_name,
            created_at=created_at,
            parameters=parameters or {},
            platform=platform,
            **fields,
        )

    return factory
