"""
Rollup Scheduler

Periodically recomputes every rollup family over the trailing window and
publishes the result as a new version.

- A run requested while another is in flight is skipped, not queued
- Instances sharing a store coordinate through a storage lease; a run that
  cannot take it is skipped
- A snapshot older than the published version is never published
- A cancelled or failed run publishes nothing; the current version stays
- Each tick runs as its own task so a slow run shows up as skipped ticks
"""

import asyncio
import time
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from datetime import time as dtime
from typing import Callable, Optional, Set, Tuple

import structlog
from prometheus_client import Counter, Histogram

from game_analytics.config import AnalyticsSettings, get_settings
from game_analytics.core.clock import utcnow
from game_analytics.core.exceptions import GameAnalyticsError, SchedulerOverlap
from game_analytics.ingestion.event_log import EventLog
from game_analytics.rollups.snapshot import RollupSnapshot, compute_snapshot
from game_analytics.rollups.store import RollupStore

logger = structlog.get_logger(__name__)


ROLLUP_RUNS = Counter(
    "game_analytics_rollup_runs_total",
    "Rollup scheduler runs by outcome",
    ["status"],
)

ROLLUP_DURATION = Histogram(
    "game_analytics_rollup_duration_seconds",
    "Duration of completed rollup runs",
    buckets=(0.1, 0.5, 1, 5, 15, 30, 60, 120, 300),
)


@dataclass(frozen=True)
class RollupRunResult:
    """Outcome of a published rollup run"""
    version_id: int
    window_start: date
    window_end: date
    event_count: int
    row_count: int
    duration_seconds: float


class RollupScheduler:
    """
    Periodic rollup recompute; at most one run at a time across instances.

    Example:
        scheduler = RollupScheduler(event_log, rollup_store)
        await scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        event_log: EventLog,
        store: RollupStore,
        settings: Optional[AnalyticsSettings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.event_log = event_log
        self.store = store
        self.settings = settings or get_settings().analytics
        self._clock = clock
        self.holder = uuid.uuid4().hex

        self._in_progress = False
        self._loop_task: Optional[asyncio.Task] = None
        self._run_tasks: Set[asyncio.Task] = set()
        self._shutdown_event = asyncio.Event()
        self.last_result: Optional[RollupRunResult] = None
        self.last_error: Optional[str] = None

    @property
    def in_progress(self) -> bool:
        return self._in_progress

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def window(self, now: Optional[datetime] = None) -> Tuple[date, date]:
        """Trailing window as inclusive (start, end) dates"""
        end = (now or self._clock()).date()
        return end - timedelta(days=self.settings.rollup_window_days), end

    async def compute(self, window_start: date, window_end: date) -> RollupSnapshot:
        """Scan the window and compute a snapshot without publishing it"""
        events = [
            event
            async for event in self.event_log.scan(
                datetime.combine(window_start, dtime.min),
                datetime.combine(window_end + timedelta(days=1), dtime.min),
            )
        ]
        return await asyncio.to_thread(
            compute_snapshot,
            events,
            window_start,
            window_end,
            self._clock(),
            self.settings.cohort_min_size,
            self.settings.high_engagement_threshold_seconds,
        )

    async def run_once(self) -> Optional[RollupRunResult]:
        """
        Recompute and publish one version.

        Returns:
            The run result, or None when skipped because a run is in progress
            here or in another instance, or a newer version was published first

        Raises:
            StorageUnavailable: If the event log or rollup store is unreachable
            ConfigurationError: If the configured window is too wide to scan
        """
        if self._in_progress:
            overlap = SchedulerOverlap()
            ROLLUP_RUNS.labels(status="skipped").inc()
            logger.warning("Rollup run skipped", reason=overlap.message)
            return None

        self._in_progress = True
        try:
            if not await self.store.acquire_lease(self.holder, self._clock(), self.settings.rollup_lease_seconds):
                overlap = SchedulerOverlap("Rollup lease held by another scheduler instance")
                ROLLUP_RUNS.labels(status="skipped").inc()
                logger.warning("Rollup run skipped", reason=overlap.message, holder=self.holder)
                return None
            try:
                return await self._run()
            finally:
                await self._release_lease()
        finally:
            self._in_progress = False

    async def _release_lease(self) -> None:
        try:
            await self.store.release_lease(self.holder)
        except GameAnalyticsError as e:
            logger.warning("Rollup lease not released, it will expire", holder=self.holder, error=e.message)

    async def _run(self) -> Optional[RollupRunResult]:
        started = time.perf_counter()
        window_start, window_end = self.window()
        logger.info(
            "Rollup run started",
            window_start=window_start.isoformat(),
            window_end=window_end.isoformat(),
        )

        try:
            snapshot = await self.compute(window_start, window_end)
            version_id = await self.store.publish(snapshot)
        except asyncio.CancelledError:
            ROLLUP_RUNS.labels(status="cancelled").inc()
            logger.warning("Rollup run cancelled, published version unchanged")
            raise
        except SchedulerOverlap as e:
            ROLLUP_RUNS.labels(status="skipped").inc()
            logger.warning("Rollup run discarded", reason=e.message)
            return None
        except Exception as e:
            ROLLUP_RUNS.labels(status="failed").inc()
            self.last_error = str(e)
            raise

        duration = time.perf_counter() - started
        result = RollupRunResult(
            version_id=version_id,
            window_start=window_start,
            window_end=window_end,
            event_count=snapshot.event_count,
            row_count=snapshot.row_count,
            duration_seconds=round(duration, 3),
        )
        self.last_result = result
        self.last_error = None
        ROLLUP_RUNS.labels(status="published").inc()
        ROLLUP_DURATION.observe(duration)
        logger.info(
            "Rollup run finished",
            version_id=version_id,
            events=snapshot.event_count,
            rows=snapshot.row_count,
            duration_seconds=result.duration_seconds,
        )
        return result

    async def _guarded_run(self) -> None:
        try:
            await self.run_once()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Rollup run failed, waiting for next tick")

    def trigger(self) -> asyncio.Task:
        """Start a run in the background and return its task"""
        task = asyncio.create_task(self._guarded_run(), name="rollup-run")
        self._run_tasks.add(task)
        task.add_done_callback(self._run_tasks.discard)
        return task

    async def _tick_loop(self) -> None:
        while not self._shutdown_event.is_set():
            self.trigger()
            try:
                await asyncio.wait_for(
                    self._shutdown_event.wait(),
                    timeout=self.settings.rollup_interval_seconds,
                )
            except asyncio.TimeoutError:
                pass

    async def start(self) -> None:
        """Start the periodic loop; the first run starts immediately"""
        if self.running:
            logger.warning("Rollup scheduler already running")
            return
        logger.info("Starting rollup scheduler", interval_seconds=self.settings.rollup_interval_seconds)
        self._shutdown_event.clear()
        self._loop_task = asyncio.create_task(self._tick_loop(), name="rollup-scheduler")

    async def stop(self) -> None:
        """Stop ticking and cancel any in-flight run"""
        logger.info("Stopping rollup scheduler")
        self._shutdown_event.set()
        tasks = list(self._run_tasks)
        if self._loop_task is not None:
            tasks.append(self._loop_task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._loop_task = None
        logger.info("Rollup scheduler stopped")
