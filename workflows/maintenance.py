"""
Prefect Workflow Orchestration - Analytics Maintenance

Operator flows wrapping the analytics core:
- refresh_rollups: one rollup recompute and publish
- purge_expired_events: retention eviction of the event log

Both are safe to run next to the background worker; a refresh that overlaps
a scheduled run is skipped and reported.
"""

from datetime import datetime
from typing import Optional

from prefect import flow, get_run_logger, task

from game_analytics.config import get_settings
from game_analytics.database.connection import close_database, get_session_factory, init_database
from game_analytics.pipeline import AnalyticsPipeline


# =============================================================================
# TASKS
# =============================================================================

@task(
    name="recompute_rollups",
    description="Recompute every rollup family and publish a new version",
    retries=2,
    retry_delay_seconds=60,
)
async def recompute_rollups(pipeline: AnalyticsPipeline) -> dict:
    """Run the rollup scheduler once"""
    logger = get_run_logger()

    result = await pipeline.refresh_rollups()
    if result is None:
        logger.warning("Rollup refresh skipped: a run is already in progress")
        return {"status": "skipped"}

    logger.info(
        f"Published rollup version {result.version_id}: "
        f"{result.event_count} events, {result.row_count} rows in {result.duration_seconds}s"
    )
    return {
        "status": "published",
        "version_id": result.version_id,
        "window_start": result.window_start.isoformat(),
        "window_end": result.window_end.isoformat(),
        "event_count": result.event_count,
        "row_count": result.row_count,
    }


@task(
    name="purge_events",
    description="Delete events past the retention horizon",
    retries=2,
    retry_delay_seconds=60,
)
async def purge_events(pipeline: AnalyticsPipeline, now: Optional[datetime] = None) -> dict:
    """Retention eviction bounded by the published window and the consumer watermark"""
    logger = get_run_logger()

    purged = await pipeline.purge_expired_events(now=now)
    logger.info(f"Purged {purged} expired events")
    return {"purged": purged}


@task(
    name="send_alert",
    description="Send alert notification",
)
async def send_alert(alert_type: str, message: str, severity: str = "info") -> None:
    """Send alert notification"""
    logger = get_run_logger()
    logger.warning(f"[{severity.upper()}] {alert_type}: {message}")


# =============================================================================
# FLOWS
# =============================================================================

@flow(
    name="refresh_rollups",
    description="Recompute daily KPI rollups and cohort retention",
)
async def refresh_rollups() -> dict:
    """
    Recompute and publish rollups.

    Steps:
    1. Connect to the database
    2. Scan the trailing window and recompute every family
    3. Publish the new version
    """
    await init_database(create_schema=False)
    try:
        pipeline = AnalyticsPipeline(get_session_factory(), get_settings())
        return await recompute_rollups(pipeline)
    except Exception as e:
        await send_alert("Rollup Refresh Failed", str(e), severity="critical")
        raise
    finally:
        await close_database()


@flow(
    name="purge_expired_events",
    description="Retention eviction for the event log",
)
async def purge_expired_events(now: Optional[datetime] = None) -> dict:
    """
    Delete events older than the retention horizon that every rollup and the
    counter consumer have moved past.
    """
    await init_database(create_schema=False)
    try:
        pipeline = AnalyticsPipeline(get_session_factory(), get_settings())
        return await purge_events(pipeline, now)
    finally:
        await close_database()


# =============================================================================
# DEPLOYMENT CONFIGURATION
# =============================================================================

if __name__ == "__main__":
    import asyncio

    asyncio.run(refresh_rollups())
