"""
Rollup Endpoints

Daily metric families for dashboards. Every response is read from one
published version; cached entries are keyed by that version.
"""

from datetime import date
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from game_analytics.pipeline import AnalyticsPipeline
from game_analytics.rollups import FAMILY_NAMES
from game_analytics.serving.api.dependencies import get_pipeline
from game_analytics.serving.cache import rollup_key, rollups_cache

router = APIRouter()
logger = structlog.get_logger(__name__)


class DailyRollupResponse(BaseModel):
    """Rows of one metric family"""
    family: str
    version_id: Optional[int]
    start_date: Optional[date]
    end_date: Optional[date]
    rows: List[Dict[str, Any]]


class RefreshResponse(BaseModel):
    version_id: int
    event_count: int
    row_count: int
    duration_seconds: float


@router.get("/status")
async def rollup_status(pipeline: AnalyticsPipeline = Depends(get_pipeline)) -> Dict[str, Any]:
    """Published version and scheduler state"""
    return {"families": FAMILY_NAMES, **(await pipeline.rollup_status())}


@router.post("/refresh", response_model=RefreshResponse)
async def refresh_rollups(pipeline: AnalyticsPipeline = Depends(get_pipeline)) -> RefreshResponse:
    """Run the scheduler once now; 409 if a run is already in progress"""
    result = await pipeline.refresh_rollups()
    if result is None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Rollup run already in progress")
    return RefreshResponse(
        version_id=result.version_id,
        event_count=result.event_count,
        row_count=result.row_count,
        duration_seconds=result.duration_seconds,
    )


@router.get("/{family}", response_model=DailyRollupResponse)
async def get_daily_rollup(
    family: str,
    start_date: Optional[date] = Query(None, description="First date, inclusive"),
    end_date: Optional[date] = Query(None, description="Last date, inclusive"),
    pipeline: AnalyticsPipeline = Depends(get_pipeline),
) -> DailyRollupResponse:
    """
    Rows for one family: dau, revenue, engagement, missions, funnel,
    currency, weekly or summary. Weekly rows are dated by their Monday.
    """
    version = await pipeline.current_rollup_version()
    version_id = version.version_id if version else None

    async def load_rows() -> List[Dict[str, Any]]:
        rows = await pipeline.get_daily_rollup(family, start_date, end_date, version_id=version_id)
        return [row.model_dump(mode="json") for row in rows]

    if version_id is None:
        rows = await load_rows()
    else:
        rows = await rollups_cache.get_or_set(
            rollup_key(version_id, family, start_date, end_date),
            load_rows,
        )

    return DailyRollupResponse(
        family=family,
        version_id=version_id,
        start_date=start_date,
        end_date=end_date,
        rows=rows,
    )
