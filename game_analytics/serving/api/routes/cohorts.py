"""
Cohort Retention Endpoints
"""

from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from game_analytics.pipeline import AnalyticsPipeline
from game_analytics.serving.api.dependencies import get_pipeline
from game_analytics.serving.cache import rollup_key, rollups_cache

router = APIRouter()


class CohortRetentionResponse(BaseModel):
    """Install-week cohorts meeting the minimum size"""
    version_id: Optional[int]
    start_week: Optional[date]
    end_week: Optional[date]
    cohorts: List[Dict[str, Any]]


@router.get("/retention", response_model=CohortRetentionResponse)
async def get_cohort_retention(
    start_week: Optional[date] = Query(None, description="First install week (Monday), inclusive"),
    end_week: Optional[date] = Query(None, description="Last install week (Monday), inclusive"),
    pipeline: AnalyticsPipeline = Depends(get_pipeline),
) -> CohortRetentionResponse:
    """Day 1/7/30 retention per install week, oldest week first"""
    version = await pipeline.current_rollup_version()
    version_id = version.version_id if version else None

    async def load_cohorts() -> List[Dict[str, Any]]:
        rows = await pipeline.get_cohort_retention(start_week, end_week, version_id=version_id)
        return [row.model_dump(mode="json") for row in rows]

    if version_id is None:
        cohorts = await load_cohorts()
    else:
        cohorts = await rollups_cache.get_or_set(
            rollup_key(version_id, "cohorts", start_week, end_week),
            load_cohorts,
        )

    return CohortRetentionResponse(
        version_id=version_id,
        start_week=start_week,
        end_week=end_week,
        cohorts=cohorts,
    )
