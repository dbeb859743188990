"""
Health Check Endpoints

Provides health and readiness checks for orchestration systems.
"""

from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel
from redis.exceptions import RedisError

from game_analytics.config import get_settings
from game_analytics.core.clock import utcnow
from game_analytics.database.connection import check_database_health
from game_analytics.pipeline import AnalyticsPipeline
from game_analytics.serving.api.dependencies import get_pipeline
from game_analytics.serving.cache import get_redis

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    version: str
    environment: str
    timestamp: datetime
    checks: Dict[str, Any]


@router.get("/health", response_model=HealthResponse)
async def health_check(pipeline: AnalyticsPipeline = Depends(get_pipeline)) -> HealthResponse:
    """
    Comprehensive health check endpoint.

    Checks:
    - Database connectivity
    - Redis connectivity (when enabled)
    - Age of the published rollup version
    """
    settings = get_settings()
    checks: Dict[str, Any] = {}
    overall_status = "healthy"

    db_health = await check_database_health(pipeline.session_factory)
    checks["database"] = db_health
    if db_health.get("status") != "healthy":
        overall_status = "unhealthy"

    redis = get_redis()
    if redis is None:
        checks["redis"] = {"status": "disabled"}
    else:
        try:
            await redis.ping()
            checks["redis"] = {"status": "healthy"}
        except (RedisError, OSError) as e:
            checks["redis"] = {"status": "unhealthy", "error": str(e)}
            if overall_status == "healthy":
                overall_status = "degraded"

    if overall_status != "unhealthy":
        version = await pipeline.current_rollup_version()
        if version is None:
            checks["rollups"] = {"status": "not_published"}
        else:
            age_seconds = (utcnow() - version.computed_at).total_seconds()
            stale = age_seconds > 3 * settings.analytics.rollup_interval_seconds
            checks["rollups"] = {
                "status": "stale" if stale else "healthy",
                "version_id": version.version_id,
                "age_seconds": round(age_seconds, 1),
            }

    return HealthResponse(
        status=overall_status,
        version=settings.version,
        environment=settings.app_env,
        timestamp=utcnow(),
        checks=checks,
    )


@router.get("/health/live")
async def liveness_check() -> Dict[str, str]:
    """
    Kubernetes liveness probe endpoint.

    Returns 200 if the application is running.
    """
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness_check(
    response: Response,
    pipeline: AnalyticsPipeline = Depends(get_pipeline),
) -> Dict[str, str]:
    """
    Kubernetes readiness probe endpoint.

    Returns 200 if the application is ready to receive traffic.
    """
    db_health = await check_database_health(pipeline.session_factory)
    if db_health.get("status") != "healthy":
        response.status_code = 503
        return {"status": "not_ready", "reason": "database_unavailable"}
    return {"status": "ready"}
