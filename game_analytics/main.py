"""
FastAPI Production Application

Main entry point for the Game Analytics API.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from prometheus_client import make_asgi_app

from game_analytics.config import get_settings
from game_analytics.config.logging import configure_logging
from game_analytics.database.connection import close_database, get_session_factory, init_database
from game_analytics.pipeline import AnalyticsPipeline
from game_analytics.serving.api.errors import register_exception_handlers
from game_analytics.serving.api.middleware import RequestLoggingMiddleware
from game_analytics.serving.api.routes import (
    cohorts_router,
    events_router,
    health_router,
    players_router,
    rollups_router,
)
from game_analytics.serving.cache import close_redis, init_redis

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    configure_logging()
    settings = get_settings()

    logger.info("Starting Game Analytics API", environment=settings.app_env)

    await init_database()
    await init_redis()

    pipeline = AnalyticsPipeline(get_session_factory(), settings)
    app.state.pipeline = pipeline
    if settings.analytics.run_background_tasks:
        await pipeline.start()

    yield

    logger.info("Shutting down...")
    if settings.analytics.run_background_tasks:
        await pipeline.stop()
    await close_redis()
    await close_database()


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    The pipeline is attached to `app.state` by the lifespan; tests may set
    `app.state.pipeline` themselves instead.
    """
    settings = get_settings()

    app = FastAPI(
        title="Game Analytics API",
        description="Player event ingestion, live player counters and daily KPI rollups",
        version=settings.version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(RequestLoggingMiddleware)

    register_exception_handlers(app)

    app.include_router(health_router, prefix="/api/v1", tags=["Health"])
    app.include_router(events_router, prefix="/api/v1/events", tags=["Events"])
    app.include_router(players_router, prefix="/api/v1/players", tags=["Players"])
    app.include_router(rollups_router, prefix="/api/v1/rollups", tags=["Rollups"])
    app.include_router(cohorts_router, prefix="/api/v1/cohorts", tags=["Cohorts"])

    app.mount("/metrics", make_asgi_app())

    @app.get("/api/v1/info")
    async def api_info():
        """API information endpoint."""
        return {
            "name": "Game Analytics API",
            "version": settings.version,
            "environment": settings.app_env,
            "documentation": "/docs",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
