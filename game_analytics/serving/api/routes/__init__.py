"""
API Routes Module
"""
from .health import router as health_router
from .events import router as events_router
from .players import router as players_router
from .rollups import router as rollups_router
from .cohorts import router as cohorts_router

__all__ = [
    "health_router",
    "events_router",
    "players_router",
    "rollups_router",
    "cohorts_router",
]
