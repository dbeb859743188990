"""
Core Module
"""
from .exceptions import (
    ConfigurationError,
    ContentionExceeded,
    CounterInvariantError,
    GameAnalyticsError,
    MalformedParameter,
    NotFoundError,
    SchedulerOverlap,
    StorageUnavailable,
    ValidationError,
)
from .clock import utcnow

__all__ = [
    "ConfigurationError",
    "ContentionExceeded",
    "CounterInvariantError",
    "GameAnalyticsError",
    "MalformedParameter",
    "NotFoundError",
    "SchedulerOverlap",
    "StorageUnavailable",
    "ValidationError",
    "utcnow",
]
