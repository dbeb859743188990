"""
Exception hierarchy for the Game Analytics Core

Every failure the core surfaces is one of these. Storage-driver errors are
translated at the storage boundary so callers never see SQLAlchemy types.
"""

from typing import Any, Dict, Optional


class GameAnalyticsError(Exception):
    """Base exception for all analytics core errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(GameAnalyticsError):
    """Raised when an inbound event is malformed; it never enters the log."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


class ContentionExceeded(GameAnalyticsError):
    """Raised when a counter upsert exhausts its compare-and-swap attempts."""

    def __init__(self, player_id: str, attempts: int):
        super().__init__(
            f"Counter update for player {player_id} gave up after {attempts} attempts",
            {"player_id": player_id, "attempts": attempts},
        )
        self.player_id = player_id
        self.attempts = attempts


class MalformedParameter(GameAnalyticsError):
    """
    Raised when an event parameter is missing or not usable as a number.

    Never escapes aggregation: callers log it and count the value as zero.
    """

    def __init__(self, field: str, value: Any, reason: str):
        super().__init__(
            f"Parameter '{field}' is malformed: {reason}",
            {"field": field, "value": repr(value), "reason": reason},
        )
        self.field = field
        self.value = value
        self.reason = reason


class SchedulerOverlap(GameAnalyticsError):
    """Raised when a rollup run is requested while the previous one is still running."""

    def __init__(self, message: str = "Previous rollup run still in progress"):
        super().__init__(message)


class StorageUnavailable(GameAnalyticsError):
    """Raised when the event log, counter store or rollup store cannot be reached."""

    def __init__(self, component: str, reason: str):
        super().__init__(
            f"{component} unavailable: {reason}",
            {"component": component, "reason": reason},
        )
        self.component = component


class NotFoundError(GameAnalyticsError):
    """Raised when a requested resource does not exist."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            f"{resource} not found: {identifier}",
            {"resource": resource, "identifier": identifier},
        )


class ConfigurationError(GameAnalyticsError):
    """Raised for unbounded scans and other invalid runtime configuration."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


class CounterInvariantError(GameAnalyticsError):
    """Raised when a delta function would decrease a cumulative counter."""

    def __init__(self, player_id: str, fields: list):
        super().__init__(
            f"Counter update for player {player_id} decreases {', '.join(fields)}",
            {"player_id": player_id, "fields": fields},
        )
