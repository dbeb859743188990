"""
Data Ingestion Module
"""
from .event_log import BatchIngestResult, EventFilter, EventLog
from .events import Event, EventName, GameEventIn, validate_event

__all__ = [
    "BatchIngestResult",
    "Event",
    "EventFilter",
    "EventLog",
    "EventName",
    "GameEventIn",
    "validate_event",
]
