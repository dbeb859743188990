"""
Game Event Models

Inbound payload validation and the immutable event record handed to the
aggregator and the rollup reducers.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from game_analytics.core.clock import to_naive_utc, utcnow
from game_analytics.core.exceptions import ValidationError


class EventName(str, Enum):
    """Event names with dedicated counter or rollup handling"""
    APP_LAUNCH = "app_launch"
    SESSION_START = "session_start"
    SESSION_END = "session_end"
    GAME_START = "game_start"
    GAME_END = "game_end"
    MISSION_COMPLETE = "mission_complete"
    DAILY_MISSION_CYCLE_COMPLETE = "daily_mission_cycle_complete"
    ACHIEVEMENT_UNLOCK = "achievement_unlock"
    CONTINUE_USED = "continue_used"
    AD_SHOWN = "ad_shown"
    AD_COMPLETED = "ad_completed"
    AD_ABANDONED = "ad_abandoned"
    CURRENCY_EARNED = "currency_earned"
    CURRENCY_SPENT = "currency_spent"
    IAP_PURCHASE = "iap_purchase"
    DAILY_SUMMARY = "daily_summary"
    ERROR_OCCURRED = "error_occurred"


class EventCategory(str, Enum):
    """Coarse event grouping stored alongside each event"""
    LIFECYCLE = "lifecycle"
    GAMEPLAY = "gameplay"
    MONETIZATION = "monetization"
    SYSTEM = "system"
    OTHER = "other"


class EventPriority(str, Enum):
    """Delivery priority hint stored alongside each event"""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


EVENT_CATEGORIES: Dict[str, EventCategory] = {
    "app_launch": EventCategory.LIFECYCLE,
    "session_start": EventCategory.LIFECYCLE,
    "session_end": EventCategory.LIFECYCLE,
    "retention_event": EventCategory.LIFECYCLE,
    "game_start": EventCategory.GAMEPLAY,
    "game_end": EventCategory.GAMEPLAY,
    "mission_complete": EventCategory.GAMEPLAY,
    "daily_mission_cycle_complete": EventCategory.GAMEPLAY,
    "achievement_unlock": EventCategory.GAMEPLAY,
    "continue_used": EventCategory.GAMEPLAY,
    "iap_purchase": EventCategory.MONETIZATION,
    "currency_earned": EventCategory.MONETIZATION,
    "currency_spent": EventCategory.MONETIZATION,
    "ad_shown": EventCategory.MONETIZATION,
    "ad_completed": EventCategory.MONETIZATION,
    "ad_abandoned": EventCategory.MONETIZATION,
    "daily_summary": EventCategory.SYSTEM,
    "error_occurred": EventCategory.SYSTEM,
}

EVENT_PRIORITIES: Dict[str, EventPriority] = {
    "iap_purchase": EventPriority.HIGH,
    "session_start": EventPriority.HIGH,
    "session_end": EventPriority.HIGH,
    "game_start": EventPriority.MEDIUM,
    "game_end": EventPriority.MEDIUM,
    "mission_complete": EventPriority.MEDIUM,
    "achievement_unlock": EventPriority.MEDIUM,
    "continue_used": EventPriority.MEDIUM,
    "ad_completed": EventPriority.MEDIUM,
    "ad_abandoned": EventPriority.MEDIUM,
}


def categorize(event_name: str) -> str:
    """Category for an event name, `other` when unknown"""
    return EVENT_CATEGORIES.get(event_name, EventCategory.OTHER).value


def prioritize(event_name: str) -> str:
    """Priority for an event name, `low` when unknown"""
    return EVENT_PRIORITIES.get(event_name, EventPriority.LOW).value


class GameEventIn(BaseModel):
    """Inbound event payload accepted by the event log"""

    player_id: str = Field(min_length=1, max_length=255)
    event_name: str = Field(min_length=1, max_length=100)
    event_category: Optional[str] = Field(default=None, max_length=50)
    event_priority: Optional[str] = Field(default=None, max_length=20)
    parameters: Dict[str, Any] = Field(default_factory=dict)
    session_id: Optional[str] = Field(default=None, max_length=255)
    platform: str = Field(default="unknown", max_length=20)
    app_version: Optional[str] = Field(default=None, max_length=20)
    created_at: Optional[datetime] = None

    @field_validator("player_id", "event_name")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        """Identity fields must carry a value"""
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("platform", mode="before")
    @classmethod
    def normalize_platform(cls, v: Any) -> str:
        """Lower-case platform, `unknown` when missing"""
        if v is None or (isinstance(v, str) and not v.strip()):
            return "unknown"
        return str(v).strip().lower()

    @field_validator("parameters", mode="before")
    @classmethod
    def default_parameters(cls, v: Any) -> Any:
        """Treat a null parameter map as empty"""
        return {} if v is None else v

    @field_validator("created_at")
    @classmethod
    def normalize_created_at(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Store event time as naive UTC"""
        return to_naive_utc(v) if v is not None else None

    def to_row(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Column values for the event log insert"""
        now = now or utcnow()
        return {
            "player_id": self.player_id,
            "event_name": self.event_name,
            "event_category": self.event_category or categorize(self.event_name),
            "event_priority": self.event_priority or prioritize(self.event_name),
            "parameters": dict(self.parameters),
            "session_id": self.session_id,
            "platform": self.platform,
            "app_version": self.app_version,
            "created_at": self.created_at or now,
            "ingested_at": now,
        }


def validate_event(payload: Any) -> GameEventIn:
    """
    Validate a raw payload.

    Raises:
        ValidationError: If player_id or event_name is absent or the payload
            is otherwise malformed
    """
    if isinstance(payload, GameEventIn):
        return payload
    if not isinstance(payload, Mapping):
        raise ValidationError("Event payload must be an object", {"type": type(payload).__name__})
    try:
        return GameEventIn.model_validate(dict(payload))
    except PydanticValidationError as e:
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        raise ValidationError("Invalid event payload", {"errors": errors}) from e


@dataclass(frozen=True)
class Event:
    """Immutable event as stored in the event log"""
    id: int
    player_id: str
    event_name: str
    created_at: datetime
    event_category: str = EventCategory.OTHER.value
    event_priority: str = EventPriority.LOW.value
    parameters: Mapping[str, Any] = field(default_factory=dict)
    session_id: Optional[str] = None
    platform: str = "unknown"
    app_version: Optional[str] = None
    ingested_at: Optional[datetime] = None

    @property
    def event_date(self) -> date:
        """Calendar (UTC) date the event is bucketed under"""
        return self.created_at.date()

    @classmethod
    def from_record(cls, record: Any) -> "Event":
        """Build from a GameEvent ORM row"""
        return cls(
            id=record.id,
            player_id=record.player_id,
            event_name=record.event_name,
            created_at=record.created_at,
            event_category=record.event_category,
            event_priority=record.event_priority,
            parameters=dict(record.parameters or {}),
            session_id=record.session_id,
            platform=record.platform,
            app_version=record.app_version,
            ingested_at=record.ingested_at,
        )
