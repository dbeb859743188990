"""
Event Ingestion Endpoints

Thin HTTP surface over the event log. Payload validation happens in the
core so HTTP and programmatic callers reject exactly the same events.
"""

from typing import Any, Dict, List

import structlog
from fastapi import APIRouter, Body, Depends, status
from pydantic import BaseModel, Field

from game_analytics.pipeline import AnalyticsPipeline
from game_analytics.serving.api.dependencies import get_pipeline

router = APIRouter()
logger = structlog.get_logger(__name__)

MAX_BATCH_SIZE = 1000


class EventAccepted(BaseModel):
    """Single event ingestion response"""
    event_id: int


class EventBatchRequest(BaseModel):
    """Batch of raw event payloads"""
    events: List[Dict[str, Any]] = Field(min_length=1, max_length=MAX_BATCH_SIZE)


class RejectedEvent(BaseModel):
    index: int
    error: str
    details: Dict[str, Any] = Field(default_factory=dict)


class EventBatchResponse(BaseModel):
    """Batch ingestion response"""
    accepted: int
    rejected: int
    event_ids: List[int]
    errors: List[RejectedEvent]


@router.post("", response_model=EventAccepted, status_code=status.HTTP_201_CREATED)
async def ingest_event(
    payload: Dict[str, Any] = Body(...),
    pipeline: AnalyticsPipeline = Depends(get_pipeline),
) -> EventAccepted:
    """
    Append one event to the log.

    Returns 422 when `player_id` or `event_name` is missing.
    """
    event_id = await pipeline.ingest_event(payload)
    return EventAccepted(event_id=event_id)


@router.post("/batch", response_model=EventBatchResponse)
async def ingest_batch(
    request: EventBatchRequest,
    pipeline: AnalyticsPipeline = Depends(get_pipeline),
) -> EventBatchResponse:
    """Append a batch; invalid payloads are reported per index"""
    result = await pipeline.ingest_batch(request.events)
    return EventBatchResponse(
        accepted=result.accepted_count,
        rejected=result.rejected_count,
        event_ids=result.accepted,
        errors=[RejectedEvent(**rejection) for rejection in result.rejected],
    )
