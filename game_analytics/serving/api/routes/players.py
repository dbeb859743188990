"""
Player Counter Endpoints
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends

from game_analytics.pipeline import AnalyticsPipeline
from game_analytics.serving.api.dependencies import get_pipeline

router = APIRouter()


@router.get("/{player_id}/counters")
async def get_player_counters(
    player_id: str,
    pipeline: AnalyticsPipeline = Depends(get_pipeline),
) -> Dict[str, Any]:
    """Live cumulative counters for one player; 404 if the player is unknown"""
    counters = await pipeline.get_player_counters(player_id)
    return counters.to_dict()
