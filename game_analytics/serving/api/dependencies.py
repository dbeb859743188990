"""
Shared route dependencies.
"""

from fastapi import Request

from game_analytics.pipeline import AnalyticsPipeline


def get_pipeline(request: Request) -> AnalyticsPipeline:
    """Pipeline created by the application lifespan"""
    return request.app.state.pipeline
