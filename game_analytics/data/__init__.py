"""
Data Generation Module
"""
from .generators import GameEventGenerator, PlayerGenerator, SessionGenerator

__all__ = [
    "GameEventGenerator",
    "PlayerGenerator",
    "SessionGenerator",
]
