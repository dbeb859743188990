"""
Database Module
"""
from .connection import (
    check_database_health,
    close_database,
    create_engine_for_url,
    create_session_factory,
    create_tables,
    get_db,
    get_session_factory,
    init_database,
)
from .models import Base

__all__ = [
    "check_database_health",
    "close_database",
    "create_engine_for_url",
    "create_session_factory",
    "create_tables",
    "get_db",
    "get_session_factory",
    "init_database",
    "Base",
]
