"""
Database Connection Management

Async database engine and session factory with SQLAlchemy 2.0. Implements
connection setup, schema creation, health checks, graceful shutdown and the
translation of driver failures into StorageUnavailable.
"""

import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import structlog
from sqlalchemy import event, text
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from game_analytics.config import get_settings
from game_analytics.core.exceptions import StorageUnavailable
from game_analytics.database.models import Base

logger = structlog.get_logger(__name__)

# Global engine and session factory
_engine: Optional[AsyncEngine] = None
_async_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def create_engine_for_url(url: str, echo: bool = False, busy_timeout: float = 30.0) -> AsyncEngine:
    """
    Create an async engine for the given URL.

    SQLite gets a lock wait timeout and foreign keys; every dialect uses
    NullPool so each session owns its connection.
    """
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args["timeout"] = busy_timeout

    engine = create_async_engine(
        url,
        echo=echo,
        poolclass=NullPool,
        connect_args=connect_args,
    )

    if url.startswith("sqlite"):
        @event.listens_for(engine.sync_engine, "connect")
        def _sqlite_pragmas(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory used by every storage component"""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def create_tables(engine: AsyncEngine) -> None:
    """Create all tables that do not exist yet"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_database(url: Optional[str] = None, create_schema: bool = True) -> AsyncEngine:
    """
    Initialize the global database engine.

    Args:
        url: Override the configured database URL
        create_schema: Create missing tables after connecting

    Returns:
        AsyncEngine: The initialized database engine
    """
    global _engine, _async_session_factory

    if _engine is not None:
        logger.warning("Database already initialized")
        return _engine

    settings = get_settings()
    _engine = create_engine_for_url(
        url or settings.database.async_url,
        echo=settings.database.echo,
        busy_timeout=settings.database.busy_timeout_seconds,
    )
    _async_session_factory = create_session_factory(_engine)

    try:
        async with _engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        if create_schema:
            await create_tables(_engine)
        logger.info("Database connection established", dialect=_engine.dialect.name)
    except Exception as e:
        logger.error("Failed to connect to database", error=str(e))
        await close_database()
        raise StorageUnavailable("database", str(e)) from e

    return _engine


async def close_database() -> None:
    """
    Close the global database engine.
    """
    global _engine, _async_session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _async_session_factory = None
        logger.info("Database connection pool closed")


def get_engine() -> AsyncEngine:
    """
    Get the database engine.

    Raises:
        RuntimeError: If database is not initialized
    """
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Get the global session factory.

    Raises:
        RuntimeError: If database is not initialized
    """
    if _async_session_factory is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return _async_session_factory


@asynccontextmanager
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Get a database session from the global factory.

    Commits on success, rolls back on error.

    Example:
        async with get_db() as db:
            result = await db.execute(query)
    """
    session = get_session_factory()()
    try:
        yield session
        await session.commit()
    except Exception as e:
        logger.error("Database session error, rolling back", error=str(e), error_type=type(e).__name__)
        await session.rollback()
        raise
    finally:
        await session.close()


def is_lock_conflict(exc: BaseException) -> bool:
    """True for lock waits and serialization failures that are worth retrying"""
    message = str(getattr(exc, "orig", exc)).lower()
    return any(
        marker in message
        for marker in ("database is locked", "could not serialize", "deadlock detected")
    )


@asynccontextmanager
async def storage_guard(component: str) -> AsyncGenerator[None, None]:
    """
    Translate driver connectivity failures into StorageUnavailable.

    Example:
        async with storage_guard("event_log"):
            async with session_factory() as session:
                ...
    """
    try:
        yield
    except (OperationalError, InterfaceError, OSError) as e:
        logger.error("Storage failure", component=component, error=str(e))
        raise StorageUnavailable(component, str(e)) from e


async def check_database_health(session_factory: Optional[async_sessionmaker[AsyncSession]] = None) -> dict:
    """
    Check database health status.

    Returns:
        dict: Health status with latency information
    """
    factory = session_factory or get_session_factory()
    try:
        start = time.perf_counter()
        async with factory() as db:
            await db.execute(text("SELECT 1"))
        latency_ms = (time.perf_counter() - start) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(latency_ms, 2),
        }
    except Exception as e:
        return {
            "status": "unhealthy",
            "error": str(e),
        }
