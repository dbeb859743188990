"""
Redis Cache Module

Optional read-through cache for rollup queries:
- Connection pooling
- Automatic JSON serialization
- TTL management
- Keys embed the published rollup version, so a publish invalidates by
  changing the key rather than by deleting entries

When Redis is disabled or unreachable every call degrades to a cache miss.
"""

import json
from datetime import timedelta
from typing import Any, Awaitable, Callable, Optional, Union

import structlog
from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import RedisError

from game_analytics.config import get_settings

logger = structlog.get_logger(__name__)

# Global Redis connection
_redis_pool: Optional[ConnectionPool] = None
_redis_client: Optional[Redis] = None


async def init_redis() -> Optional[Redis]:
    """Initialize the Redis connection pool when caching is enabled"""
    global _redis_pool, _redis_client

    settings = get_settings()
    if not settings.redis.enabled:
        logger.info("Redis cache disabled")
        return None

    if _redis_client is not None:
        return _redis_client

    _redis_pool = ConnectionPool.from_url(
        settings.redis.get_url(),
        max_connections=settings.redis.max_connections,
        socket_timeout=settings.redis.socket_timeout,
        decode_responses=True,
    )
    client = Redis(connection_pool=_redis_pool)

    try:
        await client.ping()
    except (RedisError, OSError) as e:
        logger.warning("Redis unavailable, serving reads from the rollup store", error=str(e))
        await client.aclose()
        await _redis_pool.disconnect()
        _redis_pool = None
        return None

    _redis_client = client
    logger.info("Redis connection established")
    return _redis_client


async def close_redis() -> None:
    """Close Redis connection pool"""
    global _redis_pool, _redis_client

    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None

    if _redis_pool:
        await _redis_pool.disconnect()
        _redis_pool = None
        logger.info("Redis connection closed")


def get_redis() -> Optional[Redis]:
    """Redis client, None when caching is off"""
    return _redis_client


async def cache_get(key: str) -> Optional[Any]:
    """
    Get value from cache.

    Returns:
        Cached value or None if not found or Redis is unavailable
    """
    client = get_redis()
    if client is None:
        return None

    try:
        value = await client.get(key)
    except (RedisError, OSError) as e:
        logger.warning("Cache read failed", key=key, error=str(e))
        return None

    if value is None:
        return None

    try:
        return json.loads(value)
    except json.JSONDecodeError:
        logger.warning("Discarding undecodable cache entry", key=key)
        return None


async def cache_set(
    key: str,
    value: Any,
    ttl: Optional[Union[int, timedelta]] = None,
) -> bool:
    """
    Set value in cache.

    Args:
        key: Cache key
        value: Value to cache (will be JSON serialized)
        ttl: Time-to-live in seconds or timedelta

    Returns:
        True if stored
    """
    client = get_redis()
    if client is None:
        return False

    try:
        serialized = json.dumps(value, default=str)
    except (TypeError, ValueError) as e:
        logger.warning("Failed to serialize value for cache", key=key, error=str(e))
        return False

    try:
        if ttl:
            if isinstance(ttl, timedelta):
                ttl = int(ttl.total_seconds())
            await client.setex(key, ttl, serialized)
        else:
            await client.set(key, serialized)
    except (RedisError, OSError) as e:
        logger.warning("Cache write failed", key=key, error=str(e))
        return False

    return True


class CacheManager:
    """
    Cache manager with namespace support and automatic key generation.

    Example:
        cache = CacheManager("rollups")
        rows = await cache.get_or_set(f"v{version_id}:dau", load_rows, ttl=600)
    """

    def __init__(self, namespace: str, default_ttl: int = 3600):
        self.namespace = namespace
        self.default_ttl = default_ttl

    def _key(self, key: str) -> str:
        """Generate namespaced key"""
        return f"{self.namespace}:{key}"

    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache"""
        return await cache_get(self._key(key))

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Set value in cache"""
        return await cache_set(self._key(key), value, ttl or self.default_ttl)

    async def get_or_set(
        self,
        key: str,
        factory: Callable[[], Awaitable[Any]],
        ttl: Optional[int] = None,
    ) -> Any:
        """
        Get from cache or compute and cache.

        Args:
            key: Cache key
            factory: Async function to compute value if not cached
            ttl: Time-to-live

        Returns:
            Cached or computed value
        """
        value = await self.get(key)
        if value is not None:
            return value

        value = await factory()
        await self.set(key, value, ttl)
        return value


def rollup_key(version_id: int, kind: str, start: Any = None, end: Any = None) -> str:
    """Cache key for one rollup query against one published version"""
    return f"v{version_id}:{kind}:{start or '-'}:{end or '-'}"


rollups_cache = CacheManager("rollups", default_ttl=900)
