"""Shared async Redis pool.

Redis only backs the maintenance job locks, so the pool is created lazily on
first use and never touched by request handling.
"""

import redis.asyncio as redis

from credit_ledger.utils.logger import get_logger
from credit_ledger.utils.settings.redis import RedisSettings

logger = get_logger(__name__)

_pool: redis.ConnectionPool | None = None


def _build_pool(settings: RedisSettings) -> redis.ConnectionPool:
    logger.info("Creating Redis pool", max_connections=settings.REDIS_MAX_CONNECTIONS)
    return redis.ConnectionPool.from_url(
        settings.REDIS_URL,
        max_connections=settings.REDIS_MAX_CONNECTIONS,
        socket_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
        decode_responses=True,
    )


async def get_redis_client() -> redis.Redis:
    """Client bound to the shared pool. Closing it leaves the pool open."""
    global _pool
    if _pool is None:
        _pool = _build_pool(RedisSettings())
    return redis.Redis(connection_pool=_pool)


async def close_redis_pool() -> None:
    global _pool
    if _pool is None:
        return
    await _pool.disconnect()
    _pool = None
    logger.info("Redis pool closed")
