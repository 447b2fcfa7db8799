"""Shared async Redis connection pools for the scheduler."""

from redis.asyncio import ConnectionPool, Redis

from .config import settings

MAX_CONNECTIONS = 20

_pools: dict[str, ConnectionPool] = {}


def get_pool(url: str | None = None) -> ConnectionPool:
    """Return the pool for ``url`` (default ``settings.redis_url``), created on first use."""
    url = url or settings.redis_url
    pool = _pools.get(url)
    if pool is None:
        pool = ConnectionPool.from_url(url, max_connections=MAX_CONNECTIONS, decode_responses=True)
        _pools[url] = pool
    return pool


def get_redis_client(url: str | None = None) -> Redis:
    """Get an async Redis client backed by the shared pool for ``url``."""
    return Redis(connection_pool=get_pool(url))


async def close_pools() -> None:
    """Disconnect and forget every pool; the next client call reconnects."""
    while _pools:
        _, pool = _pools.popitem()
        await pool.disconnect()
