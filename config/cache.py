# config/cache.py
from typing import Optional
from redis.asyncio import ConnectionPool, Redis
from config.settings import settings

_pool: Optional[ConnectionPool] = None
_client: Optional[Redis] = None


def _build_pool() -> ConnectionPool:
    # Blob chunks are raw bytes: never decode.
    return ConnectionPool.from_url(
        settings.REDIS_URL,
        decode_responses=False,
        max_connections=settings.REDIS_MAX_CONNECTIONS,
        socket_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
        socket_keepalive=True,
        health_check_interval=30,
    )


async def get_redis() -> Redis:
    """Shared client for the blob store and the rate limiter."""
    global _pool, _client
    if _client is None:
        _pool = _build_pool()
        client = Redis(connection_pool=_pool)
        await client.ping()
        _client = client
    return _client


async def close_redis() -> None:
    global _pool, _client
    client, pool = _client, _pool
    _client, _pool = None, None
    if client is not None:
        await client.aclose()
    if pool is not None:
        await pool.disconnect()
