"""
Redis connection used for booking event fan-out.

Fails open: if Redis is disabled or unreachable the accessor returns None and
callers degrade to log-only behaviour. The database stays authoritative.

A failed connect (or a publish error on a live connection) starts a backoff
of REDIS_RETRY_SECONDS. Until it expires get_redis returns None straight
away, so a Redis outage never adds a connect timeout to every request.
"""

import time
from typing import Optional

import redis.asyncio as redis

from tablebook.core.config import get_settings
from tablebook.core.logging import get_logger

logger = get_logger(__name__)

_redis_client: Optional[redis.Redis] = None
_retry_after: float = 0.0


async def get_redis() -> Optional[redis.Redis]:
    """Get or create the Redis connection. Returns None if Redis is disabled or down."""
    global _redis_client, _retry_after
    settings = get_settings()

    if not settings.REDIS_ENABLED:
        return None

    if _redis_client is None:
        if time.monotonic() < _retry_after:
            return None
        client = redis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
        )
        try:
            await client.ping()
        except redis.RedisError as e:
            _retry_after = time.monotonic() + settings.REDIS_RETRY_SECONDS
            logger.error("redis_connection_failed", error=str(e), retry_in=settings.REDIS_RETRY_SECONDS)
            await client.aclose()
            return None
        logger.info("redis_connected", url=settings.REDIS_URL)
        _redis_client = client

    return _redis_client


async def mark_redis_down(error: Exception) -> None:
    """Drop the current connection and back off before reconnecting."""
    global _redis_client, _retry_after
    settings = get_settings()
    client, _redis_client = _redis_client, None
    _retry_after = time.monotonic() + settings.REDIS_RETRY_SECONDS
    logger.warning("redis_marked_down", error=str(error), retry_in=settings.REDIS_RETRY_SECONDS)
    if client is not None:
        try:
            await client.aclose()
        except redis.RedisError as e:
            logger.warning("redis_close_failed", error=str(e))


async def close_redis() -> None:
    """Close the Redis connection on shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None


async def redis_status() -> dict:
    if not get_settings().REDIS_ENABLED:
        return {"status": "disabled"}
    client = await get_redis()
    if client is None:
        return {"status": "unavailable"}
    try:
        await client.ping()
        return {"status": "connected"}
    except redis.RedisError as e:
        return {"status": "error", "error": str(e)}
