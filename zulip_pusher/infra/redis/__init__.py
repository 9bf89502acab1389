"""
Redis client infrastructure for the subscription store.

This module provides an async Redis client singleton shared by the API
process and the poller; the Celery worker opens its own per task loop.
"""

import logging

import redis.asyncio as redis

from zulip_pusher.configs import configs

logger = logging.getLogger(__name__)


# Global Redis client instance
_redis_client: redis.Redis | None = None


async def get_redis_client() -> redis.Redis:
    """
    Get the global async Redis client instance.

    Creates a new connection on first call, reuses existing connection
    on subsequent calls.

    Returns:
        redis.Redis: Async Redis client instance
    """
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(
            configs.Redis.REDIS_URL,
            decode_responses=True,
        )
        logger.info(f"Redis client initialized: {configs.Redis.Host}:{configs.Redis.Port}")
    return _redis_client


async def close_redis_client() -> None:
    """Close the global Redis client connection."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Redis client connection closed")


async def health_check() -> bool:
    """
    Check Redis connectivity.

    Returns:
        bool: True if Redis is reachable, False otherwise
    """
    try:
        client = await get_redis_client()
        await client.ping()
        return True
    except Exception as e:
        logger.error(f"Redis health check failed: {e}")
        return False


__all__ = [
    "get_redis_client",
    "close_redis_client",
    "health_check",
]
