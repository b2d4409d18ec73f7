from __future__ import annotations

import logging

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from app.config import settings

logger = logging.getLogger(__name__)

# Global Redis client
redis_client: aioredis.Redis | None = None


async def init_redis() -> aioredis.Redis | None:
    """Initialize the Redis connection if REDIS_URL is provided."""
    global redis_client

    if not settings.redis_url:
        logger.info("No REDIS_URL provided, running with in-process cache")
        return None

    try:
        redis_client = aioredis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=settings.redis_connect_timeout_seconds,
            health_check_interval=30,
            retry_on_timeout=True,
        )
        await redis_client.ping()
        logger.info("Redis connection initialized successfully")
    except (RedisError, OSError) as e:
        # Cache is an accelerator only; keep serving without it.
        logger.error(f"Failed to initialize Redis: {e}")
    return redis_client


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global redis_client

    if redis_client is None:
        return
    try:
        await redis_client.aclose()
    except (RedisError, OSError) as e:
        logger.warning(f"Failed to close Redis cleanly: {e}")
    finally:
        redis_client = None


def get_redis() -> aioredis.Redis | None:
    """Return the shared Redis client, if one was configured."""
    return redis_client


async def check_redis_health() -> bool:
    """Check if Redis is reachable."""
    if redis_client is None:
        return True  # No Redis configured, consider healthy

    try:
        await redis_client.ping()
        return True
    except (RedisError, OSError) as e:
        logger.error(f"Redis health check failed: {e}")
        return False
