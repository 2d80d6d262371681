"""Redis connection: backing store for the rate limiter.

Learn: One connection pool per process, opened in the app lifespan and
closed on shutdown. Redis is optional: when init_redis() fails the app
keeps serving and get_redis() raises, which the rate limiter treats as
"limiting disabled".
"""

from typing import Optional

import redis.asyncio as aioredis

# Global Redis connection pool (initialized in lifespan)
_redis: Optional[aioredis.Redis] = None


async def init_redis(url: str) -> aioredis.Redis:
    """Initialize the Redis connection pool."""
    global _redis
    client = aioredis.from_url(url, encoding="utf-8", decode_responses=True)
    try:
        # Verify connection
        await client.ping()
    except Exception:
        await client.aclose()
        raise
    _redis = client
    return _redis


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis
    if _redis:
        await _redis.aclose()
        _redis = None


def get_redis() -> aioredis.Redis:
    """Get the Redis connection (must be initialized first)."""
    if _redis is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis


async def ping() -> bool:
    """True when Redis is initialized and answering."""
    try:
        return bool(await get_redis().ping())
    except Exception:
        return False
