"""Redis client for batch-file download links and release event fan-out.

Usage:
    from fund_custody.infrastructure.redis_client import get_redis, close_redis

    redis = get_redis()
    await redis.set("key", "value", ex=300)
"""

from __future__ import annotations

import secrets

import redis.asyncio as aioredis

from fund_custody.config import get_settings
from fund_custody.logging_config import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None

BATCH_FILE_PREFIX = "batch_file:"


async def init_redis() -> aioredis.Redis:
    """Initialize and return the Redis client. Called during app startup."""
    global _redis_client
    settings = get_settings()
    _redis_client = aioredis.from_url(
        settings.redis_url,
        decode_responses=True,
    )
    # Verify connectivity
    await _redis_client.ping()
    logger.info("redis.connected", url=settings.redis_url)
    return _redis_client


def get_redis() -> aioredis.Redis:
    """Return the Redis client singleton. Must call init_redis() first."""
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


async def close_redis() -> None:
    """Close the Redis connection. Called during app shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None


# --- Batch File Link Helpers ---


async def store_batch_file(
    redis: aioredis.Redis, content: str, ttl_seconds: int | None = None
) -> str:
    """Store a generated batch file under a fresh random token.

    The token is the only handle to the file; it expires after the TTL.
    """
    ttl = ttl_seconds or get_settings().batch_file_link_ttl_seconds
    token = secrets.token_urlsafe(32)
    await redis.set(f"{BATCH_FILE_PREFIX}{token}", content, ex=ttl)
    return token


async def take_batch_file(redis: aioredis.Redis, token: str) -> str | None:
    """Fetch and delete a stored batch file. A token works exactly once."""
    return await redis.getdel(f"{BATCH_FILE_PREFIX}{token}")
