"""
Redis client initialization and connection management.

Redis holds the token revocation list shared with the identity service.
"""

import logging
import redis.asyncio as redis
from rideshare.app.core.config import settings

logger = logging.getLogger("rideshare.redis")

# Create async Redis client
redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)


async def get_redis():
    """
    Get Redis client instance.

    This can be used as a FastAPI dependency if needed.
    """
    return redis_client


async def ping_redis() -> bool:
    """
    Test Redis connection.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        return bool(await redis_client.ping())
    except redis.RedisError as e:
        logger.warning("Redis ping failed", extra={"error": str(e)})
        return False
