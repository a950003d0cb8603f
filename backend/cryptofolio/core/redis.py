"""
Redis connection management.

Provides the async Redis client used for the quote cache and the
metrics stream.
"""

from typing import Optional
from redis.asyncio import Redis as AsyncRedis
from cryptofolio.core.config import settings

async_redis_client: Optional[AsyncRedis] = None


async def get_async_redis() -> AsyncRedis:
    """Get async Redis client."""
    global async_redis_client
    if async_redis_client is None:
        async_redis_client = AsyncRedis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
        )
    return async_redis_client


async def close_redis() -> None:
    """Close Redis connections."""
    global async_redis_client

    if async_redis_client is not None:
        await async_redis_client.aclose()
        async_redis_client = None


class CacheKeys:
    """Redis key layout for the quote cache."""

    QUOTE_PREFIX = "quote"

    @staticmethod
    def quote(vs_currency: str, coin_id: str) -> str:
        return f"{CacheKeys.QUOTE_PREFIX}:{vs_currency}:{coin_id}"


class StreamNames:
    """Redis Stream names."""

    METRICS = "metrics"
