"""Redis connection pool and the replay-protection nonce store."""

from collections.abc import AsyncGenerator

import redis.asyncio as aioredis

from app.config import settings

redis_pool = aioredis.ConnectionPool.from_url(settings.redis_url)

NONCE_PREFIX = "marketplace:nonce:"


async def get_redis() -> AsyncGenerator[aioredis.Redis, None]:
    client = aioredis.Redis(connection_pool=redis_pool)
    try:
        yield client
    finally:
        await client.aclose()


async def claim_nonce(redis: aioredis.Redis, nonce: str, ttl_seconds: int) -> bool:
    """Record ``nonce`` as used. False when it was already seen within the TTL."""
    first_use = await redis.set(f"{NONCE_PREFIX}{nonce}", "1", nx=True, ex=ttl_seconds)
    return bool(first_use)
