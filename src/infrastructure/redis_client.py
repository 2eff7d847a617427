"""Shared Redis connection pool (notifications pub/sub and sweeper locks)."""

import redis.asyncio as aioredis

from src.config import settings

_pool = aioredis.ConnectionPool.from_url(settings.redis_url, decode_responses=True)


async def get_redis() -> aioredis.Redis:
    return aioredis.Redis(connection_pool=_pool)
