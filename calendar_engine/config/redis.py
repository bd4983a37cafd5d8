"""Redis client for state shared between API instances"""
from typing import Optional

import redis.asyncio as redis

from calendar_engine.config.settings import Settings


def build_redis_client(settings: Settings) -> redis.Redis:
    """One pooled client per process; created in the app lifespan, closed on shutdown"""
    return redis.from_url(
        settings.REDIS_URL,
        max_connections=settings.REDIS_MAX_CONNECTIONS,
        decode_responses=True,
        retry_on_timeout=True,
    )


async def close_redis(client: Optional[redis.Redis]) -> None:
    if client is not None:
        await client.aclose()


class RedisKeys:
    """Key patterns"""

    # Pending OAuth connection, consumed once by the provider callback
    OAUTH_STATE = "oauth_state:{token}"
