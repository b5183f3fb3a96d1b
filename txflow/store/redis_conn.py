from typing import Optional

from redis.asyncio import Redis
from txflow.settings import settings

_client: Optional[Redis] = None


def get_redis() -> Redis:
    """One client (and connection pool) per process, created on first use."""
    global _client
    if _client is None:
        _client = Redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _client


async def close_redis() -> None:
    global _client
    client, _client = _client, None
    if client is not None:
        await client.aclose()
