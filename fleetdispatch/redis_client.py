import redis.asyncio as aioredis
from fleetdispatch.config import get_settings

settings = get_settings()

_redis_pool: aioredis.Redis | None = None


async def get_redis() -> aioredis.Redis:
    global _redis_pool
    if _redis_pool is None:
        _redis_pool = aioredis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=50,
        )
    return _redis_pool


async def close_redis() -> None:
    global _redis_pool
    if _redis_pool:
        await _redis_pool.aclose()
        _redis_pool = None


# ---------------------------------------------------------------------------
# Cache helpers
# ---------------------------------------------------------------------------

def distance_cache_key(origin_lat: float, origin_lng: float, dest_lat: float, dest_lng: float) -> str:
    """Coordinates rounded to ~1 m so jittery pickers still share an entry."""
    return f"distance:{origin_lat:.5f},{origin_lng:.5f}:{dest_lat:.5f},{dest_lng:.5f}"


async def cache_set(redis: aioredis.Redis, key: str, value: str, ttl: int) -> None:
    await redis.setex(key, ttl, value)


async def cache_get(redis: aioredis.Redis, key: str) -> str | None:
    return await redis.get(key)
