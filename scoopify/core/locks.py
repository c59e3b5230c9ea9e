"""
Redis-backed locks for periodic jobs.

When several scheduler processes run, a job acquires ``SET key token NX PX``
before it starts so only one process executes it at a time. The lock is
released only by the token holder.
"""

import secrets
from typing import Optional

import redis.asyncio as redis
from redis.asyncio import Redis

from .config import settings
from .logging import get_logger

logger = get_logger(__name__)

# Delete the key only if it still holds our token
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class JobLock:
    """Exclusive, expiring lock for one named job.

    Usage:
        async with JobLock(client, "generate_services") as acquired:
            if acquired:
                ...
    """

    def __init__(self, client: Redis, name: str, ttl_seconds: Optional[int] = None):
        self.client = client
        self.key = f"{settings.redis_prefix}lock:{name}"
        self.ttl_ms = int((ttl_seconds or settings.job_lock_ttl_seconds) * 1000)
        self.token = secrets.token_hex(16)
        self.acquired = False

    async def acquire(self) -> bool:
        self.acquired = bool(
            await self.client.set(self.key, self.token, nx=True, px=self.ttl_ms)
        )
        if not self.acquired:
            logger.info("Job lock held elsewhere", key=self.key)
        return self.acquired

    async def release(self) -> bool:
        if not self.acquired:
            return False
        released = await self.client.eval(_RELEASE_SCRIPT, 1, self.key, self.token)
        self.acquired = False
        return bool(released)

    async def __aenter__(self) -> bool:
        return await self.acquire()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.release()


_redis: Optional[Redis] = None


async def get_redis() -> Optional[Redis]:
    """Shared Redis client, or None when Redis is not configured."""
    global _redis
    if _redis is None and settings.redis_url:
        client = redis.from_url(settings.redis_url, decode_responses=True)
        await client.ping()
        _redis = client
        logger.info("Redis connection established", url=settings.redis_url)
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None
        logger.info("Redis connection closed")
