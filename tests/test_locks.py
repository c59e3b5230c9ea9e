"""
Tests for the Redis job locks.
"""

import pytest

from scoopify.core.config import settings
from scoopify.core.locks import JobLock, get_redis

from helpers import FakeRedis


@pytest.mark.asyncio
async def test_lock_is_exclusive():
    client = FakeRedis()
    first = JobLock(client, "generate_services", ttl_seconds=60)
    second = JobLock(client, "generate_services", ttl_seconds=60)

    assert await first.acquire()
    assert not await second.acquire()
    assert client.ttls[first.key] == 60000
    assert first.key == f"{settings.redis_prefix}lock:generate_services"


@pytest.mark.asyncio
async def test_only_the_holder_releases():
    client = FakeRedis()
    holder = JobLock(client, "retry_payments")
    other = JobLock(client, "retry_payments")
    await holder.acquire()

    assert not await other.release()
    assert holder.key in client.values
    assert await holder.release()
    assert holder.key not in client.values


@pytest.mark.asyncio
async def test_expired_lock_is_not_released_by_former_holder():
    client = FakeRedis()
    stale = JobLock(client, "settle_referrals")
    await stale.acquire()
    # TTL ran out and another process took over
    client.values.pop(stale.key)
    fresh = JobLock(client, "settle_referrals")
    await fresh.acquire()

    assert not await stale.release()
    assert client.values[fresh.key] == fresh.token


@pytest.mark.asyncio
async def test_context_manager_releases_on_exit():
    client = FakeRedis()

    async with JobLock(client, "unlock_jobs") as acquired:
        assert acquired
        async with JobLock(client, "unlock_jobs") as nested:
            assert not nested

    assert client.values == {}


@pytest.mark.asyncio
async def test_no_redis_configured():
    assert await get_redis() is None
