"""Tests for the Redis run lock."""

import pytest
import redis.asyncio as redis

from vendor_tracker.config import settings
from vendor_tracker.worker.run_lock import RunLock


async def _redis_available() -> bool:
    try:
        client = await redis.from_url(settings.redis_url, decode_responses=True)
        await client.ping()
        await client.aclose()
        return True
    except Exception:
        return False


@pytest.mark.asyncio
async def test_lock_acquire_refresh_release():
    if not await _redis_available():
        pytest.skip("Redis not available")

    lock = RunLock("test_scrape", redis_url=settings.redis_url, ttl_seconds=30)
    await lock.force_unlock()

    run_id = "test_run_lock"
    token = await lock.acquire(run_id)
    assert token is not None

    info = await lock.get_lock_info()
    assert info is not None
    assert info.get("run_id") == run_id
    assert info.get("token") == token

    assert await lock.refresh(run_id, token) is True
    assert await lock.release(run_id, token) is True
    assert await lock.get_lock_info() is None

    await lock.close()


@pytest.mark.asyncio
async def test_second_run_is_refused():
    if not await _redis_available():
        pytest.skip("Redis not available")

    lock = RunLock("test_reports", redis_url=settings.redis_url, ttl_seconds=30)
    await lock.force_unlock()

    token = await lock.acquire("first_run")
    assert token is not None
    assert await lock.acquire("second_run") is None

    await lock.release("first_run", token)
    await lock.close()


@pytest.mark.asyncio
async def test_lock_token_mismatch():
    if not await _redis_available():
        pytest.skip("Redis not available")

    lock = RunLock("test_mismatch", redis_url=settings.redis_url, ttl_seconds=30)
    await lock.force_unlock()

    run_id = "test_run_token"
    token = await lock.acquire(run_id)
    assert token is not None

    assert await lock.release(run_id, "bad_token") is False
    assert await lock.refresh(run_id, "bad_token") is False

    await lock.force_unlock()
    await lock.close()
