"""Redis lock keeping scheduled runs of the same job from overlapping."""

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

import redis.asyncio as redis

from vendor_tracker.config import settings

logger = logging.getLogger(__name__)

KEY_PREFIX = "vendor_tracker:lock"

# 0 = not found, 1 = done, 2 = owned by another run
RELEASE_SCRIPT = """
local lock_value = redis.call('GET', KEYS[1])
if not lock_value then
    return 0
end

local cjson = require('cjson')
local success, data = pcall(cjson.decode, lock_value)
if not success then
    return 2
end

if data.run_id == ARGV[1] and data.token == ARGV[2] then
    redis.call('DEL', KEYS[1])
    return 1
else
    return 2
end
"""

REFRESH_SCRIPT = """
local lock_value = redis.call('GET', KEYS[1])
if not lock_value then
    return 0
end

local cjson = require('cjson')
local success, data = pcall(cjson.decode, lock_value)
if not success then
    return 0
end

if data.run_id == ARGV[1] and data.token == ARGV[2] then
    redis.call('EXPIRE', KEYS[1], ARGV[3])
    return 1
else
    return 2
end
"""


class RunLock:
    """
    One named lock in Redis, e.g. "scrape" or "backfill".

    The stored value carries the run id and a random token; refresh and
    release only act when both match, so a run can never drop a lock it no
    longer owns.
    """

    def __init__(self, name: str, redis_url: Optional[str] = None, ttl_seconds: Optional[int] = None):
        self.name = name
        self.key = f"{KEY_PREFIX}:{name}"
        self.redis_url = redis_url or settings.redis_url
        self.ttl_seconds = ttl_seconds or settings.run_lock_ttl_seconds
        self._redis: Optional[redis.Redis] = None

    async def _get_redis(self) -> redis.Redis:
        if self._redis is None:
            self._redis = await redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._redis

    async def close(self):
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def acquire(self, run_id: str) -> Optional[str]:
        """
        Take the lock.

        Returns:
            Ownership token, or None if another run holds the lock
        """
        redis_client = await self._get_redis()

        token = uuid4().hex
        lock_value = json.dumps({
            "run_id": run_id,
            "token": token,
            "started_at": datetime.utcnow().isoformat(),
        })

        acquired = await redis_client.set(self.key, lock_value, nx=True, ex=self.ttl_seconds)
        if acquired:
            logger.info(f"Acquired {self.name} lock for run_id: {run_id[:16]}...")
            return token

        info = await self.get_lock_info()
        holder = (info or {}).get("run_id") or "unknown"
        logger.info(f"{self.name} lock already held by run_id: {holder[:16]}...")
        return None

    async def refresh(self, run_id: str, token: str) -> bool:
        """Extend the TTL if we still own the lock."""
        redis_client = await self._get_redis()
        try:
            result = await redis_client.eval(
                REFRESH_SCRIPT, 1, self.key, run_id, token, str(self.ttl_seconds)
            )
        except redis.RedisError as e:
            logger.error(f"Error refreshing {self.name} lock: {e}")
            return False

        if result == 2:
            logger.warning(f"{self.name} lock is owned by another run; not refreshing")
        return result == 1

    async def release(self, run_id: str, token: Optional[str]) -> bool:
        """Delete the lock only if run id and token match."""
        if not token:
            logger.warning("Release requested without token; refusing")
            return False

        redis_client = await self._get_redis()
        try:
            result = await redis_client.eval(RELEASE_SCRIPT, 1, self.key, run_id, token)
        except redis.RedisError as e:
            logger.error(f"Error releasing {self.name} lock: {e}")
            return False

        if result == 2:
            logger.warning(f"Refusing to release {self.name} lock held by another run")
            return False
        logger.info(f"Released {self.name} lock for run_id: {run_id[:16]}...")
        return True

    async def force_unlock(self) -> None:
        redis_client = await self._get_redis()
        await redis_client.delete(self.key)
        logger.warning(f"Force-cleared {self.name} lock")

    async def get_lock_info(self) -> Optional[dict[str, Any]]:
        redis_client = await self._get_redis()
        value = await redis_client.get(self.key)
        if not value:
            return None
        ttl = await redis_client.ttl(self.key)
        try:
            data = json.loads(value)
        except ValueError:
            return {"raw_value": value, "ttl_seconds": ttl if ttl > 0 else None}
        return {
            "run_id": data.get("run_id"),
            "token": data.get("token"),
            "started_at": data.get("started_at"),
            "ttl_seconds": ttl if ttl > 0 else None,
        }


async def keep_lock_alive(lock: RunLock, run_id: str, token: str, interval: float) -> None:
    """Refresh the lock TTL every `interval` seconds until cancelled."""
    failure_count = 0
    try:
        while True:
            await asyncio.sleep(interval)
            if await lock.refresh(run_id, token):
                failure_count = 0
                continue
            failure_count += 1
            logger.warning(
                f"{lock.name} lock heartbeat failed for run_id: {run_id[:16]}... "
                f"(consecutive failures: {failure_count})"
            )
            if failure_count >= 3:
                logger.error(f"Stopping {lock.name} lock heartbeat after {failure_count} failures")
                break
    except asyncio.CancelledError:
        logger.debug(f"{lock.name} lock heartbeat cancelled")
        raise
