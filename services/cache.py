"""
Cache Service

Redis-backed helpers for:
1. Short-TTL workspace aggregates (invalidated by mutation paths after commit)
2. Short-lived locks that serialise booking creation per service type and day

Cache failures degrade to a miss; they never fail the caller.
"""

import asyncio
import uuid
from contextlib import asynccontextmanager
from typing import Callable, Any, Optional

import orjson
import structlog
import redis.asyncio as redis

from errors import ConflictError

logger = structlog.get_logger("cache")

LOCK_RETRIES = 5
LOCK_RETRY_DELAY = 0.1


def workspace_key(workspace_id: str, name: str) -> str:
    return f"workspace:{workspace_id}:{name}"


class CacheService:
    """
    Simple cache wrapper around Redis.

    Provides:
    - get/set with TTL
    - get_or_compute pattern
    - workspace-wide invalidation
    - SET NX locks
    """

    def __init__(self, redis_client: redis.Redis):
        self.redis = redis_client

    async def get(self, key: str) -> Optional[str]:
        """
        Get value from cache.

        Returns None if key doesn't exist or on error.
        """
        try:
            return await self.redis.get(key)
        except Exception as e:
            logger.warning("Cache GET failed", key=key, error=str(e))
            return None

    async def set(self, key: str, value: Any, ttl: int = 300):
        """Set value in cache with TTL (seconds). Dicts/lists are JSON encoded."""
        try:
            if not isinstance(value, (str, bytes)):
                value = orjson.dumps(value).decode("utf-8")

            await self.redis.setex(key, ttl, value)

        except Exception as e:
            logger.warning("Cache SET failed", key=key, error=str(e))

    async def delete(self, key: str):
        """Delete key from cache."""
        try:
            await self.redis.delete(key)
        except Exception as e:
            logger.warning("Cache DELETE failed", key=key, error=str(e))

    async def get_or_compute(
        self,
        key: str,
        compute_func: Callable,
        *args,
        ttl: int = 300
    ) -> Any:
        """
        Get from cache or compute if missing.

        Resilient to Redis failures: a broken cache just means recomputing.
        """
        try:
            cached = await self.redis.get(key)
            if cached:
                return orjson.loads(cached)
        except Exception as e:
            logger.debug("Cache read failed", key=key, error=str(e))

        result = await compute_func(*args)

        if result is not None:
            await self.set(key, result, ttl)

        return result

    async def invalidate_workspace(self, workspace_id: str):
        """Drop every cached aggregate of one workspace. Call after commit."""
        try:
            keys = [key async for key in self.redis.scan_iter(match=workspace_key(workspace_id, "*"), count=100)]
            if keys:
                await self.redis.delete(*keys)
                logger.debug("Workspace cache invalidated", workspace_id=workspace_id, keys=len(keys))
        except Exception as e:
            logger.warning("Cache invalidation failed", workspace_id=workspace_id, error=str(e))

    # =========================================================================
    # LOCKS
    # =========================================================================

    @asynccontextmanager
    async def lock(self, key: str, ttl: int = 10):
        """
        Hold a Redis SET NX lock for the duration of the block.

        Raises ConflictError when another holder keeps the lock past the
        retry budget. If Redis itself is unreachable the block runs unlocked.
        """
        token = str(uuid.uuid4())
        lock_key = f"lock:{key}"
        acquired = False
        redis_ok = True

        for _ in range(LOCK_RETRIES):
            try:
                acquired = bool(await self.redis.set(lock_key, token, nx=True, ex=ttl))
            except Exception as e:
                logger.warning("Lock unavailable, continuing unlocked", key=lock_key, error=str(e))
                redis_ok = False
                break
            if acquired:
                break
            await asyncio.sleep(LOCK_RETRY_DELAY)

        if redis_ok and not acquired:
            raise ConflictError("This time slot is being booked by someone else, please try again")

        try:
            yield
        finally:
            if acquired:
                try:
                    if await self.redis.get(lock_key) == token:
                        await self.redis.delete(lock_key)
                except Exception as e:
                    logger.warning("Lock release failed", key=lock_key, error=str(e))
