from typing import Optional

import redis.asyncio as redis
import structlog
from redis.exceptions import LockNotOwnedError

from app.core.config import settings

logger = structlog.get_logger(__name__)

SWEEP_LOCK_KEY = "sweep_lock:expire_passed_reservations"


class RedisClient:
    """Redis client for short-lived cross-process locks."""

    def __init__(self):
        self.redis_pool = None

    async def init_redis(self):
        """Initialize Redis connection pool."""
        try:
            self.redis_pool = redis.ConnectionPool.from_url(
                settings.REDIS_URL,
                decode_responses=True,
                retry_on_timeout=True,
                socket_keepalive=True,
                socket_keepalive_options={},
            )

            async with redis.Redis(connection_pool=self.redis_pool) as r:
                await r.ping()
                logger.info("Redis connection established")

        except Exception as e:
            logger.error("Failed to connect to Redis", exc_info=e)
            self.redis_pool = None
            raise

    async def get_redis(self) -> redis.Redis:
        """Get Redis client instance."""
        if not self.redis_pool:
            await self.init_redis()
        return redis.Redis(connection_pool=self.redis_pool)

    async def close(self):
        if self.redis_pool:
            await self.redis_pool.disconnect()
            self.redis_pool = None

    async def acquire_lock(self, key: str, owner: str, expire: int) -> Optional[bool]:
        """Take ``key`` for ``owner`` without blocking.

        Returns True when acquired, False when another owner holds it and
        None when Redis could not be reached.
        """
        try:
            client = await self.get_redis()
            lock = client.lock(key, timeout=expire, blocking=False)
            return await lock.acquire(token=owner)
        except Exception as e:
            logger.error("Redis lock error", key=key, exc_info=e)
            return None

    async def release_lock(self, key: str, owner: str) -> bool:
        """Release ``key`` only if ``owner`` still holds it.

        The owner check and delete run as one Lua script, so a lock that expired
        and was taken by another worker is left in place.
        """
        try:
            client = await self.get_redis()
            await client.lock(key).do_release(owner)
            return True
        except LockNotOwnedError:
            logger.warning("Lock expired before release", key=key, owner=owner)
            return False
        except Exception as e:
            logger.error("Redis unlock error", key=key, exc_info=e)
            return False

    async def acquire_sweep_lock(self, owner: str) -> Optional[bool]:
        """Guard against two expiry sweeps running at the same time."""
        return await self.acquire_lock(SWEEP_LOCK_KEY, owner, settings.SWEEP_LOCK_SECONDS)

    async def release_sweep_lock(self, owner: str) -> bool:
        return await self.release_lock(SWEEP_LOCK_KEY, owner)


# Global Redis client instance
redis_client = RedisClient()
