from typing import Optional
import redis.asyncio as redis
from redis.asyncio import ConnectionPool

from dhis2_gateway.core.config import settings
from dhis2_gateway.core.logging import get_logger

logger = get_logger(__name__)


class RedisClient:
    """
    Shared Redis connection used by the task queue and health checks.
    """

    def __init__(self):
        self.pool = ConnectionPool.from_url(
            settings.REDIS_URL,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
            decode_responses=True
        )
        self.client: Optional[redis.Redis] = None

    async def connect(self):
        """Initialize Redis connection."""
        try:
            self.client = redis.Redis(connection_pool=self.pool)
            await self.client.ping()
            logger.info("Redis connection established")
        except Exception as e:
            logger.error(f"Failed to connect to Redis: {e}")
            raise

    async def disconnect(self):
        """Close Redis connection."""
        if self.client:
            await self.client.aclose()
            await self.pool.disconnect()
            self.client = None
            logger.info("Redis connection closed")

    async def set_lock(self, lock_key: str, ttl_seconds: int = 300) -> bool:
        """
        Set a distributed lock.
        Returns True if lock acquired, False if already exists.
        """
        try:
            result = await self.client.set(lock_key, "1", nx=True, ex=ttl_seconds)
            return bool(result)
        except Exception as e:
            logger.error(f"Failed to set lock {lock_key}: {e}")
            return False

    async def release_lock(self, lock_key: str):
        """Release a distributed lock."""
        try:
            await self.client.delete(lock_key)
        except Exception as e:
            logger.error(f"Failed to release lock {lock_key}: {e}")


# Global Redis client instance
redis_client = RedisClient()
