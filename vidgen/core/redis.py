"""
Redis Connection Manager
Provides Redis connection pools for RQ queues and progress pub/sub.
"""

import logging
from typing import Optional
from redis import Redis, ConnectionPool
from redis import asyncio as aioredis
from redis.exceptions import ConnectionError, TimeoutError

logger = logging.getLogger(__name__)


class RedisManager:
    """
    Manages Redis connections with connection pooling.

    Features:
    - Connection pooling for efficient resource usage
    - Health checks
    - A separate asyncio client for pub/sub subscribers

    Instances are created by the process entry point and closed by it.
    """

    def __init__(self, url: str):
        self.url = url
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[Redis] = None
        self._async_client: Optional[aioredis.Redis] = None

    def _create_pool(self) -> ConnectionPool:
        """Create Redis connection pool."""
        return ConnectionPool.from_url(
            self.url,
            max_connections=10,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
            decode_responses=False  # RQ needs bytes
        )

    def get_connection(self) -> Redis:
        """
        Get a Redis connection from the pool.

        Returns:
            Redis client instance
        """
        if self._pool is None:
            self._pool = self._create_pool()
            logger.info(f"Created Redis connection pool for {self._mask_url(self.url)}")

        if self._client is None:
            self._client = Redis(connection_pool=self._pool)

        return self._client

    def get_async_connection(self) -> aioredis.Redis:
        """Get the asyncio client used for publishing and subscribing."""
        if self._async_client is None:
            self._async_client = aioredis.from_url(self.url, decode_responses=True)
        return self._async_client

    def health_check(self) -> dict:
        """
        Check Redis connection health.

        Returns:
            dict with status and info
        """
        try:
            client = self.get_connection()
            ping_result = client.ping()
            info = client.info("server")

            return {
                "status": "healthy" if ping_result else "unhealthy",
                "connected": True,
                "redis_version": info.get("redis_version", "unknown"),
                "url": self._mask_url(self.url)
            }
        except (ConnectionError, TimeoutError) as e:
            logger.error(f"Redis health check failed: {e}")
            return {
                "status": "unhealthy",
                "connected": False,
                "error": str(e),
                "url": self._mask_url(self.url)
            }

    @staticmethod
    def _mask_url(url: str) -> str:
        """Mask password in Redis URL for logging."""
        if "@" in url:
            # redis://:password@host:port -> redis://***@host:port
            parts = url.split("@")
            return f"redis://***@{parts[-1]}"
        return url

    async def aclose(self):
        """Close the asyncio client."""
        if self._async_client is not None:
            await self._async_client.aclose()
            self._async_client = None

    def close(self):
        """Close all connections in the pool."""
        if self._pool:
            self._pool.disconnect()
            self._pool = None
            self._client = None
            logger.info("Redis connection pool closed")


# Queue names
class Queues:
    """One queue per job type. Each is served by exactly one worker."""
    GENERATE = "generate"
    MERGE = "merge"
    UPSCALE = "upscale"
    INTERPOLATE = "interpolate"
    EXPORT = "export"
    LONG_VIDEO = "long_video"

    ALL = [GENERATE, MERGE, UPSCALE, INTERPOLATE, EXPORT, LONG_VIDEO]


# Export all
__all__ = [
    "RedisManager",
    "Queues"
]
