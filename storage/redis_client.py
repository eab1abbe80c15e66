"""Redis client for the redis state backend."""

import logging
from typing import Optional

import redis.asyncio as redis
from redis.asyncio import Redis

from config.settings import settings

logger = logging.getLogger(__name__)


class RedisClient:
    """Thin Redis connection wrapper with key prefixing."""

    def __init__(self, url: Optional[str] = None, prefix: Optional[str] = None):
        self.url = url or settings.redis_url
        self.prefix = prefix if prefix is not None else settings.redis_key_prefix
        self._redis: Optional[Redis] = None

    async def connect(self) -> Redis:
        """Connect to Redis."""
        if self._redis is None:
            self._redis = redis.from_url(
                self.url,
                decode_responses=False,  # values are msgpack bytes
            )
            await self._redis.ping()
            logger.info(f"Connected to Redis at {self.url}")
        return self._redis

    async def close(self):
        """Close Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    @property
    def redis(self) -> Redis:
        """Get Redis connection (must be connected first)."""
        if self._redis is None:
            raise RuntimeError("Redis not connected. Call connect() first.")
        return self._redis

    def key(self, name: str) -> str:
        return f"{self.prefix}{name}"

    async def get(self, name: str) -> Optional[bytes]:
        return await self.redis.get(self.key(name))

    async def set(self, name: str, value: bytes):
        await self.redis.set(self.key(name), value)

    async def delete(self, name: str):
        await self.redis.delete(self.key(name))

