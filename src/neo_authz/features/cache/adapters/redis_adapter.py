"""Redis cache backend built on redis.asyncio."""

from typing import List, Optional

from loguru import logger
from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import RedisError, TimeoutError as RedisTimeoutError

from ..entities.protocols import CacheBackend
from ....core.exceptions import CacheConnectionError, CacheTimeoutError


class RedisCacheBackend(CacheBackend):
    """Redis implementation of the cache backend.

    Redis failures surface as ``CacheConnectionError`` or
    ``CacheTimeoutError`` so callers only deal with the cache error family.
    """

    SCAN_BATCH_SIZE = 500

    def __init__(self, redis_client: Redis, connection_pool: Optional[ConnectionPool] = None):
        self._redis = redis_client
        self._pool = connection_pool

    @classmethod
    def from_url(cls, url: str, pool_size: int = 10) -> "RedisCacheBackend":
        """Create a backend with its own connection pool."""
        pool = ConnectionPool.from_url(url, max_connections=pool_size)
        logger.info(f"Created Redis connection pool (max_connections={pool_size})")
        return cls(Redis(connection_pool=pool), connection_pool=pool)

    @staticmethod
    def _wrap(operation: str, key: str, error: RedisError) -> Exception:
        if isinstance(error, RedisTimeoutError):
            return CacheTimeoutError(
                f"Redis {operation} timed out for {key}: {error}",
                details={"operation": operation, "key": key},
            )
        return CacheConnectionError(
            f"Redis {operation} failed for {key}: {error}",
            details={"operation": operation, "key": key},
        )

    async def get(self, key: str) -> Optional[bytes]:
        try:
            return await self._redis.get(key)
        except RedisError as e:
            raise self._wrap("get", key, e) from e

    async def set(self, key: str, value: bytes, ttl: int) -> None:
        try:
            await self._redis.setex(key, ttl, value)
        except RedisError as e:
            raise self._wrap("set", key, e) from e

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self._redis.delete(key))
        except RedisError as e:
            raise self._wrap("delete", key, e) from e

    async def delete_pattern(self, pattern: str) -> int:
        deleted = 0
        batch: List[bytes] = []
        try:
            async for key in self._redis.scan_iter(match=pattern, count=self.SCAN_BATCH_SIZE):
                batch.append(key)
                if len(batch) >= self.SCAN_BATCH_SIZE:
                    deleted += await self._redis.delete(*batch)
                    batch = []
            if batch:
                deleted += await self._redis.delete(*batch)
        except RedisError as e:
            raise self._wrap("delete_pattern", pattern, e) from e
        return deleted

    async def count_keys(self, pattern: str) -> int:
        count = 0
        try:
            async for _ in self._redis.scan_iter(match=pattern, count=self.SCAN_BATCH_SIZE):
                count += 1
        except RedisError as e:
            raise self._wrap("count_keys", pattern, e) from e
        return count

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except RedisError as e:
            raise self._wrap("ping", "-", e) from e

    async def close(self) -> None:
        try:
            await self._redis.aclose()
            if self._pool is not None:
                await self._pool.disconnect()
        except RedisError as e:
            logger.error(f"Error closing Redis connection: {e}")
