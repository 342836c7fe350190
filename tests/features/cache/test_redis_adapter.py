"""Tests for the Redis cache backend."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from neo_authz.core.exceptions import CacheConnectionError, CacheTimeoutError
from neo_authz.features.cache import RedisCacheBackend


def scan_results(keys):
    async def scan_iter(match=None, count=None):
        for key in keys:
            yield key

    return MagicMock(side_effect=scan_iter)


@pytest.fixture
def redis_client():
    return AsyncMock()


@pytest.fixture
def redis_backend(redis_client):
    return RedisCacheBackend(redis_client)


class TestRedisCacheBackend:
    """Test command mapping and error translation."""

    @pytest.mark.asyncio
    async def test_set_uses_setex(self, redis_backend, redis_client):
        await redis_backend.set("k", b"v", ttl=30)

        redis_client.setex.assert_awaited_once_with("k", 30, b"v")

    @pytest.mark.asyncio
    async def test_get(self, redis_backend, redis_client):
        redis_client.get.return_value = b"v"

        assert await redis_backend.get("k") == b"v"
        redis_client.get.assert_awaited_once_with("k")

    @pytest.mark.asyncio
    async def test_delete_reports_existence(self, redis_backend, redis_client):
        redis_client.delete.return_value = 0
        assert not await redis_backend.delete("k")

        redis_client.delete.return_value = 1
        assert await redis_backend.delete("k")

    @pytest.mark.asyncio
    async def test_delete_pattern_batches(self, redis_backend, redis_client, monkeypatch):
        monkeypatch.setattr(RedisCacheBackend, "SCAN_BATCH_SIZE", 2)
        redis_client.scan_iter = scan_results([b"p:1", b"p:2", b"p:3"])
        redis_client.delete.side_effect = lambda *keys: len(keys)

        assert await redis_backend.delete_pattern("p:*") == 3
        assert redis_client.delete.await_count == 2
        redis_client.scan_iter.assert_called_once_with(match="p:*", count=2)

    @pytest.mark.asyncio
    async def test_delete_pattern_without_matches(self, redis_backend, redis_client):
        redis_client.scan_iter = scan_results([])

        assert await redis_backend.delete_pattern("p:*") == 0
        redis_client.delete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_count_keys(self, redis_backend, redis_client):
        redis_client.scan_iter = scan_results([b"p:1", b"p:2"])

        assert await redis_backend.count_keys("p:*") == 2

    @pytest.mark.asyncio
    async def test_connection_error_is_translated(self, redis_backend, redis_client):
        redis_client.get.side_effect = RedisConnectionError("refused")

        with pytest.raises(CacheConnectionError) as exc_info:
            await redis_backend.get("k")

        assert exc_info.value.details == {"operation": "get", "key": "k"}
        assert isinstance(exc_info.value.__cause__, RedisConnectionError)

    @pytest.mark.asyncio
    async def test_timeout_is_translated(self, redis_backend, redis_client):
        redis_client.setex.side_effect = RedisTimeoutError("slow")

        with pytest.raises(CacheTimeoutError):
            await redis_backend.set("k", b"v", ttl=5)

    @pytest.mark.asyncio
    async def test_ping(self, redis_backend, redis_client):
        redis_client.ping.return_value = True
        assert await redis_backend.ping()

        redis_client.ping.side_effect = RedisConnectionError("down")
        with pytest.raises(CacheConnectionError):
            await redis_backend.ping()

    @pytest.mark.asyncio
    async def test_close_disconnects_pool(self, redis_client):
        pool = AsyncMock()
        backend = RedisCacheBackend(redis_client, connection_pool=pool)

        await backend.close()

        redis_client.aclose.assert_awaited_once()
        pool.disconnect.assert_awaited_once()

    def test_from_url_builds_pool(self):
        backend = RedisCacheBackend.from_url("redis://localhost:6379/0", pool_size=4)

        assert backend._pool.max_connections == 4
