"""Tests for the in-memory cache backend."""

import pytest

from neo_authz.features.cache import MemoryCacheBackend


class Ticker:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def ticker():
    return Ticker()


@pytest.fixture
def memory(ticker):
    return MemoryCacheBackend(max_size=3, clock=ticker)


class TestMemoryCacheBackend:
    """Test TTL, eviction and pattern operations."""

    @pytest.mark.asyncio
    async def test_set_and_get(self, memory):
        await memory.set("a", b"1", ttl=10)

        assert await memory.get("a") == b"1"
        assert await memory.get("missing") is None

    @pytest.mark.asyncio
    async def test_entry_expires_at_ttl(self, memory, ticker):
        await memory.set("a", b"1", ttl=10)

        ticker.now = 9.999
        assert await memory.get("a") == b"1"

        ticker.now = 10.0
        assert await memory.get("a") is None
        assert len(memory) == 0

    @pytest.mark.asyncio
    async def test_overwrite_resets_ttl(self, memory, ticker):
        await memory.set("a", b"1", ttl=10)
        ticker.now = 8
        await memory.set("a", b"2", ttl=10)

        ticker.now = 15
        assert await memory.get("a") == b"2"

    @pytest.mark.asyncio
    async def test_least_recently_used_is_evicted(self, memory):
        await memory.set("a", b"1", ttl=60)
        await memory.set("b", b"2", ttl=60)
        await memory.set("c", b"3", ttl=60)
        await memory.get("a")

        await memory.set("d", b"4", ttl=60)

        assert await memory.get("b") is None
        assert await memory.get("a") == b"1"
        assert memory.evictions == 1

    @pytest.mark.asyncio
    async def test_expired_entries_go_before_live_ones(self, memory, ticker):
        await memory.set("a", b"1", ttl=60)
        await memory.set("short", b"2", ttl=1)
        await memory.set("c", b"3", ttl=60)
        ticker.now = 5

        await memory.set("d", b"4", ttl=60)

        assert await memory.get("a") == b"1"
        assert memory.evictions == 0

    @pytest.mark.asyncio
    async def test_delete(self, memory, ticker):
        await memory.set("a", b"1", ttl=10)
        await memory.set("b", b"1", ttl=1)
        ticker.now = 2

        assert await memory.delete("a")
        assert not await memory.delete("a")
        assert not await memory.delete("b")

    @pytest.mark.asyncio
    async def test_pattern_operations(self, ticker):
        memory = MemoryCacheBackend(clock=ticker)
        await memory.set("p:user_permissions:1", b"x", ttl=10)
        await memory.set("p:user_permissions:2", b"x", ttl=10)
        await memory.set("p:role_permissions:1", b"x", ttl=10)
        await memory.set("q:user_permissions:1", b"x", ttl=10)

        assert await memory.count_keys("p:user_permissions:*") == 2
        assert await memory.delete_pattern("p:*") == 3
        assert await memory.count_keys("p:*") == 0
        assert await memory.get("q:user_permissions:1") == b"x"

    @pytest.mark.asyncio
    async def test_count_ignores_expired(self, memory, ticker):
        await memory.set("k:1", b"x", ttl=1)
        await memory.set("k:2", b"x", ttl=10)
        ticker.now = 1

        assert await memory.count_keys("k:*") == 1

    @pytest.mark.asyncio
    async def test_ping_and_close(self, memory):
        await memory.set("a", b"1", ttl=10)

        assert await memory.ping()
        await memory.close()
        assert len(memory) == 0
