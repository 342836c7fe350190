"""In-process cache backend with TTL and LRU eviction."""

import asyncio
import fnmatch
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional

from loguru import logger

from ..entities.protocols import CacheBackend


@dataclass
class MemoryCacheEntry:
    """Memory cache entry with absolute expiry."""
    value: bytes
    expires_at: float

    def is_expired(self, now: float) -> bool:
        """Check if entry is expired at ``now``."""
        return now >= self.expires_at


class MemoryCacheBackend(CacheBackend):
    """Dict-backed cache for tests and single-process deployments.

    Entries expire at ``clock() + ttl``. When ``max_size`` is exceeded the
    least recently used entry is evicted.
    """

    def __init__(self, max_size: int = 10000, clock: Optional[Callable[[], float]] = None):
        self.max_size = max_size
        self._clock = clock or time.monotonic
        self._entries: "OrderedDict[str, MemoryCacheEntry]" = OrderedDict()
        self._lock = asyncio.Lock()
        self.evictions = 0

    def _purge_expired(self, now: float) -> None:
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]

    async def get(self, key: str) -> Optional[bytes]:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return entry.value

    async def set(self, key: str, value: bytes, ttl: int) -> None:
        async with self._lock:
            now = self._clock()
            self._entries[key] = MemoryCacheEntry(value=value, expires_at=now + ttl)
            self._entries.move_to_end(key)

            if len(self._entries) > self.max_size:
                self._purge_expired(now)
            while len(self._entries) > self.max_size:
                evicted, _ = self._entries.popitem(last=False)
                self.evictions += 1
                logger.debug(f"Evicted cache key {evicted} (max size {self.max_size})")

    async def delete(self, key: str) -> bool:
        async with self._lock:
            entry = self._entries.pop(key, None)
            return entry is not None and not entry.is_expired(self._clock())

    async def delete_pattern(self, pattern: str) -> int:
        async with self._lock:
            now = self._clock()
            matched = [key for key in self._entries if fnmatch.fnmatchcase(key, pattern)]
            deleted = 0
            for key in matched:
                if not self._entries.pop(key).is_expired(now):
                    deleted += 1
            return deleted

    async def count_keys(self, pattern: str) -> int:
        async with self._lock:
            now = self._clock()
            return sum(
                1 for key, entry in self._entries.items()
                if not entry.is_expired(now) and fnmatch.fnmatchcase(key, pattern)
            )

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        async with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
