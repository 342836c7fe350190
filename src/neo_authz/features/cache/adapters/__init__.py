"""Cache backend adapters."""

from .memory_adapter import MemoryCacheBackend, MemoryCacheEntry
from .redis_adapter import RedisCacheBackend

__all__ = [
    "MemoryCacheBackend",
    "MemoryCacheEntry",
    "RedisCacheBackend",
]
