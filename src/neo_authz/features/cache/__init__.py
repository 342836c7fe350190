"""Generic TTL cache backends used by the permission cache."""

from .entities import CacheBackend
from .adapters import MemoryCacheBackend, RedisCacheBackend
from .serialization import CacheSerializer

__all__ = [
    "CacheBackend",
    "MemoryCacheBackend",
    "RedisCacheBackend",
    "CacheSerializer",
]
