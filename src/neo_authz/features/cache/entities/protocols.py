"""Protocol for TTL key-value cache backends."""

from abc import abstractmethod
from typing import Optional, Protocol, runtime_checkable


@runtime_checkable
class CacheBackend(Protocol):
    """Minimal TTL key-value store used as the permission cache medium.

    No cross-key transactionality is assumed. Patterns use Redis ``MATCH``
    glob syntax.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[bytes]:
        """Get value by key, None when absent or expired."""
        ...

    @abstractmethod
    async def set(self, key: str, value: bytes, ttl: int) -> None:
        """Store value for ``ttl`` seconds."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete key and return whether it existed."""
        ...

    @abstractmethod
    async def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching pattern, returning how many were removed."""
        ...

    @abstractmethod
    async def count_keys(self, pattern: str) -> int:
        """Count live keys matching pattern."""
        ...

    @abstractmethod
    async def ping(self) -> bool:
        """Check backend liveness."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release backend resources."""
        ...
