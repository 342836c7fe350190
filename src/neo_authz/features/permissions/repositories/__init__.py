"""Authorization store implementations."""

from .memory_store import InMemoryAuthorizationStore

__all__ = ["InMemoryAuthorizationStore"]
