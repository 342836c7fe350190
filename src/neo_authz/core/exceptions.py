"""Exception hierarchy for neo-authz.

All errors raised by the library inherit from NeoAuthzError and carry a
machine-readable error code plus optional structured details.
"""

from typing import Any, Dict, Optional


class NeoAuthzError(Exception):
    """Base exception for all neo-authz errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        *args,
        **kwargs
    ):
        super().__init__(message, *args, **kwargs)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}


# Authorization store errors
class StoreError(NeoAuthzError):
    """Base class for authorization store failures."""
    pass


class StoreUnavailableError(StoreError):
    """Raised when the authorization store cannot be reached."""
    pass


# Domain errors
class ConfigurationError(NeoAuthzError):
    """Raised when a service is used without a required collaborator."""
    pass


class ValidationError(NeoAuthzError):
    """Raised when input data fails domain validation."""
    pass


class AuthorizationError(NeoAuthzError):
    """Base class for rejected authorization operations."""
    pass


class ProtectedRoleError(AuthorizationError):
    """Raised when a mutation targets a system-protected role."""
    pass


# Cache errors
class CacheError(NeoAuthzError):
    """Base class for cache-related errors."""
    pass


class CacheConnectionError(CacheError):
    """Raised when cache connection fails."""
    pass


class CacheTimeoutError(CacheError):
    """Raised when cache operation times out."""
    pass


class CacheSerializationError(CacheError):
    """Raised when cache value serialization/deserialization fails."""
    pass
