"""neo-authz: cached permission resolution for NeoMultiTenant services."""

from .__version__ import __version__
from .config import PermissionCacheSettings, configure_logging, get_settings
from .core.exceptions import (
    CacheError,
    NeoAuthzError,
    ProtectedRoleError,
    StoreError,
    StoreUnavailableError,
    ValidationError,
)
from .features.permissions import (
    CachedPermissionService,
    InMemoryAuthorizationStore,
    PermissionCacheService,
    PermissionService,
    create_cached_permission_service,
)

__all__ = [
    "__version__",
    "PermissionCacheSettings",
    "configure_logging",
    "get_settings",
    "CacheError",
    "NeoAuthzError",
    "ProtectedRoleError",
    "StoreError",
    "StoreUnavailableError",
    "ValidationError",
    "CachedPermissionService",
    "InMemoryAuthorizationStore",
    "PermissionCacheService",
    "PermissionService",
    "create_cached_permission_service",
]
