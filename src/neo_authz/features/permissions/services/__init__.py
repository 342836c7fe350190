"""Permission services."""

from .permission_service import PermissionService
from .permission_cache_service import PermissionCacheService
from .cached_permission_service import CachedPermissionService

__all__ = [
    "PermissionService",
    "PermissionCacheService",
    "CachedPermissionService",
]
