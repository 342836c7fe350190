"""Permission resolution, caching and authorization gate."""

from .entities import (
    AuthorizationStore,
    CacheShape,
    CacheStatistics,
    Menu,
    Permission,
    PermissionCode,
    PermissionView,
    Role,
)
from .repositories import InMemoryAuthorizationStore
from .services import CachedPermissionService, PermissionCacheService, PermissionService
from .factory import create_cache_backend, create_cached_permission_service

__all__ = [
    "AuthorizationStore",
    "CacheShape",
    "CacheStatistics",
    "Menu",
    "Permission",
    "PermissionCode",
    "PermissionView",
    "Role",
    "InMemoryAuthorizationStore",
    "CachedPermissionService",
    "PermissionCacheService",
    "PermissionService",
    "create_cache_backend",
    "create_cached_permission_service",
]
