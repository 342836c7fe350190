"""Permission feature entities."""

from .permission import Permission, PermissionCode, PermissionView
from .role import Role
from .menu import Menu
from .assignments import AssignmentWindow, MenuRole, RolePermission, UserPermission, UserRole
from .cache_keys import CacheKeyBuilder, CacheShape, USER_SHAPES
from .statistics import CacheStatistics, CacheStatisticsCollector
from .protocols import AuthorizationStore, PermissionResolver

__all__ = [
    "Permission",
    "PermissionCode",
    "PermissionView",
    "Role",
    "Menu",
    "AssignmentWindow",
    "MenuRole",
    "RolePermission",
    "UserPermission",
    "UserRole",
    "CacheKeyBuilder",
    "CacheShape",
    "USER_SHAPES",
    "CacheStatistics",
    "CacheStatisticsCollector",
    "AuthorizationStore",
    "PermissionResolver",
]
