"""Cache key layout for permission data."""

from enum import Enum
from typing import List, Union

from ....core.exceptions import ValidationError

# Special in both Redis MATCH and fnmatch patterns.
GLOB_METACHARACTERS = frozenset("*?[]\\")


class CacheShape(str, Enum):
    """Cached data shapes, each stored under ``<prefix><shape>:<id>``."""

    USER_PERMISSIONS = "user_permissions"
    USER_ROLES = "user_roles"
    USER_MENUS = "user_menus"
    USER_PERMISSION_MATRIX = "user_permission_matrix"
    USER_ROLE_MATRIX = "user_role_matrix"
    ROLE_PERMISSIONS = "role_permissions"


USER_SHAPES = (
    CacheShape.USER_PERMISSIONS,
    CacheShape.USER_ROLES,
    CacheShape.USER_MENUS,
    CacheShape.USER_PERMISSION_MATRIX,
    CacheShape.USER_ROLE_MATRIX,
)


class CacheKeyBuilder:
    """Builds namespaced cache keys and match patterns."""

    def __init__(self, prefix: str):
        if any(char in GLOB_METACHARACTERS for char in prefix):
            raise ValidationError(
                f"Cache key prefix must not contain glob metacharacters, got: {prefix}",
                details={"prefix": prefix},
            )
        self.prefix = prefix

    def key(self, shape: CacheShape, principal_id: Union[int, str]) -> str:
        return f"{self.prefix}{shape.value}:{principal_id}"

    def user_keys(self, user_id: Union[int, str]) -> List[str]:
        """All user-scoped keys for a user."""
        return [self.key(shape, user_id) for shape in USER_SHAPES]

    def shape_pattern(self, shape: CacheShape) -> str:
        return f"{self.prefix}{shape.value}:*"

    def namespace_pattern(self) -> str:
        return f"{self.prefix}*"

    def sentinel_key(self) -> str:
        return f"{self.prefix}health:sentinel"
