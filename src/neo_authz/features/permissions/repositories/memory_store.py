"""In-memory authorization store.

Reference implementation of ``AuthorizationStore`` for tests and embedded
use. Entities are copied on the way in and out, so callers must go through
the update methods to change stored state.
"""

import asyncio
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Set, Tuple, TypeVar

from loguru import logger

from ..entities import (
    AuthorizationStore,
    Menu,
    MenuRole,
    Permission,
    Role,
    RolePermission,
    UserPermission,
    UserRole,
)

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryAuthorizationStore(AuthorizationStore):
    """Dict-backed authorization store."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or _utcnow
        self._lock = asyncio.Lock()
        self._users: Set[int] = set()
        self._permissions: Dict[int, Permission] = {}
        self._roles: Dict[int, Role] = {}
        self._menus: Dict[int, Menu] = {}
        self._user_roles: Dict[Tuple[int, int], UserRole] = {}
        self._user_permissions: Dict[Tuple[int, int], UserPermission] = {}
        self._role_permissions: Dict[Tuple[int, int], RolePermission] = {}
        self._menu_roles: Dict[Tuple[int, int], MenuRole] = {}
        self._next_ids = {"permission": 1, "role": 1, "menu": 1}

    def _next_id(self, kind: str) -> int:
        value = self._next_ids[kind]
        self._next_ids[kind] = value + 1
        return value

    @staticmethod
    def _copies(items) -> List[T]:
        return [replace(item) for item in items]

    # Users

    async def add_user(self, user_id: int) -> None:
        async with self._lock:
            self._users.add(user_id)

    async def remove_user(self, user_id: int) -> bool:
        async with self._lock:
            if user_id not in self._users:
                return False
            self._users.discard(user_id)
            for key in [k for k in self._user_roles if k[0] == user_id]:
                del self._user_roles[key]
            for key in [k for k in self._user_permissions if k[0] == user_id]:
                del self._user_permissions[key]
            return True

    async def user_exists(self, user_id: int) -> bool:
        return user_id in self._users

    async def list_user_ids(self) -> List[int]:
        return sorted(self._users)

    # Permissions

    async def get_permission(self, permission_id: int) -> Optional[Permission]:
        permission = self._permissions.get(permission_id)
        return replace(permission) if permission else None

    async def find_permission(self, resource: str, action: str) -> Optional[Permission]:
        for permission in self._permissions.values():
            if permission.resource == resource and permission.action == action:
                return replace(permission)
        return None

    async def list_permissions(self) -> List[Permission]:
        return self._copies(self._permissions.values())

    async def insert_permission(self, permission: Permission) -> Permission:
        async with self._lock:
            now = self._clock()
            stored = replace(
                permission,
                id=permission.id or self._next_id("permission"),
                created_at=permission.created_at or now,
                updated_at=now,
            )
            self._permissions[stored.id] = stored
            logger.debug(f"Stored permission {stored.code} with id {stored.id}")
            return replace(stored)

    async def update_permission(self, permission: Permission) -> None:
        async with self._lock:
            self._permissions[permission.id] = replace(permission, updated_at=self._clock())

    async def delete_permission(self, permission_id: int) -> bool:
        async with self._lock:
            if self._permissions.pop(permission_id, None) is None:
                return False
            for key in [k for k in self._role_permissions if k[1] == permission_id]:
                del self._role_permissions[key]
            for key in [k for k in self._user_permissions if k[1] == permission_id]:
                del self._user_permissions[key]
            return True

    # Roles

    async def get_role(self, role_id: int) -> Optional[Role]:
        role = self._roles.get(role_id)
        return replace(role) if role else None

    async def find_role_by_name(self, name: str) -> Optional[Role]:
        for role in self._roles.values():
            if role.name.lower() == name.lower():
                return replace(role)
        return None

    async def list_roles(self) -> List[Role]:
        return self._copies(self._roles.values())

    async def insert_role(self, role: Role) -> Role:
        async with self._lock:
            now = self._clock()
            stored = replace(
                role,
                id=role.id or self._next_id("role"),
                created_at=role.created_at or now,
                updated_at=now,
            )
            self._roles[stored.id] = stored
            return replace(stored)

    async def update_role(self, role: Role) -> None:
        async with self._lock:
            self._roles[role.id] = replace(role, updated_at=self._clock())

    async def delete_role(self, role_id: int) -> bool:
        async with self._lock:
            if self._roles.pop(role_id, None) is None:
                return False
            for key in [k for k in self._user_roles if k[1] == role_id]:
                del self._user_roles[key]
            for key in [k for k in self._role_permissions if k[0] == role_id]:
                del self._role_permissions[key]
            for key in [k for k in self._menu_roles if k[0] == role_id]:
                del self._menu_roles[key]
            return True

    # Menus

    async def get_menu(self, menu_id: int) -> Optional[Menu]:
        menu = self._menus.get(menu_id)
        return replace(menu) if menu else None

    async def list_menus(self) -> List[Menu]:
        return self._copies(self._menus.values())

    async def insert_menu(self, menu: Menu) -> Menu:
        async with self._lock:
            now = self._clock()
            stored = replace(
                menu,
                id=menu.id or self._next_id("menu"),
                created_at=menu.created_at or now,
                updated_at=now,
            )
            self._menus[stored.id] = stored
            return replace(stored)

    async def update_menu(self, menu: Menu) -> None:
        async with self._lock:
            self._menus[menu.id] = replace(menu, updated_at=self._clock())

    async def delete_menu(self, menu_id: int) -> bool:
        async with self._lock:
            if self._menus.pop(menu_id, None) is None:
                return False
            for key in [k for k in self._menu_roles if k[1] == menu_id]:
                del self._menu_roles[key]
            for child_id, child in self._menus.items():
                if child.parent_id == menu_id:
                    self._menus[child_id] = replace(child, parent_id=None)
            return True

    # User <-> Role

    async def list_user_roles(self, user_id: int) -> List[UserRole]:
        return self._copies(a for (uid, _), a in self._user_roles.items() if uid == user_id)

    async def list_role_members(self, role_id: int) -> List[UserRole]:
        return self._copies(a for (_, rid), a in self._user_roles.items() if rid == role_id)

    async def save_user_role(self, assignment: UserRole) -> None:
        async with self._lock:
            self._user_roles[(assignment.user_id, assignment.role_id)] = replace(assignment)

    async def delete_user_role(self, user_id: int, role_id: int) -> bool:
        async with self._lock:
            return self._user_roles.pop((user_id, role_id), None) is not None

    async def delete_user_roles(self, user_id: int) -> int:
        async with self._lock:
            keys = [k for k in self._user_roles if k[0] == user_id]
            for key in keys:
                del self._user_roles[key]
            return len(keys)

    # User <-> Permission

    async def list_user_permissions(self, user_id: int) -> List[UserPermission]:
        return self._copies(a for (uid, _), a in self._user_permissions.items() if uid == user_id)

    async def save_user_permission(self, assignment: UserPermission) -> None:
        async with self._lock:
            self._user_permissions[(assignment.user_id, assignment.permission_id)] = replace(assignment)

    async def delete_user_permission(self, user_id: int, permission_id: int) -> bool:
        async with self._lock:
            return self._user_permissions.pop((user_id, permission_id), None) is not None

    async def delete_user_permissions(self, user_id: int) -> int:
        async with self._lock:
            keys = [k for k in self._user_permissions if k[0] == user_id]
            for key in keys:
                del self._user_permissions[key]
            return len(keys)

    # Role <-> Permission

    async def list_role_permissions(self, role_id: int) -> List[RolePermission]:
        return self._copies(a for (rid, _), a in self._role_permissions.items() if rid == role_id)

    async def save_role_permission(self, assignment: RolePermission) -> None:
        async with self._lock:
            self._role_permissions[(assignment.role_id, assignment.permission_id)] = replace(assignment)

    async def delete_role_permission(self, role_id: int, permission_id: int) -> bool:
        async with self._lock:
            return self._role_permissions.pop((role_id, permission_id), None) is not None

    async def delete_role_permissions(self, role_id: int) -> int:
        async with self._lock:
            keys = [k for k in self._role_permissions if k[0] == role_id]
            for key in keys:
                del self._role_permissions[key]
            return len(keys)

    # Role <-> Menu

    async def list_role_menus(self, role_id: int) -> List[MenuRole]:
        return self._copies(a for (rid, _), a in self._menu_roles.items() if rid == role_id)

    async def save_menu_role(self, assignment: MenuRole) -> None:
        async with self._lock:
            self._menu_roles[(assignment.role_id, assignment.menu_id)] = replace(assignment)

    async def delete_menu_role(self, role_id: int, menu_id: int) -> bool:
        async with self._lock:
            return self._menu_roles.pop((role_id, menu_id), None) is not None
