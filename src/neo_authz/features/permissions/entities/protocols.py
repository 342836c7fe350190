"""Protocol interfaces for the permissions feature.

``AuthorizationStore`` is the durable source of truth the resolver reads
from and writes to. ``PermissionResolver`` is the slice of the resolver the
cache needs for warm-up.
"""

from abc import abstractmethod
from datetime import datetime
from typing import Dict, List, Optional, Protocol, Set, runtime_checkable

from .assignments import MenuRole, RolePermission, UserPermission, UserRole
from .menu import Menu
from .permission import Permission
from .role import Role


@runtime_checkable
class AuthorizationStore(Protocol):
    """Data access for users, roles, permissions, menus and their assignments.

    Implementations raise ``StoreError`` subclasses when the backing store
    cannot be reached.
    """

    # Users

    @abstractmethod
    async def user_exists(self, user_id: int) -> bool:
        ...

    @abstractmethod
    async def list_user_ids(self) -> List[int]:
        ...

    # Permissions

    @abstractmethod
    async def get_permission(self, permission_id: int) -> Optional[Permission]:
        ...

    @abstractmethod
    async def find_permission(self, resource: str, action: str) -> Optional[Permission]:
        ...

    @abstractmethod
    async def list_permissions(self) -> List[Permission]:
        ...

    @abstractmethod
    async def insert_permission(self, permission: Permission) -> Permission:
        """Persist a new permission and return it with its id."""
        ...

    @abstractmethod
    async def update_permission(self, permission: Permission) -> None:
        ...

    @abstractmethod
    async def delete_permission(self, permission_id: int) -> bool:
        """Delete a permission together with its role and user assignments."""
        ...

    # Roles

    @abstractmethod
    async def get_role(self, role_id: int) -> Optional[Role]:
        ...

    @abstractmethod
    async def find_role_by_name(self, name: str) -> Optional[Role]:
        ...

    @abstractmethod
    async def list_roles(self) -> List[Role]:
        ...

    @abstractmethod
    async def insert_role(self, role: Role) -> Role:
        ...

    @abstractmethod
    async def update_role(self, role: Role) -> None:
        ...

    @abstractmethod
    async def delete_role(self, role_id: int) -> bool:
        """Delete a role together with its permission, menu and member assignments."""
        ...

    # Menus

    @abstractmethod
    async def get_menu(self, menu_id: int) -> Optional[Menu]:
        ...

    @abstractmethod
    async def list_menus(self) -> List[Menu]:
        ...

    @abstractmethod
    async def insert_menu(self, menu: Menu) -> Menu:
        ...

    @abstractmethod
    async def update_menu(self, menu: Menu) -> None:
        ...

    @abstractmethod
    async def delete_menu(self, menu_id: int) -> bool:
        """Delete a menu and its role links; children become root menus."""
        ...

    # User <-> Role

    @abstractmethod
    async def list_user_roles(self, user_id: int) -> List[UserRole]:
        ...

    @abstractmethod
    async def list_role_members(self, role_id: int) -> List[UserRole]:
        ...

    @abstractmethod
    async def save_user_role(self, assignment: UserRole) -> None:
        """Insert or replace the assignment for ``(user_id, role_id)``."""
        ...

    @abstractmethod
    async def delete_user_role(self, user_id: int, role_id: int) -> bool:
        ...

    @abstractmethod
    async def delete_user_roles(self, user_id: int) -> int:
        ...

    # User <-> Permission

    @abstractmethod
    async def list_user_permissions(self, user_id: int) -> List[UserPermission]:
        ...

    @abstractmethod
    async def save_user_permission(self, assignment: UserPermission) -> None:
        ...

    @abstractmethod
    async def delete_user_permission(self, user_id: int, permission_id: int) -> bool:
        ...

    @abstractmethod
    async def delete_user_permissions(self, user_id: int) -> int:
        ...

    # Role <-> Permission

    @abstractmethod
    async def list_role_permissions(self, role_id: int) -> List[RolePermission]:
        ...

    @abstractmethod
    async def save_role_permission(self, assignment: RolePermission) -> None:
        ...

    @abstractmethod
    async def delete_role_permission(self, role_id: int, permission_id: int) -> bool:
        ...

    @abstractmethod
    async def delete_role_permissions(self, role_id: int) -> int:
        ...

    # Role <-> Menu

    @abstractmethod
    async def list_role_menus(self, role_id: int) -> List[MenuRole]:
        ...

    @abstractmethod
    async def save_menu_role(self, assignment: MenuRole) -> None:
        ...

    @abstractmethod
    async def delete_menu_role(self, role_id: int, menu_id: int) -> bool:
        ...


@runtime_checkable
class PermissionResolver(Protocol):
    """Ground-truth computations the cache uses to warm entries."""

    @abstractmethod
    async def get_effective_permissions(self, user_id: int) -> Set[str]:
        ...

    @abstractmethod
    async def get_effective_role_permissions(self, role_id: int) -> Set[str]:
        ...

    @abstractmethod
    async def get_user_role_names(self, user_id: int) -> List[str]:
        ...

    @abstractmethod
    async def get_user_menu_ids(self, user_id: int) -> List[int]:
        ...

    @abstractmethod
    async def get_user_permission_matrix(self, user_id: int) -> Dict[str, List[str]]:
        ...

    @abstractmethod
    async def get_user_role_matrix(self, user_id: int) -> Dict[str, List[str]]:
        ...

    @abstractmethod
    async def get_user_grants_expiry(self, user_id: int) -> Optional[datetime]:
        """Earliest future expiry among assignments feeding the user's entries."""
        ...

    @abstractmethod
    async def get_role_grants_expiry(self, role_id: int) -> Optional[datetime]:
        ...

    @abstractmethod
    async def list_user_ids(self) -> List[int]:
        ...

    @abstractmethod
    async def list_role_ids(self) -> List[int]:
        ...
