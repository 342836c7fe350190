"""Permission resolver.

Computes effective permissions, roles and menus directly from the
authorization store. Nothing here is cached; every call reads the store and
store errors propagate to the caller without retries.
"""

from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from loguru import logger

from ....core.exceptions import ProtectedRoleError, ValidationError
from ..entities import (
    AuthorizationStore,
    Menu,
    MenuRole,
    Permission,
    PermissionCode,
    PermissionResolver,
    Role,
    RolePermission,
    UserPermission,
    UserRole,
)
from ..utils import build_permission_matrix, to_permission_codes


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _check_expiry(expires_at: Optional[datetime]) -> None:
    """Assignment expiries are compared against an aware UTC clock."""
    if expires_at is not None and expires_at.utcoffset() is None:
        raise ValidationError(
            f"expires_at must be timezone-aware, got: {expires_at.isoformat()}",
            details={"expires_at": expires_at.isoformat()},
        )


class PermissionService(PermissionResolver):
    """Ground-truth permission resolution and administration.

    An assignment counts only while it is active and not past its
    ``expires_at``; a role or permission counts only while active. Mutations
    return False when the target does not exist.
    """

    def __init__(self, store: AuthorizationStore, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self._clock = clock or _utcnow

    def _now(self) -> datetime:
        return self._clock()

    # Effective-set building blocks

    async def _effective_roles(self, user_id: int, now: datetime) -> List[Tuple[UserRole, Role]]:
        result = []
        for assignment in await self.store.list_user_roles(user_id):
            if not assignment.is_effective(now):
                continue
            role = await self.store.get_role(assignment.role_id)
            if role is None or not role.is_active:
                continue
            result.append((assignment, role))
        return result

    async def _effective_role_grants(self, role_id: int, now: datetime) -> List[Tuple[RolePermission, Permission]]:
        result = []
        for link in await self.store.list_role_permissions(role_id):
            if not link.is_effective(now):
                continue
            permission = await self.store.get_permission(link.permission_id)
            if permission is None or not permission.is_active:
                continue
            result.append((link, permission))
        return result

    async def _effective_direct_grants(self, user_id: int, now: datetime) -> List[Tuple[UserPermission, Permission]]:
        result = []
        for grant in await self.store.list_user_permissions(user_id):
            if not grant.is_effective(now):
                continue
            permission = await self.store.get_permission(grant.permission_id)
            if permission is None or not permission.is_active:
                continue
            result.append((grant, permission))
        return result

    async def _effective_menu_links(self, role_id: int, now: datetime) -> List[MenuRole]:
        return [link for link in await self.store.list_role_menus(role_id) if link.is_effective(now)]

    async def _active_role(self, role_id: int) -> Optional[Role]:
        role = await self.store.get_role(role_id)
        if role is None or not role.is_active:
            return None
        return role

    # Effective permissions

    async def get_effective_permissions(self, user_id: int) -> Set[str]:
        """Union of role-derived and direct grants as ``resource:action`` codes."""
        return {permission.code for permission in await self.get_user_permissions(user_id)}

    async def get_user_permissions(self, user_id: int) -> List[Permission]:
        now = self._now()
        permissions: Dict[int, Permission] = {}

        for _, role in await self._effective_roles(user_id, now):
            for _, permission in await self._effective_role_grants(role.id, now):
                permissions[permission.id] = permission

        for _, permission in await self._effective_direct_grants(user_id, now):
            permissions[permission.id] = permission

        return sorted(permissions.values(), key=lambda p: p.code)

    async def get_effective_role_permissions(self, role_id: int) -> Set[str]:
        return {permission.code for permission in await self.get_role_permissions(role_id)}

    async def get_role_permissions(self, role_id: int) -> List[Permission]:
        if await self._active_role(role_id) is None:
            return []
        grants = await self._effective_role_grants(role_id, self._now())
        return sorted((permission for _, permission in grants), key=lambda p: p.code)

    async def user_has_permission(self, user_id: int, resource: str, action: str) -> bool:
        """Targeted check that avoids materializing the full set."""
        permission = await self.store.find_permission(resource, action)
        if permission is None or not permission.is_active:
            return False

        now = self._now()
        for grant in await self.store.list_user_permissions(user_id):
            if grant.permission_id == permission.id and grant.is_effective(now):
                return True

        for _, role in await self._effective_roles(user_id, now):
            if await self._role_grants(role.id, permission.id, now):
                return True
        return False

    async def role_has_permission(self, role_id: int, resource: str, action: str) -> bool:
        permission = await self.store.find_permission(resource, action)
        if permission is None or not permission.is_active:
            return False
        if await self._active_role(role_id) is None:
            return False
        return await self._role_grants(role_id, permission.id, self._now())

    async def _role_grants(self, role_id: int, permission_id: int, now: datetime) -> bool:
        for link in await self.store.list_role_permissions(role_id):
            if link.permission_id == permission_id and link.is_effective(now):
                return True
        return False

    async def get_user_permission_matrix(self, user_id: int) -> Dict[str, List[str]]:
        return build_permission_matrix(await self.get_effective_permissions(user_id))

    async def get_user_permissions_by_resource(self, user_id: int, resource: str) -> List[Permission]:
        return [p for p in await self.get_user_permissions(user_id) if p.resource == resource]

    # Roles

    async def get_user_roles(self, user_id: int) -> List[Role]:
        """Effective roles ordered by descending priority, then name."""
        roles = [role for _, role in await self._effective_roles(user_id, self._now())]
        return sorted(roles, key=lambda r: (-r.priority, r.name))

    async def get_user_role_names(self, user_id: int) -> List[str]:
        return [role.name for role in await self.get_user_roles(user_id)]

    async def user_has_role(self, user_id: int, role_name: str) -> bool:
        wanted = role_name.lower()
        return any(name.lower() == wanted for name in await self.get_user_role_names(user_id))

    async def get_user_role_matrix(self, user_id: int) -> Dict[str, List[str]]:
        """Map each effective role name to the codes it grants."""
        now = self._now()
        matrix = {}
        for _, role in await self._effective_roles(user_id, now):
            grants = await self._effective_role_grants(role.id, now)
            matrix[role.name] = to_permission_codes(permission for _, permission in grants)
        return dict(sorted(matrix.items()))

    async def get_user_ids_with_role(self, role_id: int) -> List[int]:
        """Users linked to a role, including expired or inactive memberships."""
        return sorted({assignment.user_id for assignment in await self.store.list_role_members(role_id)})

    async def list_user_ids(self) -> List[int]:
        return await self.store.list_user_ids()

    async def list_role_ids(self) -> List[int]:
        return sorted(role.id for role in await self.store.list_roles())

    # Menus

    async def get_user_menus(self, user_id: int) -> List[Menu]:
        """Active menus linked to one of the user's roles whose required permission the user holds."""
        now = self._now()
        codes = await self.get_effective_permissions(user_id)

        menu_ids: Set[int] = set()
        for _, role in await self._effective_roles(user_id, now):
            menu_ids.update(link.menu_id for link in await self._effective_menu_links(role.id, now))

        return await self._accessible_menus(menu_ids, codes)

    async def get_user_menu_ids(self, user_id: int) -> List[int]:
        return [menu.id for menu in await self.get_user_menus(user_id)]

    async def user_can_access_menu(self, user_id: int, menu_id: int) -> bool:
        return menu_id in await self.get_user_menu_ids(user_id)

    async def get_role_menus(self, role_id: int) -> List[Menu]:
        if await self._active_role(role_id) is None:
            return []
        now = self._now()
        codes = await self.get_effective_role_permissions(role_id)
        menu_ids = {link.menu_id for link in await self._effective_menu_links(role_id, now)}
        return await self._accessible_menus(menu_ids, codes)

    async def role_can_access_menu(self, role_id: int, menu_id: int) -> bool:
        return any(menu.id == menu_id for menu in await self.get_role_menus(role_id))

    async def _accessible_menus(self, menu_ids: Iterable[int], codes: Set[str]) -> List[Menu]:
        menus = []
        for menu_id in menu_ids:
            menu = await self.store.get_menu(menu_id)
            if menu is None or not menu.is_active:
                continue
            if menu.permission is not None and menu.permission not in codes:
                continue
            menus.append(menu)
        return sorted(menus, key=lambda m: (m.sort_order, m.name, m.id))

    # Grant expiry

    async def get_user_grants_expiry(self, user_id: int) -> Optional[datetime]:
        """Earliest expiry among the assignments feeding a user's cached entries."""
        now = self._now()
        expiries: List[Optional[datetime]] = []

        for assignment, role in await self._effective_roles(user_id, now):
            expiries.append(assignment.expires_at)
            expiries.extend(link.expires_at for link, _ in await self._effective_role_grants(role.id, now))
            expiries.extend(link.expires_at for link in await self._effective_menu_links(role.id, now))

        expiries.extend(grant.expires_at for grant, _ in await self._effective_direct_grants(user_id, now))
        return min((e for e in expiries if e is not None), default=None)

    async def get_role_grants_expiry(self, role_id: int) -> Optional[datetime]:
        grants = await self._effective_role_grants(role_id, self._now())
        return min((link.expires_at for link, _ in grants if link.expires_at is not None), default=None)

    # Permission catalogue

    async def list_permissions(self, include_inactive: bool = True) -> List[Permission]:
        permissions = await self.store.list_permissions()
        if not include_inactive:
            permissions = [p for p in permissions if p.is_active]
        return sorted(permissions, key=lambda p: p.code)

    async def get_permission(self, permission_id: int) -> Optional[Permission]:
        return await self.store.get_permission(permission_id)

    async def get_permissions_by_resource(self, resource: str) -> List[Permission]:
        return [p for p in await self.list_permissions() if p.resource == resource]

    async def get_permissions_by_module(self, module: str) -> List[Permission]:
        return [p for p in await self.list_permissions() if p.module == module]

    async def create_permission(
        self,
        name: str,
        resource: str,
        action: str,
        module: Optional[str] = None,
        description: Optional[str] = None,
        is_active: bool = True,
    ) -> Permission:
        """Create a permission; ``(resource, action)`` must be unique."""
        code = PermissionCode.from_parts(resource, action)
        if await self.store.find_permission(resource, action) is not None:
            raise ValidationError(f"Permission already exists: {code}", details={"code": code.value})

        permission = Permission(
            id=None,
            name=name,
            resource=resource,
            action=action,
            module=module,
            description=description,
            is_active=is_active,
        )
        created = await self.store.insert_permission(permission)
        logger.info(f"Created permission {created.code} (id={created.id})")
        return created

    async def update_permission(
        self,
        permission_id: int,
        name: Optional[str] = None,
        resource: Optional[str] = None,
        action: Optional[str] = None,
        module: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Optional[Permission]:
        permission = await self.store.get_permission(permission_id)
        if permission is None:
            return None

        new_resource = resource or permission.resource
        new_action = action or permission.action
        if (new_resource, new_action) != (permission.resource, permission.action):
            code = PermissionCode.from_parts(new_resource, new_action)
            existing = await self.store.find_permission(new_resource, new_action)
            if existing is not None and existing.id != permission_id:
                raise ValidationError(f"Permission already exists: {code}", details={"code": code.value})

        permission.resource = new_resource
        permission.action = new_action
        if name is not None:
            permission.name = name
        if module is not None:
            permission.module = module
        if description is not None:
            permission.description = description

        await self.store.update_permission(permission)
        logger.info(f"Updated permission {permission.code} (id={permission_id})")
        return await self.store.get_permission(permission_id)

    async def delete_permission(self, permission_id: int) -> bool:
        deleted = await self.store.delete_permission(permission_id)
        if deleted:
            logger.info(f"Deleted permission {permission_id}")
        return deleted

    async def activate_permission(self, permission_id: int) -> bool:
        return await self._set_permission_active(permission_id, True)

    async def deactivate_permission(self, permission_id: int) -> bool:
        return await self._set_permission_active(permission_id, False)

    async def _set_permission_active(self, permission_id: int, is_active: bool) -> bool:
        permission = await self.store.get_permission(permission_id)
        if permission is None:
            return False
        permission.is_active = is_active
        await self.store.update_permission(permission)
        logger.info(f"Set permission {permission.code} active={is_active}")
        return True

    # Role catalogue

    async def list_roles(self, include_inactive: bool = True) -> List[Role]:
        roles = await self.store.list_roles()
        if not include_inactive:
            roles = [r for r in roles if r.is_active]
        return sorted(roles, key=lambda r: (-r.priority, r.name))

    async def get_role(self, role_id: int) -> Optional[Role]:
        return await self.store.get_role(role_id)

    async def get_role_by_name(self, name: str) -> Optional[Role]:
        return await self.store.find_role_by_name(name)

    async def create_role(
        self,
        name: str,
        description: Optional[str] = None,
        priority: int = 0,
        is_system: bool = False,
        color: Optional[str] = None,
        icon: Optional[str] = None,
    ) -> Role:
        if await self.store.find_role_by_name(name) is not None:
            raise ValidationError(f"Role already exists: {name}", details={"name": name})

        role = Role(
            id=None,
            name=name,
            description=description,
            priority=priority,
            is_system=is_system,
            color=color,
            icon=icon,
        )
        created = await self.store.insert_role(role)
        logger.info(f"Created role {created.name} (id={created.id})")
        return created

    async def update_role(
        self,
        role_id: int,
        name: Optional[str] = None,
        description: Optional[str] = None,
        priority: Optional[int] = None,
        color: Optional[str] = None,
        icon: Optional[str] = None,
    ) -> Optional[Role]:
        role = await self.store.get_role(role_id)
        if role is None:
            return None

        if name is not None and name.lower() != role.name.lower():
            existing = await self.store.find_role_by_name(name)
            if existing is not None and existing.id != role_id:
                raise ValidationError(f"Role already exists: {name}", details={"name": name})
        if name is not None:
            role.name = name
        if description is not None:
            role.description = description
        if priority is not None:
            role.priority = priority
        if color is not None:
            role.color = color
        if icon is not None:
            role.icon = icon

        await self.store.update_role(role)
        logger.info(f"Updated role {role.name} (id={role_id})")
        return await self.store.get_role(role_id)

    async def delete_role(self, role_id: int) -> bool:
        """Delete a role. System roles are rejected before the store is touched."""
        role = await self.store.get_role(role_id)
        if role is None:
            return False
        if role.is_system:
            raise ProtectedRoleError(
                f"System role '{role.name}' cannot be deleted",
                details={"role_id": role_id},
            )
        deleted = await self.store.delete_role(role_id)
        if deleted:
            logger.info(f"Deleted role {role.name} (id={role_id})")
        return deleted

    async def activate_role(self, role_id: int) -> bool:
        return await self._set_role_active(role_id, True)

    async def deactivate_role(self, role_id: int) -> bool:
        return await self._set_role_active(role_id, False)

    async def _set_role_active(self, role_id: int, is_active: bool) -> bool:
        role = await self.store.get_role(role_id)
        if role is None:
            return False
        if role.is_system and not is_active:
            raise ProtectedRoleError(
                f"System role '{role.name}' cannot be deactivated",
                details={"role_id": role_id},
            )
        role.is_active = is_active
        await self.store.update_role(role)
        logger.info(f"Set role {role.name} active={is_active}")
        return True

    # Menu catalogue

    async def list_menus(self) -> List[Menu]:
        return sorted(await self.store.list_menus(), key=lambda m: (m.sort_order, m.name, m.id))

    async def get_menu(self, menu_id: int) -> Optional[Menu]:
        return await self.store.get_menu(menu_id)

    async def create_menu(
        self,
        name: str,
        url: Optional[str] = None,
        parent_id: Optional[int] = None,
        sort_order: int = 0,
        permission: Optional[str] = None,
        module: Optional[str] = None,
        icon: Optional[str] = None,
        is_visible: bool = True,
    ) -> Menu:
        if parent_id is not None and await self.store.get_menu(parent_id) is None:
            raise ValidationError(f"Parent menu {parent_id} does not exist", details={"parent_id": parent_id})

        menu = Menu(
            id=None,
            name=name,
            url=url,
            parent_id=parent_id,
            sort_order=sort_order,
            permission=permission,
            module=module,
            icon=icon,
            is_visible=is_visible,
        )
        created = await self.store.insert_menu(menu)
        logger.info(f"Created menu {created.name} (id={created.id})")
        return created

    async def update_menu(
        self,
        menu_id: int,
        name: Optional[str] = None,
        url: Optional[str] = None,
        sort_order: Optional[int] = None,
        permission: Optional[str] = None,
        icon: Optional[str] = None,
        is_visible: Optional[bool] = None,
        is_active: Optional[bool] = None,
    ) -> Optional[Menu]:
        menu = await self.store.get_menu(menu_id)
        if menu is None:
            return None

        if permission is not None:
            PermissionCode(permission)
            menu.permission = permission
        if name is not None:
            menu.name = name
        if url is not None:
            menu.url = url
        if sort_order is not None:
            menu.sort_order = sort_order
        if icon is not None:
            menu.icon = icon
        if is_visible is not None:
            menu.is_visible = is_visible
        if is_active is not None:
            menu.is_active = is_active

        await self.store.update_menu(menu)
        logger.info(f"Updated menu {menu.name} (id={menu_id})")
        return await self.store.get_menu(menu_id)

    async def delete_menu(self, menu_id: int) -> bool:
        deleted = await self.store.delete_menu(menu_id)
        if deleted:
            logger.info(f"Deleted menu {menu_id}")
        return deleted

    # User permission assignments

    async def assign_permission_to_user(
        self,
        user_id: int,
        permission_id: int,
        expires_at: Optional[datetime] = None,
        assigned_by: Optional[int] = None,
    ) -> bool:
        """Grant a permission directly; re-assigning replaces the expiry."""
        _check_expiry(expires_at)
        if not await self.store.user_exists(user_id):
            return False
        if await self.store.get_permission(permission_id) is None:
            return False

        await self.store.save_user_permission(UserPermission(
            user_id=user_id,
            permission_id=permission_id,
            assigned_at=self._now(),
            assigned_by=assigned_by,
            expires_at=expires_at,
        ))
        logger.info(f"Assigned permission {permission_id} to user {user_id} (expires_at={expires_at})")
        return True

    async def revoke_permission_from_user(self, user_id: int, permission_id: int) -> bool:
        revoked = await self.store.delete_user_permission(user_id, permission_id)
        if revoked:
            logger.info(f"Revoked permission {permission_id} from user {user_id}")
        return revoked

    async def assign_multiple_permissions_to_user(
        self,
        user_id: int,
        permission_ids: List[int],
        expires_at: Optional[datetime] = None,
        assigned_by: Optional[int] = None,
    ) -> bool:
        """Assign all permissions or none; False if the user or any permission is missing."""
        _check_expiry(expires_at)
        if not await self.store.user_exists(user_id):
            return False
        if not await self._all_permissions_exist(permission_ids):
            return False

        now = self._now()
        for permission_id in dict.fromkeys(permission_ids):
            await self.store.save_user_permission(UserPermission(
                user_id=user_id,
                permission_id=permission_id,
                assigned_at=now,
                assigned_by=assigned_by,
                expires_at=expires_at,
            ))
        logger.info(f"Assigned {len(permission_ids)} permissions to user {user_id}")
        return True

    async def revoke_all_user_permissions(self, user_id: int) -> bool:
        if not await self.store.user_exists(user_id):
            return False
        removed = await self.store.delete_user_permissions(user_id)
        logger.info(f"Revoked {removed} direct permissions from user {user_id}")
        return True

    # Role permission assignments

    async def assign_permission_to_role(
        self,
        role_id: int,
        permission_id: int,
        expires_at: Optional[datetime] = None,
        assigned_by: Optional[int] = None,
    ) -> bool:
        _check_expiry(expires_at)
        if await self.store.get_role(role_id) is None:
            return False
        if await self.store.get_permission(permission_id) is None:
            return False

        await self.store.save_role_permission(RolePermission(
            role_id=role_id,
            permission_id=permission_id,
            assigned_at=self._now(),
            assigned_by=assigned_by,
            expires_at=expires_at,
        ))
        logger.info(f"Assigned permission {permission_id} to role {role_id}")
        return True

    async def revoke_permission_from_role(self, role_id: int, permission_id: int) -> bool:
        revoked = await self.store.delete_role_permission(role_id, permission_id)
        if revoked:
            logger.info(f"Revoked permission {permission_id} from role {role_id}")
        return revoked

    async def assign_multiple_permissions_to_role(
        self,
        role_id: int,
        permission_ids: List[int],
        assigned_by: Optional[int] = None,
    ) -> bool:
        if await self.store.get_role(role_id) is None:
            return False
        if not await self._all_permissions_exist(permission_ids):
            return False

        now = self._now()
        for permission_id in dict.fromkeys(permission_ids):
            await self.store.save_role_permission(RolePermission(
                role_id=role_id,
                permission_id=permission_id,
                assigned_at=now,
                assigned_by=assigned_by,
            ))
        logger.info(f"Assigned {len(permission_ids)} permissions to role {role_id}")
        return True

    async def revoke_all_role_permissions(self, role_id: int) -> bool:
        if await self.store.get_role(role_id) is None:
            return False
        removed = await self.store.delete_role_permissions(role_id)
        logger.info(f"Revoked {removed} permissions from role {role_id}")
        return True

    async def _all_permissions_exist(self, permission_ids: Iterable[int]) -> bool:
        for permission_id in permission_ids:
            if await self.store.get_permission(permission_id) is None:
                return False
        return True

    # User role memberships

    async def assign_role_to_user(
        self,
        user_id: int,
        role_id: int,
        expires_at: Optional[datetime] = None,
        assigned_by: Optional[int] = None,
    ) -> bool:
        _check_expiry(expires_at)
        if not await self.store.user_exists(user_id):
            return False
        if await self.store.get_role(role_id) is None:
            return False

        await self.store.save_user_role(UserRole(
            user_id=user_id,
            role_id=role_id,
            assigned_at=self._now(),
            assigned_by=assigned_by,
            expires_at=expires_at,
        ))
        logger.info(f"Assigned role {role_id} to user {user_id} (expires_at={expires_at})")
        return True

    async def revoke_role_from_user(self, user_id: int, role_id: int) -> bool:
        revoked = await self.store.delete_user_role(user_id, role_id)
        if revoked:
            logger.info(f"Revoked role {role_id} from user {user_id}")
        return revoked

    async def revoke_all_user_roles(self, user_id: int) -> bool:
        if not await self.store.user_exists(user_id):
            return False
        removed = await self.store.delete_user_roles(user_id)
        logger.info(f"Revoked {removed} roles from user {user_id}")
        return True

    # Role menu links

    async def assign_menu_to_role(
        self,
        role_id: int,
        menu_id: int,
        expires_at: Optional[datetime] = None,
        assigned_by: Optional[int] = None,
    ) -> bool:
        _check_expiry(expires_at)
        if await self.store.get_role(role_id) is None:
            return False
        if await self.store.get_menu(menu_id) is None:
            return False

        await self.store.save_menu_role(MenuRole(
            menu_id=menu_id,
            role_id=role_id,
            assigned_at=self._now(),
            assigned_by=assigned_by,
            expires_at=expires_at,
        ))
        logger.info(f"Assigned menu {menu_id} to role {role_id}")
        return True

    async def revoke_menu_from_role(self, role_id: int, menu_id: int) -> bool:
        revoked = await self.store.delete_menu_role(role_id, menu_id)
        if revoked:
            logger.info(f"Revoked menu {menu_id} from role {role_id}")
        return revoked
