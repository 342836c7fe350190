"""Cached permission service.

The authorization entry point for request handling code. Reads go through
the cache first and fall back to the resolver; every successful mutation
invalidates the cache entries it may have made stale.
"""

from datetime import datetime
from typing import Dict, Iterable, List, Optional

from loguru import logger

from ....core.exceptions import StoreError
from ..entities import CacheStatistics, Menu, Permission, PermissionView, Role
from ..utils import codes_to_views, split_permission_code
from .permission_cache_service import PermissionCacheService
from .permission_service import PermissionService


class CachedPermissionService:
    """Cache-aside reads and invalidate-on-write over the permission resolver.

    A cached ``True`` is trusted. A cached ``False`` or a miss is always
    re-checked against the resolver, so a stale entry can never grant access.
    Cache entries are only written on the read path, never by mutations.
    """

    def __init__(self, permission_service: PermissionService, cache_service: PermissionCacheService):
        self.permissions = permission_service
        self.cache = cache_service

    # Permission checks

    async def user_has_permission(self, user_id: int, resource: str, action: str) -> bool:
        if await self.cache.user_has_permission(user_id, resource, action):
            logger.debug(f"Permission {resource}:{action} for user {user_id} served from cache")
            return True

        allowed = await self.permissions.user_has_permission(user_id, resource, action)
        if allowed:
            await self.refresh_user_permissions_cache(user_id)
        return allowed

    async def check_permission(self, user_id: int, resource: str, action: str) -> bool:
        return await self.user_has_permission(user_id, resource, action)

    async def has_any_permission(self, user_id: int, codes: Iterable[str]) -> bool:
        for code in codes:
            resource, action = split_permission_code(code)
            if await self.user_has_permission(user_id, resource, action):
                return True
        return False

    async def has_all_permissions(self, user_id: int, codes: Iterable[str]) -> bool:
        for code in codes:
            resource, action = split_permission_code(code)
            if not await self.user_has_permission(user_id, resource, action):
                return False
        return True

    async def role_has_permission(self, role_id: int, resource: str, action: str) -> bool:
        if await self.cache.role_has_permission(role_id, resource, action):
            return True

        allowed = await self.permissions.role_has_permission(role_id, resource, action)
        if allowed:
            await self.refresh_role_permissions_cache(role_id)
        return allowed

    async def refresh_user_permissions_cache(self, user_id: int) -> List[str]:
        """Recompute the user's full permission set and cache it.

        The entry's TTL is capped by the earliest expiring grant behind it.
        """
        generation = self.cache.user_generation(user_id)
        codes = sorted(await self.permissions.get_effective_permissions(user_id))
        if codes:
            valid_until = await self.permissions.get_user_grants_expiry(user_id)
            await self.cache.set_user_permissions(user_id, codes, valid_until=valid_until, generation=generation)
        return codes

    async def refresh_role_permissions_cache(self, role_id: int) -> List[str]:
        generation = self.cache.role_generation(role_id)
        codes = sorted(await self.permissions.get_effective_role_permissions(role_id))
        if codes:
            valid_until = await self.permissions.get_role_grants_expiry(role_id)
            await self.cache.set_role_permissions(role_id, codes, valid_until=valid_until, generation=generation)
        return codes

    # Aggregate reads

    async def get_user_permissions(self, user_id: int) -> List[PermissionView]:
        codes = await self.cache.get_user_permissions(user_id)
        if codes:
            logger.debug(f"User {user_id} permissions served from cache")
            return codes_to_views(codes)
        return codes_to_views(await self.refresh_user_permissions_cache(user_id))

    async def get_user_permission_codes(self, user_id: int) -> List[str]:
        return [view.code for view in await self.get_user_permissions(user_id)]

    async def get_user_permissions_by_resource(self, user_id: int, resource: str) -> List[PermissionView]:
        return [view for view in await self.get_user_permissions(user_id) if view.resource == resource]

    async def get_multiple_user_permissions(self, user_ids: Iterable[int]) -> Dict[int, List[PermissionView]]:
        """Permissions for several users; cache misses are resolved one by one."""
        user_ids = list(dict.fromkeys(user_ids))
        cached = await self.cache.get_multiple_user_permissions(user_ids)
        result = {}
        for user_id in user_ids:
            codes = cached.get(user_id)
            if codes:
                result[user_id] = codes_to_views(codes)
            else:
                result[user_id] = codes_to_views(await self.refresh_user_permissions_cache(user_id))
        return result

    async def get_role_permissions(self, role_id: int) -> List[PermissionView]:
        codes = await self.cache.get_role_permissions(role_id)
        if codes:
            logger.debug(f"Role {role_id} permissions served from cache")
            return codes_to_views(codes)
        return codes_to_views(await self.refresh_role_permissions_cache(role_id))

    async def get_user_permission_matrix(self, user_id: int) -> Dict[str, List[str]]:
        matrix = await self.cache.get_user_permission_matrix(user_id)
        if matrix:
            logger.debug(f"User {user_id} permission matrix served from cache")
            return matrix

        generation = self.cache.user_generation(user_id)
        matrix = await self.permissions.get_user_permission_matrix(user_id)
        if matrix:
            valid_until = await self.permissions.get_user_grants_expiry(user_id)
            await self.cache.set_user_permission_matrix(
                user_id, matrix, valid_until=valid_until, generation=generation
            )
        return matrix

    async def get_user_roles(self, user_id: int) -> List[str]:
        roles = await self.cache.get_user_roles(user_id)
        if roles:
            return roles
        return await self._refresh_user_roles(user_id)

    async def user_has_role(self, user_id: int, role_name: str) -> bool:
        if await self.cache.user_has_role(user_id, role_name):
            return True
        wanted = role_name.lower()
        return any(name.lower() == wanted for name in await self._refresh_user_roles(user_id))

    async def _refresh_user_roles(self, user_id: int) -> List[str]:
        generation = self.cache.user_generation(user_id)
        roles = await self.permissions.get_user_role_names(user_id)
        if roles:
            valid_until = await self.permissions.get_user_grants_expiry(user_id)
            await self.cache.set_user_roles(user_id, roles, valid_until=valid_until, generation=generation)
        return roles

    async def get_user_role_matrix(self, user_id: int) -> Dict[str, List[str]]:
        matrix = await self.cache.get_user_role_matrix(user_id)
        if matrix:
            return matrix

        generation = self.cache.user_generation(user_id)
        matrix = await self.permissions.get_user_role_matrix(user_id)
        if matrix:
            valid_until = await self.permissions.get_user_grants_expiry(user_id)
            await self.cache.set_user_role_matrix(user_id, matrix, valid_until=valid_until, generation=generation)
        return matrix

    async def get_user_menu_ids(self, user_id: int) -> List[int]:
        menu_ids = await self.cache.get_user_menus(user_id)
        if menu_ids:
            return menu_ids
        return await self._refresh_user_menus(user_id)

    async def _refresh_user_menus(self, user_id: int) -> List[int]:
        generation = self.cache.user_generation(user_id)
        menu_ids = await self.permissions.get_user_menu_ids(user_id)
        if menu_ids:
            valid_until = await self.permissions.get_user_grants_expiry(user_id)
            await self.cache.set_user_menus(user_id, menu_ids, valid_until=valid_until, generation=generation)
        return menu_ids

    async def get_user_menus(self, user_id: int) -> List[Menu]:
        """Menu entities for the user's cached menu ids, in display order."""
        menus = []
        for menu_id in await self.get_user_menu_ids(user_id):
            menu = await self.permissions.get_menu(menu_id)
            if menu is not None:
                menus.append(menu)
        return menus

    async def user_can_access_menu(self, user_id: int, menu_id: int) -> bool:
        if await self.cache.user_can_access_menu(user_id, menu_id):
            return True
        return menu_id in await self._refresh_user_menus(user_id)

    # Catalogue reads

    async def list_permissions(self, include_inactive: bool = True) -> List[Permission]:
        return await self.permissions.list_permissions(include_inactive)

    async def get_permission(self, permission_id: int) -> Optional[Permission]:
        return await self.permissions.get_permission(permission_id)

    async def get_permissions_by_resource(self, resource: str) -> List[Permission]:
        return await self.permissions.get_permissions_by_resource(resource)

    async def get_permissions_by_module(self, module: str) -> List[Permission]:
        return await self.permissions.get_permissions_by_module(module)

    async def list_roles(self, include_inactive: bool = True) -> List[Role]:
        return await self.permissions.list_roles(include_inactive)

    async def get_role(self, role_id: int) -> Optional[Role]:
        return await self.permissions.get_role(role_id)

    async def get_role_by_name(self, name: str) -> Optional[Role]:
        return await self.permissions.get_role_by_name(name)

    async def get_user_ids_with_role(self, role_id: int) -> List[int]:
        return await self.permissions.get_user_ids_with_role(role_id)

    async def list_menus(self) -> List[Menu]:
        return await self.permissions.list_menus()

    async def get_menu(self, menu_id: int) -> Optional[Menu]:
        return await self.permissions.get_menu(menu_id)

    # Invalidation helpers

    async def _invalidate_user(self, user_id: int) -> None:
        if not await self.cache.invalidate_user_cache(user_id):
            logger.warning(f"Cache invalidation incomplete for user {user_id}; entries expire by TTL")

    async def _invalidate_role(self, role_id: int, member_ids: Optional[List[int]] = None) -> None:
        """Invalidate a role and every user holding it.

        Falls back to a full flush when the members cannot be looked up.
        """
        if not await self.cache.invalidate_role_cache(role_id):
            logger.warning(f"Cache invalidation incomplete for role {role_id}; entry expires by TTL")

        if member_ids is None:
            try:
                member_ids = await self.permissions.get_user_ids_with_role(role_id)
            except StoreError as e:
                logger.warning(f"Could not list members of role {role_id} ({e}), flushing permission cache")
                await self._flush()
                return

        if not await self.cache.invalidate_multiple_user_caches(member_ids):
            logger.warning(f"Cache invalidation incomplete for members of role {role_id}")

    async def _flush(self) -> None:
        if not await self.cache.invalidate_all_cache():
            logger.warning("Permission cache flush failed; entries expire by TTL")

    async def _invalidate_permission(self, permission_id: int) -> None:
        if not await self.cache.invalidate_permission_cache(permission_id):
            logger.warning(f"Permission cache flush for permission {permission_id} failed; entries expire by TTL")

    async def _invalidate_menu(self, menu_id: int) -> None:
        if not await self.cache.invalidate_menu_cache(menu_id):
            logger.warning(f"Permission cache flush for menu {menu_id} failed; entries expire by TTL")

    # User-level mutations

    async def assign_permission_to_user(
        self,
        user_id: int,
        permission_id: int,
        expires_at: Optional[datetime] = None,
        assigned_by: Optional[int] = None,
    ) -> bool:
        result = await self.permissions.assign_permission_to_user(user_id, permission_id, expires_at, assigned_by)
        if result:
            await self._invalidate_user(user_id)
        return result

    async def revoke_permission_from_user(self, user_id: int, permission_id: int) -> bool:
        result = await self.permissions.revoke_permission_from_user(user_id, permission_id)
        if result:
            await self._invalidate_user(user_id)
        return result

    async def assign_multiple_permissions_to_user(
        self,
        user_id: int,
        permission_ids: List[int],
        expires_at: Optional[datetime] = None,
        assigned_by: Optional[int] = None,
    ) -> bool:
        result = await self.permissions.assign_multiple_permissions_to_user(
            user_id, permission_ids, expires_at, assigned_by
        )
        if result:
            await self._invalidate_user(user_id)
        return result

    async def revoke_all_user_permissions(self, user_id: int) -> bool:
        result = await self.permissions.revoke_all_user_permissions(user_id)
        if result:
            await self._invalidate_user(user_id)
        return result

    async def assign_role_to_user(
        self,
        user_id: int,
        role_id: int,
        expires_at: Optional[datetime] = None,
        assigned_by: Optional[int] = None,
    ) -> bool:
        result = await self.permissions.assign_role_to_user(user_id, role_id, expires_at, assigned_by)
        if result:
            await self._invalidate_user(user_id)
        return result

    async def revoke_role_from_user(self, user_id: int, role_id: int) -> bool:
        result = await self.permissions.revoke_role_from_user(user_id, role_id)
        if result:
            await self._invalidate_user(user_id)
        return result

    async def revoke_all_user_roles(self, user_id: int) -> bool:
        result = await self.permissions.revoke_all_user_roles(user_id)
        if result:
            await self._invalidate_user(user_id)
        return result

    # Role-level mutations

    async def assign_permission_to_role(
        self,
        role_id: int,
        permission_id: int,
        expires_at: Optional[datetime] = None,
        assigned_by: Optional[int] = None,
    ) -> bool:
        result = await self.permissions.assign_permission_to_role(role_id, permission_id, expires_at, assigned_by)
        if result:
            await self._invalidate_role(role_id)
        return result

    async def revoke_permission_from_role(self, role_id: int, permission_id: int) -> bool:
        result = await self.permissions.revoke_permission_from_role(role_id, permission_id)
        if result:
            await self._invalidate_role(role_id)
        return result

    async def assign_multiple_permissions_to_role(
        self,
        role_id: int,
        permission_ids: List[int],
        assigned_by: Optional[int] = None,
    ) -> bool:
        result = await self.permissions.assign_multiple_permissions_to_role(role_id, permission_ids, assigned_by)
        if result:
            await self._invalidate_role(role_id)
        return result

    async def revoke_all_role_permissions(self, role_id: int) -> bool:
        result = await self.permissions.revoke_all_role_permissions(role_id)
        if result:
            await self._invalidate_role(role_id)
        return result

    async def assign_menu_to_role(
        self,
        role_id: int,
        menu_id: int,
        expires_at: Optional[datetime] = None,
        assigned_by: Optional[int] = None,
    ) -> bool:
        result = await self.permissions.assign_menu_to_role(role_id, menu_id, expires_at, assigned_by)
        if result:
            await self._invalidate_role(role_id)
        return result

    async def revoke_menu_from_role(self, role_id: int, menu_id: int) -> bool:
        result = await self.permissions.revoke_menu_from_role(role_id, menu_id)
        if result:
            await self._invalidate_role(role_id)
        return result

    # Role definitions

    async def create_role(
        self,
        name: str,
        description: Optional[str] = None,
        priority: int = 0,
        is_system: bool = False,
        color: Optional[str] = None,
        icon: Optional[str] = None,
    ) -> Role:
        role = await self.permissions.create_role(name, description, priority, is_system, color, icon)
        await self._invalidate_role(role.id, member_ids=[])
        return role

    async def update_role(
        self,
        role_id: int,
        name: Optional[str] = None,
        description: Optional[str] = None,
        priority: Optional[int] = None,
        color: Optional[str] = None,
        icon: Optional[str] = None,
    ) -> Optional[Role]:
        role = await self.permissions.update_role(role_id, name, description, priority, color, icon)
        if role is not None:
            await self._invalidate_role(role_id)
        return role

    async def delete_role(self, role_id: int) -> bool:
        # Members must be read before the store drops the memberships.
        member_ids = await self.permissions.get_user_ids_with_role(role_id)
        result = await self.permissions.delete_role(role_id)
        if result:
            await self._invalidate_role(role_id, member_ids=member_ids)
        return result

    async def activate_role(self, role_id: int) -> bool:
        result = await self.permissions.activate_role(role_id)
        if result:
            await self._invalidate_role(role_id)
        return result

    async def deactivate_role(self, role_id: int) -> bool:
        result = await self.permissions.deactivate_role(role_id)
        if result:
            await self._invalidate_role(role_id)
        return result

    # Permission definitions

    async def create_permission(
        self,
        name: str,
        resource: str,
        action: str,
        module: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Permission:
        permission = await self.permissions.create_permission(name, resource, action, module, description)
        await self._invalidate_permission(permission.id)
        return permission

    async def update_permission(
        self,
        permission_id: int,
        name: Optional[str] = None,
        resource: Optional[str] = None,
        action: Optional[str] = None,
        module: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Optional[Permission]:
        permission = await self.permissions.update_permission(
            permission_id, name, resource, action, module, description
        )
        if permission is not None:
            await self._invalidate_permission(permission_id)
        return permission

    async def delete_permission(self, permission_id: int) -> bool:
        result = await self.permissions.delete_permission(permission_id)
        if result:
            await self._invalidate_permission(permission_id)
        return result

    async def activate_permission(self, permission_id: int) -> bool:
        result = await self.permissions.activate_permission(permission_id)
        if result:
            await self._invalidate_permission(permission_id)
        return result

    async def deactivate_permission(self, permission_id: int) -> bool:
        result = await self.permissions.deactivate_permission(permission_id)
        if result:
            await self._invalidate_permission(permission_id)
        return result

    # Menu definitions

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
        menu = await self.permissions.create_menu(
            name, url, parent_id, sort_order, permission, module, icon, is_visible
        )
        await self._invalidate_menu(menu.id)
        return menu

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
        menu = await self.permissions.update_menu(
            menu_id, name, url, sort_order, permission, icon, is_visible, is_active
        )
        if menu is not None:
            await self._invalidate_menu(menu_id)
        return menu

    async def delete_menu(self, menu_id: int) -> bool:
        result = await self.permissions.delete_menu(menu_id)
        if result:
            await self._invalidate_menu(menu_id)
        return result

    # Administration

    async def invalidate_user_cache(self, user_id: int) -> None:
        await self._invalidate_user(user_id)

    async def invalidate_role_cache(self, role_id: int) -> None:
        """Invalidate a role together with the caches of all its members."""
        await self._invalidate_role(role_id)

    async def flush_cache(self) -> None:
        await self._flush()

    async def warm_up_user_cache(self, user_id: int) -> bool:
        return await self.cache.warm_up_user_cache(user_id)

    async def warm_up_role_cache(self, role_id: int) -> bool:
        return await self.cache.warm_up_role_cache(role_id)

    async def warm_up_all_caches(
        self,
        user_ids: Optional[Iterable[int]] = None,
        role_ids: Optional[Iterable[int]] = None,
    ) -> Dict[str, int]:
        return await self.cache.warm_up_all_caches(user_ids, role_ids)

    async def get_cache_statistics(self) -> CacheStatistics:
        return await self.cache.get_cache_statistics()

    async def is_cache_healthy(self) -> bool:
        return await self.cache.is_cache_healthy()

