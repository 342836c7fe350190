"""FastAPI authorization dependencies.

Each ``require_*`` factory returns a dependency that resolves the acting
user's id, asks the cached permission service, and raises 403 when access is
denied. When the authorization store cannot be reached the request fails
with 503 rather than being let through.
"""

from typing import Annotated, Awaitable, Callable, List, Union

from fastapi import Depends, HTTPException, status
from loguru import logger

from ...core.exceptions import StoreError
from .entities import PermissionCode
from .services import CachedPermissionService

UserIdProvider = Callable[..., Union[int, Awaitable[int]]]


class PermissionDependencyError(HTTPException):
    """Raised by authorization dependencies to stop a request."""

    def __init__(self, detail: str, status_code: int = status.HTTP_403_FORBIDDEN):
        super().__init__(status_code=status_code, detail=detail)


class PermissionDependencies:
    """FastAPI authorization dependencies factory.

    ``current_user_id`` is the application's own dependency returning the id of
    the authenticated user; it is wired in through ``Depends`` so it may itself
    depend on request state.
    """

    def __init__(self, service: CachedPermissionService, current_user_id: UserIdProvider):
        self.service = service
        self.current_user_id = current_user_id

    async def _guard(self, user_id: int, check: Callable[[], Awaitable[bool]], denied: str) -> int:
        try:
            allowed = await check()
        except StoreError as e:
            logger.error(f"Authorization store unavailable while checking user {user_id}: {e}")
            raise PermissionDependencyError(
                "Authorization service unavailable",
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            )

        if not allowed:
            logger.warning(f"User {user_id} denied: {denied}")
            raise PermissionDependencyError(denied)
        return user_id

    def require_permission(self, resource: str, action: str):
        """Require a single ``resource:action`` permission."""
        code = PermissionCode.from_parts(resource, action)

        async def dependency(user_id: Annotated[int, Depends(self.current_user_id)]) -> int:
            return await self._guard(
                user_id,
                lambda: self.service.user_has_permission(user_id, code.resource, code.action),
                f"Permission required: {code.value}",
            )

        return dependency

    def require_any_permission(self, permissions: List[str]):
        """Require any of the specified permission codes."""
        codes = [PermissionCode(permission).value for permission in permissions]

        async def dependency(user_id: Annotated[int, Depends(self.current_user_id)]) -> int:
            return await self._guard(
                user_id,
                lambda: self.service.has_any_permission(user_id, codes),
                f"One of these permissions required: {', '.join(codes)}",
            )

        return dependency

    def require_all_permissions(self, permissions: List[str]):
        """Require all of the specified permission codes."""
        codes = [PermissionCode(permission).value for permission in permissions]

        async def dependency(user_id: Annotated[int, Depends(self.current_user_id)]) -> int:
            return await self._guard(
                user_id,
                lambda: self.service.has_all_permissions(user_id, codes),
                f"All permissions required: {', '.join(codes)}",
            )

        return dependency

    def require_role(self, role_name: str):
        async def dependency(user_id: Annotated[int, Depends(self.current_user_id)]) -> int:
            return await self._guard(
                user_id,
                lambda: self.service.user_has_role(user_id, role_name),
                f"Role required: {role_name}",
            )

        return dependency

    def require_menu(self, menu_id: int):
        async def dependency(user_id: Annotated[int, Depends(self.current_user_id)]) -> int:
            return await self._guard(
                user_id,
                lambda: self.service.user_can_access_menu(user_id, menu_id),
                f"Menu access required: {menu_id}",
            )

        return dependency
