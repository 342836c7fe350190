"""Pytest configuration and fixtures for neo-authz tests."""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
import pytest_asyncio

from neo_authz.config import PermissionCacheSettings
from neo_authz.features.cache import MemoryCacheBackend
from neo_authz.features.permissions import (
    CachedPermissionService,
    InMemoryAuthorizationStore,
    PermissionCacheService,
    PermissionService,
)
from neo_authz.features.permissions.entities import CacheStatisticsCollector


class FakeClock:
    """Controllable clock shared by the store, resolver, cache and backend."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)):
        self.current = start
        self._monotonic = 1000.0

    def now(self) -> datetime:
        return self.current

    def monotonic(self) -> float:
        return self._monotonic

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)
        self._monotonic += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    """Settings isolated from the environment."""
    return PermissionCacheSettings(
        _env_file=None,
        key_prefix="test:permissions:",
        enable_compression=True,
        compression_threshold=64,
        operation_timeout=0.5,
        flush_timeout=1.0,
    )


@pytest.fixture
def store(clock):
    return InMemoryAuthorizationStore(clock=clock.now)


@pytest.fixture
def backend(clock, settings):
    return MemoryCacheBackend(max_size=settings.max_cache_size, clock=clock.monotonic)


@pytest.fixture
def permission_service(store, clock):
    return PermissionService(store, clock=clock.now)


@pytest.fixture
def cache_service(backend, settings, permission_service, clock):
    return PermissionCacheService(
        backend,
        settings=settings,
        statistics=CacheStatisticsCollector(),
        resolver=permission_service,
        clock=clock.now,
    )


@pytest.fixture
def cached_service(permission_service, cache_service):
    return CachedPermissionService(permission_service, cache_service)


@pytest_asyncio.fixture
async def seeded(store, permission_service):
    """A small catalogue.

    - alice (1): Editor
    - bob (2): Admin and Editor
    - carol (3): no roles
    - Editor grants courses:read and courses:update, sees Courses
    - Admin (system) grants users:manage, sees Users
    - the Reports menu requires reports:export, granted to nobody yet
    """
    for user_id in (1, 2, 3):
        await store.add_user(user_id)

    courses_read = await permission_service.create_permission("Read courses", "courses", "read", module="courses")
    courses_update = await permission_service.create_permission("Update courses", "courses", "update", module="courses")
    reports_export = await permission_service.create_permission("Export reports", "reports", "export", module="reports")
    users_manage = await permission_service.create_permission("Manage users", "users", "manage", module="admin")

    editor = await permission_service.create_role("Editor", priority=10)
    admin = await permission_service.create_role("Admin", priority=100, is_system=True)

    await permission_service.assign_multiple_permissions_to_role(editor.id, [courses_read.id, courses_update.id])
    await permission_service.assign_permission_to_role(admin.id, users_manage.id)

    courses_menu = await permission_service.create_menu("Courses", url="/courses", sort_order=1, permission="courses:read")
    reports_menu = await permission_service.create_menu("Reports", url="/reports", sort_order=2, permission="reports:export")
    users_menu = await permission_service.create_menu("Users", url="/users", sort_order=3, permission="users:manage")

    await permission_service.assign_menu_to_role(editor.id, courses_menu.id)
    await permission_service.assign_menu_to_role(editor.id, reports_menu.id)
    await permission_service.assign_menu_to_role(admin.id, users_menu.id)

    await permission_service.assign_role_to_user(1, editor.id)
    await permission_service.assign_role_to_user(2, admin.id)
    await permission_service.assign_role_to_user(2, editor.id)

    return SimpleNamespace(
        alice=1,
        bob=2,
        carol=3,
        courses_read=courses_read,
        courses_update=courses_update,
        reports_export=reports_export,
        users_manage=users_manage,
        editor=editor,
        admin=admin,
        courses_menu=courses_menu,
        reports_menu=reports_menu,
        users_menu=users_menu,
    )
