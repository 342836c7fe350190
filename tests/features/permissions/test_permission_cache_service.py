"""Tests for the permission cache service."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from neo_authz.core.exceptions import CacheConnectionError, ConfigurationError
from neo_authz.features.permissions import PermissionCacheService
from neo_authz.features.permissions.entities import CacheShape, CacheStatisticsCollector


@pytest.fixture
def failing_backend():
    backend = AsyncMock()
    backend.get.side_effect = CacheConnectionError("cache down")
    backend.set.side_effect = CacheConnectionError("cache down")
    backend.delete.side_effect = CacheConnectionError("cache down")
    backend.delete_pattern.side_effect = CacheConnectionError("cache down")
    backend.count_keys.side_effect = CacheConnectionError("cache down")
    return backend


class TestGetSet:
    """Test per-shape get/set pairs."""

    @pytest.mark.asyncio
    async def test_miss_returns_empty_and_counts(self, cache_service):
        assert await cache_service.get_user_permissions(1) == []
        assert await cache_service.get_user_permission_matrix(1) == {}
        assert cache_service.statistics.miss_count == 2
        assert cache_service.statistics.hit_count == 0

    @pytest.mark.asyncio
    async def test_set_then_get_counts_hit(self, cache_service):
        assert await cache_service.set_user_permissions(1, ["courses:update", "courses:read"])

        assert await cache_service.get_user_permissions(1) == ["courses:read", "courses:update"]
        assert cache_service.statistics.hit_count == 1

    @pytest.mark.asyncio
    async def test_each_shape_round_trips(self, cache_service):
        await cache_service.set_user_roles(1, ["Admin", "Editor"])
        await cache_service.set_user_menus(1, [3, 1])
        await cache_service.set_user_role_matrix(1, {"Editor": ["courses:read"]})
        await cache_service.set_role_permissions(2, ["users:manage"])

        assert await cache_service.get_user_roles(1) == ["Admin", "Editor"]
        assert await cache_service.get_user_menus(1) == [3, 1]
        assert await cache_service.get_user_role_matrix(1) == {"Editor": ["courses:read"]}
        assert await cache_service.get_role_permissions(2) == ["users:manage"]

    @pytest.mark.asyncio
    async def test_large_values_are_transparent_when_compressed(self, cache_service, backend, settings):
        codes = [f"resource{i}:read" for i in range(50)]
        await cache_service.set_user_permissions(1, codes)

        raw = await backend.get(cache_service.keys.key(CacheShape.USER_PERMISSIONS, 1))
        assert raw[:2] == b"\x1f\x8b"
        assert await cache_service.get_user_permissions(1) == sorted(codes)

    @pytest.mark.asyncio
    async def test_shape_default_ttls(self, cache_service, clock, settings):
        await cache_service.set_user_permissions(1, ["courses:read"])
        await cache_service.set_role_permissions(1, ["courses:read"])
        await cache_service.set_user_menus(1, [1])

        clock.advance(settings.user_permission_ttl)
        assert await cache_service.get_user_permissions(1) == []
        assert await cache_service.get_role_permissions(1) == ["courses:read"]

        clock.advance(settings.role_permission_ttl - settings.user_permission_ttl)
        assert await cache_service.get_role_permissions(1) == []
        assert await cache_service.get_user_menus(1) == [1]

        clock.advance(settings.menu_permission_ttl - settings.role_permission_ttl)
        assert await cache_service.get_user_menus(1) == []

    @pytest.mark.asyncio
    async def test_explicit_ttl_wins(self, cache_service, clock):
        await cache_service.set_user_permissions(1, ["courses:read"], ttl=30)

        clock.advance(29)
        assert await cache_service.get_user_permissions(1) == ["courses:read"]
        clock.advance(1)
        assert await cache_service.get_user_permissions(1) == []

    @pytest.mark.asyncio
    async def test_valid_until_bounds_ttl(self, cache_service, clock):
        await cache_service.set_user_permissions(1, ["reports:export"], valid_until=clock.now() + timedelta(seconds=90))

        clock.advance(89)
        assert await cache_service.get_user_permissions(1) == ["reports:export"]
        clock.advance(1)
        assert await cache_service.get_user_permissions(1) == []

    @pytest.mark.asyncio
    async def test_nearly_expired_value_not_cached(self, cache_service, clock):
        stored = await cache_service.set_user_permissions(
            1, ["reports:export"], valid_until=clock.now() + timedelta(milliseconds=200)
        )
        assert stored is False
        assert await cache_service.get_user_permissions(1) == []


class TestChecks:
    """Test cache-only boolean checks."""

    @pytest.mark.asyncio
    async def test_user_has_permission_exact_match(self, cache_service):
        await cache_service.set_user_permissions(1, ["courses:read"])

        assert await cache_service.user_has_permission(1, "courses", "read")
        assert not await cache_service.user_has_permission(1, "courses", "rea")
        assert not await cache_service.user_has_permission(1, "courses", "update")

    @pytest.mark.asyncio
    async def test_miss_answers_false_without_resolver(self, backend, settings):
        resolver = AsyncMock()
        service = PermissionCacheService(backend, settings=settings, resolver=resolver)

        assert not await service.user_has_permission(1, "courses", "read")
        resolver.get_effective_permissions.assert_not_called()

    @pytest.mark.asyncio
    async def test_role_and_menu_checks(self, cache_service):
        await cache_service.set_role_permissions(4, ["users:manage"])
        await cache_service.set_user_roles(1, ["Editor"])
        await cache_service.set_user_menus(1, [2])

        assert await cache_service.role_has_permission(4, "users", "manage")
        assert await cache_service.user_has_role(1, "editor")
        assert await cache_service.user_can_access_menu(1, 2)
        assert not await cache_service.user_can_access_menu(1, 3)


class TestInvalidation:
    """Test targeted and full invalidation."""

    @pytest.mark.asyncio
    async def test_invalidate_user_removes_all_user_shapes(self, cache_service):
        await cache_service.set_user_permissions(1, ["courses:read"])
        await cache_service.set_user_roles(1, ["Editor"])
        await cache_service.set_user_menus(1, [1])
        await cache_service.set_user_permission_matrix(1, {"courses": ["read"]})
        await cache_service.set_user_role_matrix(1, {"Editor": ["courses:read"]})
        await cache_service.set_user_permissions(2, ["courses:read"])
        await cache_service.set_role_permissions(1, ["courses:read"])

        assert await cache_service.invalidate_user_cache(1)

        assert await cache_service.get_user_permissions(1) == []
        assert await cache_service.get_user_roles(1) == []
        assert await cache_service.get_user_menus(1) == []
        assert await cache_service.get_user_permission_matrix(1) == {}
        assert await cache_service.get_user_role_matrix(1) == {}
        assert await cache_service.get_user_permissions(2) == ["courses:read"]
        assert await cache_service.get_role_permissions(1) == ["courses:read"]

    @pytest.mark.asyncio
    async def test_invalidate_role_only_touches_role(self, cache_service):
        await cache_service.set_role_permissions(1, ["courses:read"])
        await cache_service.set_user_permissions(1, ["courses:read"])

        assert await cache_service.invalidate_role_cache(1)

        assert await cache_service.get_role_permissions(1) == []
        assert await cache_service.get_user_permissions(1) == ["courses:read"]

    @pytest.mark.asyncio
    async def test_permission_and_menu_changes_flush_namespace(self, cache_service, backend):
        await backend.set("other:namespace:key", b"1", 60)

        for invalidate in (cache_service.invalidate_permission_cache, cache_service.invalidate_menu_cache):
            await cache_service.set_user_permissions(1, ["courses:read"])
            await cache_service.set_role_permissions(2, ["users:manage"])

            assert await invalidate(1)

            assert await cache_service.get_user_permissions(1) == []
            assert await cache_service.get_role_permissions(2) == []

        assert await backend.get("other:namespace:key") == b"1"

    @pytest.mark.asyncio
    async def test_invalidate_multiple_users(self, cache_service):
        await cache_service.set_user_permissions(1, ["a:b"])
        await cache_service.set_user_permissions(2, ["a:b"])

        assert await cache_service.invalidate_multiple_user_caches([1, 2, 2])

        assert await cache_service.get_multiple_user_permissions([1, 2]) == {1: [], 2: []}


class TestGenerations:
    """Writes computed before an invalidation are refused."""

    @pytest.mark.asyncio
    async def test_current_generation_is_stored(self, cache_service):
        generation = cache_service.user_generation(1)

        assert await cache_service.set_user_permissions(1, ["courses:read"], generation=generation)
        assert await cache_service.get_user_permissions(1) == ["courses:read"]

    @pytest.mark.asyncio
    async def test_user_invalidation_refuses_older_write(self, cache_service):
        stale = cache_service.user_generation(1)
        other = cache_service.user_generation(2)

        await cache_service.invalidate_user_cache(1)

        assert not await cache_service.set_user_permissions(1, ["courses:read"], generation=stale)
        assert not await cache_service.set_user_menus(1, [1], generation=stale)
        assert await cache_service.get_user_permissions(1) == []
        assert await cache_service.set_user_permissions(2, ["courses:read"], generation=other)

    @pytest.mark.asyncio
    async def test_role_invalidation_refuses_older_write(self, cache_service):
        stale = cache_service.role_generation(1)
        user = cache_service.user_generation(1)

        await cache_service.invalidate_role_cache(1)

        assert not await cache_service.set_role_permissions(1, ["courses:read"], generation=stale)
        assert await cache_service.get_role_permissions(1) == []
        assert await cache_service.set_user_permissions(1, ["courses:read"], generation=user)

    @pytest.mark.asyncio
    async def test_flush_refuses_every_older_write(self, cache_service):
        user = cache_service.user_generation(1)
        role = cache_service.role_generation(1)

        await cache_service.invalidate_permission_cache(4)

        assert not await cache_service.set_user_roles(1, ["Editor"], generation=user)
        assert not await cache_service.set_role_permissions(1, ["courses:read"], generation=role)

    @pytest.mark.asyncio
    async def test_failed_invalidation_still_refuses_older_write(self, settings, failing_backend):
        service = PermissionCacheService(failing_backend, settings=settings)
        stale = service.user_generation(1)

        assert not await service.invalidate_user_cache(1)

        assert service.user_generation(1) != stale
        failing_backend.set.side_effect = None
        assert not await service.set_user_permissions(1, ["courses:read"], generation=stale)
        failing_backend.set.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalidation_during_write_drops_entry(self, cache_service, backend):
        store_value = backend.set

        async def store_then_flush(key, value, ttl):
            await store_value(key, value, ttl)
            await cache_service.invalidate_all_cache()

        backend.set = store_then_flush
        backend.delete_pattern = AsyncMock(return_value=0)
        generation = cache_service.user_generation(1)

        assert not await cache_service.set_user_permissions(1, ["courses:read"], generation=generation)
        assert await cache_service.get_user_permissions(1) == []

    @pytest.mark.asyncio
    async def test_warm_up_refuses_data_older_than_invalidation(self, cache_service, permission_service, seeded):
        compute = permission_service.get_effective_permissions

        async def revoke_while_computing(user_id):
            codes = await compute(user_id)
            await permission_service.revoke_role_from_user(user_id, seeded.editor.id)
            await cache_service.invalidate_user_cache(user_id)
            return codes

        permission_service.get_effective_permissions = revoke_while_computing

        assert not await cache_service.warm_up_user_cache(seeded.alice)
        assert await cache_service.get_user_permissions(seeded.alice) == []


class TestBulkOperations:
    """Test bulk get/set."""

    @pytest.mark.asyncio
    async def test_get_multiple_has_exactly_input_ids(self, cache_service):
        await cache_service.set_multiple_user_permissions({1: ["courses:read"], 2: ["users:manage"]})

        result = await cache_service.get_multiple_user_permissions([1, 2, 3])

        assert result == {1: ["courses:read"], 2: ["users:manage"], 3: []}
        for user_id, codes in result.items():
            assert await cache_service.get_user_permissions(user_id) == codes

    @pytest.mark.asyncio
    async def test_failed_keys_are_absent(self, cache_service, backend):
        await cache_service.set_multiple_role_permissions({1: ["courses:read"], 2: ["users:manage"]})
        failing_key = cache_service.keys.key(CacheShape.ROLE_PERMISSIONS, 2)
        real_get = backend.get

        async def flaky_get(key):
            if key == failing_key:
                raise CacheConnectionError("node down")
            return await real_get(key)

        backend.get = flaky_get

        assert await cache_service.get_multiple_role_permissions([1, 2]) == {1: ["courses:read"]}

    @pytest.mark.asyncio
    async def test_set_multiple_reports_per_key(self, cache_service, clock):
        result = await cache_service.set_multiple_user_permissions(
            {1: ["a:b"], 2: ["c:d"]},
            valid_until={2: clock.now()},
        )
        assert result == {1: True, 2: False}


class TestFailOpen:
    """Backend failures never reach the caller."""

    @pytest.mark.asyncio
    async def test_read_error_is_a_miss(self, failing_backend, settings):
        service = PermissionCacheService(failing_backend, settings=settings, statistics=CacheStatisticsCollector())

        assert await service.get_user_permissions(1) == []
        assert not await service.user_has_permission(1, "courses", "read")
        assert service.statistics.miss_count == 2

    @pytest.mark.asyncio
    async def test_write_and_delete_errors_are_swallowed(self, failing_backend, settings):
        service = PermissionCacheService(failing_backend, settings=settings)

        assert await service.set_user_permissions(1, ["courses:read"]) is False
        assert await service.invalidate_user_cache(1) is False
        assert await service.invalidate_role_cache(1) is False
        assert await service.invalidate_all_cache() is False

    @pytest.mark.asyncio
    async def test_timeout_is_a_miss(self, backend, settings):
        async def slow_get(key):
            await asyncio.sleep(5)

        backend.get = slow_get
        service = PermissionCacheService(
            backend, settings=settings.model_copy(update={"operation_timeout": 0.01})
        )

        assert await service.get_user_permissions(1) == []
        assert service.statistics.miss_count == 1

    @pytest.mark.asyncio
    async def test_corrupt_value_is_a_miss(self, cache_service, backend):
        await backend.set(cache_service.keys.key(CacheShape.USER_PERMISSIONS, 1), b"\x1f\x8bnot-gzip", 60)

        assert await cache_service.get_user_permissions(1) == []


class TestWarmUp:
    """Test proactive population from the resolver."""

    @pytest.mark.asyncio
    async def test_warm_up_user(self, cache_service, seeded):
        assert await cache_service.warm_up_user_cache(seeded.bob)

        assert await cache_service.get_user_permissions(seeded.bob) == [
            "courses:read",
            "courses:update",
            "users:manage",
        ]
        assert await cache_service.get_user_roles(seeded.bob) == ["Admin", "Editor"]
        assert await cache_service.get_user_menus(seeded.bob) == [seeded.courses_menu.id, seeded.users_menu.id]
        assert await cache_service.get_user_permission_matrix(seeded.bob) == {
            "courses": ["read", "update"],
            "users": ["manage"],
        }
        assert set(await cache_service.get_user_role_matrix(seeded.bob)) == {"Admin", "Editor"}

    @pytest.mark.asyncio
    async def test_warm_up_respects_grant_expiry(self, cache_service, permission_service, seeded, clock):
        await permission_service.assign_permission_to_user(
            seeded.carol, seeded.reports_export.id, expires_at=clock.now() + timedelta(seconds=120)
        )
        await cache_service.warm_up_user_cache(seeded.carol)

        clock.advance(120)

        assert await cache_service.get_user_permissions(seeded.carol) == []

    @pytest.mark.asyncio
    async def test_warm_up_all(self, cache_service, seeded):
        summary = await cache_service.warm_up_all_caches()

        assert summary == {"users": 3, "roles": 2}
        assert await cache_service.get_role_permissions(seeded.admin.id) == ["users:manage"]

    @pytest.mark.asyncio
    async def test_warm_up_all_skips_failures(self, cache_service, permission_service, seeded):
        original = permission_service.get_user_grants_expiry

        async def failing_expiry(user_id):
            if user_id == seeded.alice:
                raise RuntimeError("boom")
            return await original(user_id)

        permission_service.get_user_grants_expiry = failing_expiry

        summary = await cache_service.warm_up_all_caches(user_ids=[seeded.alice, seeded.bob], role_ids=[])

        assert summary == {"users": 1, "roles": 0}
        assert await cache_service.get_user_permissions(seeded.alice) == []

    @pytest.mark.asyncio
    async def test_warm_up_requires_resolver(self, backend, settings):
        service = PermissionCacheService(backend, settings=settings)
        with pytest.raises(ConfigurationError):
            await service.warm_up_user_cache(1)


class TestStatisticsAndHealth:
    """Test observability helpers."""

    @pytest.mark.asyncio
    async def test_statistics_include_key_counts(self, cache_service):
        await cache_service.set_user_permissions(1, ["a:b"])
        await cache_service.set_user_permissions(2, ["a:b"])
        await cache_service.set_user_permission_matrix(1, {"a": ["b"]})
        await cache_service.get_user_permissions(1)
        await cache_service.get_user_permissions(3)

        stats = await cache_service.get_cache_statistics()

        assert stats.hit_count == 1
        assert stats.miss_count == 1
        assert stats.hit_ratio == 0.5
        assert stats.key_counts["user_permissions"] == 2
        assert stats.key_counts["user_permission_matrix"] == 1
        assert stats.key_counts["role_permissions"] == 0
        assert stats.total_keys == 3

    @pytest.mark.asyncio
    async def test_reset_statistics(self, cache_service):
        await cache_service.get_user_permissions(1)
        cache_service.reset_statistics()
        assert (await cache_service.get_cache_statistics()).miss_count == 0

    @pytest.mark.asyncio
    async def test_healthy_backend(self, cache_service):
        assert await cache_service.is_cache_healthy()

    @pytest.mark.asyncio
    async def test_unhealthy_backend(self, failing_backend, settings):
        service = PermissionCacheService(failing_backend, settings=settings)
        assert not await service.is_cache_healthy()

    @pytest.mark.asyncio
    async def test_statistics_with_unreachable_backend(self, failing_backend, settings):
        service = PermissionCacheService(failing_backend, settings=settings)
        stats = await service.get_cache_statistics()
        assert stats.key_counts == {}
