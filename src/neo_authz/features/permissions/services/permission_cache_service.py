"""Permission cache service.

Owns every permission cache key, its TTL and its invalidation. Cache
backend failures never reach callers: reads degrade to misses and writes or
deletes are logged and dropped.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, TypeVar

from loguru import logger

from ....config import PermissionCacheSettings, get_settings
from ....core.exceptions import CacheTimeoutError, ConfigurationError
from ...cache import CacheBackend, CacheSerializer
from ..entities import (
    CacheKeyBuilder,
    CacheShape,
    CacheStatistics,
    CacheStatisticsCollector,
    PermissionResolver,
)
from ..utils import bounded_ttl, permission_code

T = TypeVar("T")

# (namespace flushes, principal invalidations) seen when a value was computed
Generation = Tuple[int, int]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PermissionCacheService:
    """Cache of effective permission data keyed per user and per role.

    Shapes and keys (``<prefix>`` from settings):

    - ``user_permissions:<user_id>`` sorted ``resource:action`` codes
    - ``user_roles:<user_id>`` role names
    - ``user_menus:<user_id>`` accessible menu ids
    - ``user_permission_matrix:<user_id>`` ``{resource: [actions]}``
    - ``user_role_matrix:<user_id>`` ``{role name: [codes]}``
    - ``role_permissions:<role_id>`` sorted codes granted by the role

    Getters return an empty container on a miss. Setters never let an entry
    outlive ``valid_until`` when one is given.

    Every invalidation bumps an in-process generation counter. A setter given
    the ``generation`` read before its value was computed refuses to store the
    value if an invalidation happened in between, so a slow read cannot
    restore data a concurrent mutation has just removed.
    """

    HEALTH_CHECK_TTL = 10

    def __init__(
        self,
        backend: CacheBackend,
        settings: Optional[PermissionCacheSettings] = None,
        statistics: Optional[CacheStatisticsCollector] = None,
        resolver: Optional[PermissionResolver] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.backend = backend
        self.settings = settings or get_settings()
        self.statistics = statistics or CacheStatisticsCollector(enabled=self.settings.enable_statistics)
        self.resolver = resolver
        self.keys = CacheKeyBuilder(self.settings.key_prefix)
        self._serializer = CacheSerializer(
            enable_compression=self.settings.enable_compression,
            compression_threshold=self.settings.compression_threshold,
        )
        self._clock = clock or _utcnow
        self._ttls = {
            CacheShape.USER_PERMISSIONS: self.settings.user_permission_ttl,
            CacheShape.USER_ROLES: self.settings.user_permission_ttl,
            CacheShape.USER_MENUS: self.settings.menu_permission_ttl,
            CacheShape.USER_PERMISSION_MATRIX: self.settings.user_permission_ttl,
            CacheShape.USER_ROLE_MATRIX: self.settings.user_permission_ttl,
            CacheShape.ROLE_PERMISSIONS: self.settings.role_permission_ttl,
        }
        self._namespace_generation = 0
        self._user_generations: Dict[int, int] = {}
        self._role_generations: Dict[int, int] = {}

    def ttl_for(self, shape: CacheShape) -> int:
        return self._ttls.get(shape, self.settings.default_ttl)

    # Generations

    def user_generation(self, user_id: int) -> Generation:
        """Read before computing a user's value; pass to the setter."""
        return self._namespace_generation, self._user_generations.get(user_id, 0)

    def role_generation(self, role_id: int) -> Generation:
        return self._namespace_generation, self._role_generations.get(role_id, 0)

    def _generation_for(self, shape: CacheShape, principal_id: int) -> Generation:
        if shape is CacheShape.ROLE_PERMISSIONS:
            return self.role_generation(principal_id)
        return self.user_generation(principal_id)

    # Backend access

    async def _with_timeout(self, awaitable: Awaitable[T], timeout: Optional[float] = None) -> T:
        timeout = timeout or self.settings.operation_timeout
        try:
            return await asyncio.wait_for(awaitable, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise CacheTimeoutError(f"Cache operation exceeded {timeout}s") from e

    async def _read(self, shape: CacheShape, principal_id: int, absorb_errors: bool = True) -> Optional[Any]:
        """Read and decode one entry, counting a hit or a miss.

        Backend failures count as misses. With ``absorb_errors`` False they are
        re-raised after logging so bulk callers can drop the key.
        """
        key = self.keys.key(shape, principal_id)
        try:
            raw = await self._with_timeout(self.backend.get(key))
            value = None if raw is None else self._serializer.loads(raw)
        except Exception as e:
            logger.warning(f"Cache read failed for {key}, treating as miss: {e}")
            self.statistics.record_miss()
            if absorb_errors:
                return None
            raise

        if value is None:
            self.statistics.record_miss()
            logger.debug(f"Cache miss for {key}")
            return None

        self.statistics.record_hit()
        logger.debug(f"Cache hit for {key}")
        return value

    async def _write(
        self,
        shape: CacheShape,
        principal_id: int,
        value: Any,
        ttl: Optional[int] = None,
        valid_until: Optional[datetime] = None,
        generation: Optional[Generation] = None,
    ) -> bool:
        key = self.keys.key(shape, principal_id)
        if generation is not None and generation != self._generation_for(shape, principal_id):
            logger.debug(f"Not caching {key}: invalidated while the value was computed")
            return False

        effective_ttl = bounded_ttl(
            ttl if ttl is not None else self.ttl_for(shape),
            valid_until,
            self._clock(),
        )
        if effective_ttl is None:
            logger.debug(f"Not caching {key}: underlying grants expire within a second")
            return False

        try:
            data = self._serializer.dumps(value)
            await self._with_timeout(self.backend.set(key, data, effective_ttl))
        except Exception as e:
            logger.warning(f"Cache write failed for {key}: {e}")
            return False

        # An invalidation may have run while the write was in flight.
        if generation is not None and generation != self._generation_for(shape, principal_id):
            logger.debug(f"Dropping {key}: invalidated during the write")
            await self._delete(key)
            return False

        logger.debug(f"Cached {key} for {effective_ttl}s")
        return True

    async def _delete(self, key: str) -> bool:
        try:
            await self._with_timeout(self.backend.delete(key))
        except Exception as e:
            logger.warning(f"Cache delete failed for {key}: {e}")
            return False
        return True

    # User permissions

    async def get_user_permissions(self, user_id: int) -> List[str]:
        return await self._read(CacheShape.USER_PERMISSIONS, user_id) or []

    async def set_user_permissions(
        self,
        user_id: int,
        permissions: Iterable[str],
        ttl: Optional[int] = None,
        valid_until: Optional[datetime] = None,
        generation: Optional[Generation] = None,
    ) -> bool:
        return await self._write(CacheShape.USER_PERMISSIONS, user_id, sorted(set(permissions)), ttl, valid_until, generation)

    async def user_has_permission(self, user_id: int, resource: str, action: str) -> bool:
        """Membership test against the cached set only; a miss answers False."""
        return permission_code(resource, action) in await self.get_user_permissions(user_id)

    # User roles

    async def get_user_roles(self, user_id: int) -> List[str]:
        return await self._read(CacheShape.USER_ROLES, user_id) or []

    async def set_user_roles(
        self,
        user_id: int,
        roles: Iterable[str],
        ttl: Optional[int] = None,
        valid_until: Optional[datetime] = None,
        generation: Optional[Generation] = None,
    ) -> bool:
        return await self._write(CacheShape.USER_ROLES, user_id, list(roles), ttl, valid_until, generation)

    async def user_has_role(self, user_id: int, role_name: str) -> bool:
        wanted = role_name.lower()
        return any(name.lower() == wanted for name in await self.get_user_roles(user_id))

    # User menus

    async def get_user_menus(self, user_id: int) -> List[int]:
        return await self._read(CacheShape.USER_MENUS, user_id) or []

    async def set_user_menus(
        self,
        user_id: int,
        menu_ids: Iterable[int],
        ttl: Optional[int] = None,
        valid_until: Optional[datetime] = None,
        generation: Optional[Generation] = None,
    ) -> bool:
        return await self._write(CacheShape.USER_MENUS, user_id, list(menu_ids), ttl, valid_until, generation)

    async def user_can_access_menu(self, user_id: int, menu_id: int) -> bool:
        return menu_id in await self.get_user_menus(user_id)

    # Matrices

    async def get_user_permission_matrix(self, user_id: int) -> Dict[str, List[str]]:
        return await self._read(CacheShape.USER_PERMISSION_MATRIX, user_id) or {}

    async def set_user_permission_matrix(
        self,
        user_id: int,
        matrix: Mapping[str, List[str]],
        ttl: Optional[int] = None,
        valid_until: Optional[datetime] = None,
        generation: Optional[Generation] = None,
    ) -> bool:
        return await self._write(CacheShape.USER_PERMISSION_MATRIX, user_id, dict(matrix), ttl, valid_until, generation)

    async def get_user_role_matrix(self, user_id: int) -> Dict[str, List[str]]:
        return await self._read(CacheShape.USER_ROLE_MATRIX, user_id) or {}

    async def set_user_role_matrix(
        self,
        user_id: int,
        matrix: Mapping[str, List[str]],
        ttl: Optional[int] = None,
        valid_until: Optional[datetime] = None,
        generation: Optional[Generation] = None,
    ) -> bool:
        return await self._write(CacheShape.USER_ROLE_MATRIX, user_id, dict(matrix), ttl, valid_until, generation)

    # Role permissions

    async def get_role_permissions(self, role_id: int) -> List[str]:
        return await self._read(CacheShape.ROLE_PERMISSIONS, role_id) or []

    async def set_role_permissions(
        self,
        role_id: int,
        permissions: Iterable[str],
        ttl: Optional[int] = None,
        valid_until: Optional[datetime] = None,
        generation: Optional[Generation] = None,
    ) -> bool:
        return await self._write(CacheShape.ROLE_PERMISSIONS, role_id, sorted(set(permissions)), ttl, valid_until, generation)

    async def role_has_permission(self, role_id: int, resource: str, action: str) -> bool:
        return permission_code(resource, action) in await self.get_role_permissions(role_id)

    # Invalidation

    async def invalidate_user_cache(self, user_id: int) -> bool:
        """Delete every user-scoped entry for ``user_id``.

        Returns False if any delete failed; the entry then lives until its TTL.
        """
        self._user_generations[user_id] = self._user_generations.get(user_id, 0) + 1
        results = await asyncio.gather(*(self._delete(key) for key in self.keys.user_keys(user_id)))
        if all(results):
            logger.info(f"Invalidated cache for user {user_id}")
        return all(results)

    async def invalidate_multiple_user_caches(self, user_ids: Iterable[int]) -> bool:
        user_ids = list(dict.fromkeys(user_ids))
        if not user_ids:
            return True
        results = await asyncio.gather(*(self.invalidate_user_cache(user_id) for user_id in user_ids))
        return all(results)

    async def invalidate_role_cache(self, role_id: int) -> bool:
        self._role_generations[role_id] = self._role_generations.get(role_id, 0) + 1
        deleted = await self._delete(self.keys.key(CacheShape.ROLE_PERMISSIONS, role_id))
        if deleted:
            logger.info(f"Invalidated cache for role {role_id}")
        return deleted

    async def invalidate_permission_cache(self, permission_id: int) -> bool:
        """A permission can reach any principal, so the whole namespace goes."""
        logger.info(f"Permission {permission_id} changed, flushing permission cache")
        return await self.invalidate_all_cache()

    async def invalidate_menu_cache(self, menu_id: int) -> bool:
        logger.info(f"Menu {menu_id} changed, flushing permission cache")
        return await self.invalidate_all_cache()

    async def invalidate_all_cache(self) -> bool:
        self._namespace_generation += 1
        pattern = self.keys.namespace_pattern()
        try:
            deleted = await self._with_timeout(
                self.backend.delete_pattern(pattern), timeout=self.settings.flush_timeout
            )
        except Exception as e:
            logger.warning(f"Failed to flush permission cache ({pattern}): {e}")
            return False
        logger.info(f"Flushed {deleted} permission cache entries")
        return True

    # Bulk operations

    async def _get_many(self, shape: CacheShape, principal_ids: Iterable[int]) -> Dict[int, List[str]]:
        ids = list(dict.fromkeys(principal_ids))
        results = await asyncio.gather(
            *(self._read(shape, principal_id, absorb_errors=False) for principal_id in ids),
            return_exceptions=True,
        )
        found = {}
        for principal_id, result in zip(ids, results):
            if isinstance(result, Exception):
                continue
            found[principal_id] = result or []
        return found

    async def _set_many(
        self,
        shape: CacheShape,
        values: Mapping[int, Iterable[str]],
        ttl: Optional[int],
        valid_until: Optional[Mapping[int, Optional[datetime]]],
    ) -> Dict[int, bool]:
        valid_until = valid_until or {}
        ids = list(values)
        results = await asyncio.gather(
            *(
                self._write(shape, principal_id, sorted(set(values[principal_id])), ttl, valid_until.get(principal_id))
                for principal_id in ids
            ),
            return_exceptions=True,
        )
        return {principal_id: result is True for principal_id, result in zip(ids, results)}

    async def get_multiple_user_permissions(self, user_ids: Iterable[int]) -> Dict[int, List[str]]:
        """Cached permission lists per user; ids whose read failed are absent."""
        return await self._get_many(CacheShape.USER_PERMISSIONS, user_ids)

    async def set_multiple_user_permissions(
        self,
        user_permissions: Mapping[int, Iterable[str]],
        ttl: Optional[int] = None,
        valid_until: Optional[Mapping[int, Optional[datetime]]] = None,
    ) -> Dict[int, bool]:
        return await self._set_many(CacheShape.USER_PERMISSIONS, user_permissions, ttl, valid_until)

    async def get_multiple_role_permissions(self, role_ids: Iterable[int]) -> Dict[int, List[str]]:
        return await self._get_many(CacheShape.ROLE_PERMISSIONS, role_ids)

    async def set_multiple_role_permissions(
        self,
        role_permissions: Mapping[int, Iterable[str]],
        ttl: Optional[int] = None,
        valid_until: Optional[Mapping[int, Optional[datetime]]] = None,
    ) -> Dict[int, bool]:
        return await self._set_many(CacheShape.ROLE_PERMISSIONS, role_permissions, ttl, valid_until)

    # Warm-up

    def _require_resolver(self) -> PermissionResolver:
        if self.resolver is None:
            raise ConfigurationError("Cache warm-up requires a permission resolver")
        return self.resolver

    async def warm_up_user_cache(self, user_id: int) -> bool:
        """Populate every user-scoped entry from the resolver.

        Resolver errors propagate. Empty values are not written.
        """
        resolver = self._require_resolver()
        generation = self.user_generation(user_id)
        valid_until = await resolver.get_user_grants_expiry(user_id)
        permissions, roles, menus, matrix, role_matrix = await asyncio.gather(
            resolver.get_effective_permissions(user_id),
            resolver.get_user_role_names(user_id),
            resolver.get_user_menu_ids(user_id),
            resolver.get_user_permission_matrix(user_id),
            resolver.get_user_role_matrix(user_id),
        )

        options = {"valid_until": valid_until, "generation": generation}
        writes = []
        if permissions:
            writes.append(self.set_user_permissions(user_id, permissions, **options))
        if roles:
            writes.append(self.set_user_roles(user_id, roles, **options))
        if menus:
            writes.append(self.set_user_menus(user_id, menus, **options))
        if matrix:
            writes.append(self.set_user_permission_matrix(user_id, matrix, **options))
        if role_matrix:
            writes.append(self.set_user_role_matrix(user_id, role_matrix, **options))

        results = await asyncio.gather(*writes)
        logger.info(f"Warmed cache for user {user_id} ({sum(results)}/{len(writes)} entries)")
        return all(results)

    async def warm_up_role_cache(self, role_id: int) -> bool:
        resolver = self._require_resolver()
        generation = self.role_generation(role_id)
        permissions = await resolver.get_effective_role_permissions(role_id)
        if not permissions:
            return True
        valid_until = await resolver.get_role_grants_expiry(role_id)
        stored = await self.set_role_permissions(role_id, permissions, valid_until=valid_until, generation=generation)
        logger.info(f"Warmed cache for role {role_id}")
        return stored

    async def warm_up_all_caches(
        self,
        user_ids: Optional[Iterable[int]] = None,
        role_ids: Optional[Iterable[int]] = None,
    ) -> Dict[str, int]:
        """Warm users and roles, all known ones when ids are not given.

        Per-principal failures are logged and skipped. Returns how many
        principals of each kind were warmed.
        """
        resolver = self._require_resolver()
        user_ids = list(user_ids) if user_ids is not None else await resolver.list_user_ids()
        role_ids = list(role_ids) if role_ids is not None else await resolver.list_role_ids()
        semaphore = asyncio.Semaphore(self.settings.warmup_concurrency)

        async def _bounded(kind: str, principal_id: int, warm: Callable[[int], Awaitable[bool]]) -> bool:
            async with semaphore:
                try:
                    return await warm(principal_id)
                except Exception as e:
                    logger.error(f"Failed to warm cache for {kind} {principal_id}: {e}")
                    return False

        user_results = await asyncio.gather(
            *(_bounded("user", user_id, self.warm_up_user_cache) for user_id in user_ids)
        )
        role_results = await asyncio.gather(
            *(_bounded("role", role_id, self.warm_up_role_cache) for role_id in role_ids)
        )
        summary = {"users": sum(user_results), "roles": sum(role_results)}
        logger.info(f"Cache warm-up complete: {summary['users']} users, {summary['roles']} roles")
        return summary

    # Statistics and health

    async def get_cache_statistics(self) -> CacheStatistics:
        """Hit/miss counters plus live key counts per shape.

        Shapes whose keys could not be counted are left out of ``key_counts``.
        """
        key_counts = {}
        for shape in CacheShape:
            pattern = self.keys.shape_pattern(shape)
            try:
                key_counts[shape.value] = await self._with_timeout(
                    self.backend.count_keys(pattern), timeout=self.settings.flush_timeout
                )
            except Exception as e:
                logger.warning(f"Failed to count cache keys for {pattern}: {e}")
        return self.statistics.snapshot(key_counts)

    def reset_statistics(self) -> None:
        self.statistics.reset()

    async def is_cache_healthy(self) -> bool:
        """Round-trip a sentinel value through the backend."""
        key = self.keys.sentinel_key()
        token = self._clock().isoformat()
        try:
            await self._with_timeout(self.backend.set(key, token.encode("utf-8"), self.HEALTH_CHECK_TTL))
            raw = await self._with_timeout(self.backend.get(key))
            await self._with_timeout(self.backend.delete(key))
        except Exception as e:
            logger.warning(f"Permission cache health check failed: {e}")
            return False
        return raw is not None and raw.decode("utf-8") == token
