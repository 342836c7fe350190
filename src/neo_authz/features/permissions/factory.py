"""Wiring for the permission services."""

from datetime import datetime
from typing import Callable, Optional

from loguru import logger

from ...config import PermissionCacheSettings, get_settings
from ..cache import CacheBackend, MemoryCacheBackend, RedisCacheBackend
from .entities import AuthorizationStore, CacheStatisticsCollector
from .services import CachedPermissionService, PermissionCacheService, PermissionService


def create_cache_backend(settings: Optional[PermissionCacheSettings] = None) -> CacheBackend:
    """Redis backend when ``redis_url`` is configured, in-memory otherwise."""
    settings = settings or get_settings()
    if settings.redis_url:
        logger.info("Using Redis backend for permission cache")
        return RedisCacheBackend.from_url(settings.redis_url, pool_size=settings.redis_pool_size)

    logger.info(f"Using in-memory backend for permission cache (max_size={settings.max_cache_size})")
    return MemoryCacheBackend(max_size=settings.max_cache_size)


def create_cached_permission_service(
    store: AuthorizationStore,
    settings: Optional[PermissionCacheSettings] = None,
    backend: Optional[CacheBackend] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> CachedPermissionService:
    """Build resolver, cache and facade around ``store``."""
    settings = settings or get_settings()
    if backend is None:
        backend = create_cache_backend(settings)

    permission_service = PermissionService(store, clock=clock)
    cache_service = PermissionCacheService(
        backend,
        settings=settings,
        statistics=CacheStatisticsCollector(enabled=settings.enable_statistics),
        resolver=permission_service,
        clock=clock,
    )
    return CachedPermissionService(permission_service, cache_service)
