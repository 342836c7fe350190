"""Configuration for neo-authz."""

from .settings import PermissionCacheSettings, get_settings
from .logging_config import configure_logging

__all__ = [
    "PermissionCacheSettings",
    "get_settings",
    "configure_logging",
]
