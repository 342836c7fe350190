"""Loguru sink configuration for neo-authz."""

import sys
from typing import Optional

from loguru import logger

from .settings import PermissionCacheSettings, get_settings


def configure_logging(settings: Optional[PermissionCacheSettings] = None) -> None:
    """Replace loguru's default sink with the configured ones.

    Adds a stderr sink and, when ``log_file`` is set, a rotating file sink.
    """
    settings = settings or get_settings()

    logger.remove()
    logger.add(
        sys.stderr,
        level=settings.log_level,
        format=settings.log_format,
        colorize=True,
    )

    if settings.log_file:
        logger.add(
            settings.log_file,
            level=settings.log_level,
            format=settings.log_format,
            rotation=settings.log_rotation,
            retention=settings.log_retention,
            enqueue=True,
        )

    logger.debug(f"Logging configured at level {settings.log_level}")
