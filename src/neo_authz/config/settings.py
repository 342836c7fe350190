"""Settings for the permission cache layer.

Values are read from the environment (prefix ``NEO_AUTHZ_``) or an optional
``.env`` file. Services accept an explicit settings instance, so the
environment is only consulted through ``get_settings``.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class PermissionCacheSettings(BaseSettings):
    """Configuration for permission caching and its backend."""

    model_config = SettingsConfigDict(
        env_prefix="NEO_AUTHZ_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Key layout
    key_prefix: str = Field(default="neo:permissions:", min_length=1, description="Namespace prefix for every cache key")

    # TTLs in seconds
    default_ttl: int = Field(default=3600, gt=0, description="Fallback TTL")
    user_permission_ttl: int = Field(default=7200, gt=0, description="TTL for user-scoped entries")
    role_permission_ttl: int = Field(default=14400, gt=0, description="TTL for role-scoped entries")
    menu_permission_ttl: int = Field(default=21600, gt=0, description="TTL for user menu entries")

    # Behaviour
    max_cache_size: int = Field(default=10000, ge=1, description="Max entries for the in-memory backend")
    enable_compression: bool = Field(default=True, description="Gzip large values")
    compression_threshold: int = Field(default=1024, ge=0, description="Compression threshold in bytes")
    enable_statistics: bool = Field(default=True, description="Track hit/miss counters")
    operation_timeout: float = Field(default=0.5, gt=0, description="Timeout for each cache call in seconds")
    flush_timeout: float = Field(default=5.0, gt=0, description="Timeout for pattern scans and namespace flushes")
    warmup_concurrency: int = Field(default=10, ge=1, description="Concurrent principals during warm-up")

    # Redis backend
    redis_url: Optional[str] = Field(default=None, description="Redis URL; in-memory backend when unset")
    redis_pool_size: int = Field(default=10, ge=1, description="Redis connection pool size")

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(
        default="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
    )
    log_file: Optional[str] = Field(default=None)
    log_rotation: str = Field(default="10 MB")
    log_retention: str = Field(default="7 days")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()

    @field_validator("key_prefix")
    @classmethod
    def validate_key_prefix(cls, v: str) -> str:
        """Reject glob metacharacters; the prefix is used in match patterns."""
        if any(char in "*?[]\\" for char in v):
            raise ValueError("Key prefix must not contain any of * ? [ ] \\")
        return v

    @field_validator("redis_url")
    @classmethod
    def validate_redis_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate Redis URL scheme."""
        if v is None or v == "":
            return None
        if not v.startswith(("redis://", "rediss://", "unix://")):
            raise ValueError("Redis URL must start with redis://, rediss:// or unix://")
        return v


@lru_cache()
def get_settings() -> PermissionCacheSettings:
    """Get cached settings instance."""
    return PermissionCacheSettings()
