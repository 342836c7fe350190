"""Permission entities.

A permission is identified by its ``(resource, action)`` pair and is always
serialized as ``"resource:action"`` in effective permission sets.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ....core.exceptions import ValidationError


@dataclass(frozen=True)
class PermissionCode:
    """Immutable value object for permission identifier with validation."""

    value: str

    def __post_init__(self):
        """Validate permission code format: resource:action"""
        if not self.value or ":" not in self.value:
            raise ValidationError(f"Permission code must be in format 'resource:action', got: {self.value}")

        parts = self.value.split(":")
        if len(parts) != 2:
            raise ValidationError(f"Permission code must have exactly one colon, got: {self.value}")

        resource, action = parts
        if not resource or not action:
            raise ValidationError(f"Both resource and action must be non-empty, got: {self.value}")

    @classmethod
    def from_parts(cls, resource: str, action: str) -> "PermissionCode":
        return cls(f"{resource}:{action}")

    @property
    def resource(self) -> str:
        """Extract resource part from permission code."""
        return self.value.split(":")[0]

    @property
    def action(self) -> str:
        """Extract action part from permission code."""
        return self.value.split(":")[1]

    def __str__(self) -> str:
        return self.value


@dataclass
class Permission:
    """Domain entity representing a grantable permission."""

    id: Optional[int]
    name: str
    resource: str
    action: str
    module: Optional[str] = None
    description: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.name:
            raise ValidationError("Permission name must be non-empty")
        PermissionCode.from_parts(self.resource, self.action)

    @property
    def code(self) -> str:
        return f"{self.resource}:{self.action}"

    def __str__(self) -> str:
        return f"Permission({self.code})"


@dataclass(frozen=True)
class PermissionView:
    """Read model returned to callers listing a user's permissions."""

    resource: str
    action: str
    name: str
    id: Optional[int] = None
    module: Optional[str] = None
    description: Optional[str] = None
    is_active: bool = True

    @property
    def code(self) -> str:
        return f"{self.resource}:{self.action}"

    @classmethod
    def from_code(cls, code: str) -> "PermissionView":
        """Build a view from a cached ``resource:action`` string."""
        parsed = PermissionCode(code)
        return cls(resource=parsed.resource, action=parsed.action, name=parsed.value)

    @classmethod
    def from_permission(cls, permission: Permission) -> "PermissionView":
        return cls(
            resource=permission.resource,
            action=permission.action,
            name=permission.name,
            id=permission.id,
            module=permission.module,
            description=permission.description,
            is_active=permission.is_active,
        )
