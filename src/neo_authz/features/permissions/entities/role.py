"""Role entity."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ....core.exceptions import ValidationError


@dataclass
class Role:
    """Named, prioritized bucket of permissions and menus.

    System roles cannot be deleted or deactivated.
    """

    id: Optional[int]
    name: str
    description: Optional[str] = None
    priority: int = 0
    is_system: bool = False
    is_active: bool = True
    color: Optional[str] = None
    icon: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.name or not self.name.strip():
            raise ValidationError("Role name must be non-empty")

    def __str__(self) -> str:
        return f"Role({self.name})"
