"""Menu entity."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ....core.exceptions import ValidationError
from .permission import PermissionCode


@dataclass
class Menu:
    """UI navigation node, optionally parented and gated by a permission code."""

    id: Optional[int]
    name: str
    url: Optional[str] = None
    parent_id: Optional[int] = None
    sort_order: int = 0
    permission: Optional[str] = None
    module: Optional[str] = None
    icon: Optional[str] = None
    is_visible: bool = True
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.name:
            raise ValidationError("Menu name must be non-empty")
        if self.permission is not None:
            PermissionCode(self.permission)
        if self.id is not None and self.parent_id == self.id:
            raise ValidationError(f"Menu {self.id} cannot be its own parent")
