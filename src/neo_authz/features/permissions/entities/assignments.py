"""Assignment join entities.

Every assignment carries an active flag and an optional expiry. An
assignment past its ``expires_at`` is treated as absent even if the row
still exists.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


class AssignmentWindow:
    """Mixin deciding whether an assignment is in force."""

    is_active: bool
    expires_at: Optional[datetime]

    def is_effective(self, now: datetime) -> bool:
        if not self.is_active:
            return False
        return self.expires_at is None or self.expires_at > now


@dataclass
class UserRole(AssignmentWindow):
    user_id: int
    role_id: int
    assigned_at: datetime
    assigned_by: Optional[int] = None
    expires_at: Optional[datetime] = None
    is_active: bool = True


@dataclass
class UserPermission(AssignmentWindow):
    """Direct grant of a permission to a user, independent of roles."""
    user_id: int
    permission_id: int
    assigned_at: datetime
    assigned_by: Optional[int] = None
    expires_at: Optional[datetime] = None
    is_active: bool = True


@dataclass
class RolePermission(AssignmentWindow):
    role_id: int
    permission_id: int
    assigned_at: datetime
    assigned_by: Optional[int] = None
    expires_at: Optional[datetime] = None
    is_active: bool = True


@dataclass
class MenuRole(AssignmentWindow):
    menu_id: int
    role_id: int
    assigned_at: datetime
    assigned_by: Optional[int] = None
    expires_at: Optional[datetime] = None
    is_active: bool = True
