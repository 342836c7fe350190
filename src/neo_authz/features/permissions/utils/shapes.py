"""Conversions between effective permission sets and their cached shapes."""

import math
from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from ..entities import Permission, PermissionCode, PermissionView


def permission_code(resource: str, action: str) -> str:
    """Serialize a permission identity as ``resource:action``."""
    return f"{resource}:{action}"


def split_permission_code(code: str) -> Tuple[str, str]:
    parsed = PermissionCode(code)
    return parsed.resource, parsed.action


def to_permission_codes(permissions: Iterable[Permission]) -> List[str]:
    """Sorted, de-duplicated codes for a collection of permissions."""
    return sorted({permission.code for permission in permissions})


def build_permission_matrix(codes: Iterable[str]) -> Dict[str, List[str]]:
    """Group ``resource:action`` codes into ``{resource: [actions]}``.

    Resources and actions are sorted so equal sets produce equal matrices.
    """
    matrix: Dict[str, set] = defaultdict(set)
    for code in codes:
        resource, action = split_permission_code(code)
        matrix[resource].add(action)
    return {resource: sorted(actions) for resource, actions in sorted(matrix.items())}


def codes_to_views(codes: Iterable[str]) -> List[PermissionView]:
    return [PermissionView.from_code(code) for code in sorted(set(codes))]


def bounded_ttl(ttl: int, valid_until: Optional[datetime], now: datetime) -> Optional[int]:
    """Clamp ``ttl`` so an entry never outlives the grants it was built from.

    Returns None when less than a second of validity remains, meaning the
    value must not be cached at all.
    """
    if valid_until is not None:
        remaining = math.floor((valid_until - now).total_seconds())
        ttl = min(ttl, remaining)
    if ttl < 1:
        return None
    return ttl
