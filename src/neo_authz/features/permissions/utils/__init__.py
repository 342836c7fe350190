"""Helpers for permission data shapes."""

from .shapes import (
    bounded_ttl,
    build_permission_matrix,
    codes_to_views,
    permission_code,
    split_permission_code,
    to_permission_codes,
)

__all__ = [
    "bounded_ttl",
    "build_permission_matrix",
    "codes_to_views",
    "permission_code",
    "split_permission_code",
    "to_permission_codes",
]
