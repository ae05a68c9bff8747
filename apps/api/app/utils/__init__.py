"""Utility modules."""

from app.utils.normalization import (
    name_prefix,
    normalize_address,
    normalize_email,
    normalize_name,
    normalize_phone,
    normalize_state,
)

__all__ = [
    "name_prefix",
    "normalize_address",
    "normalize_email",
    "normalize_name",
    "normalize_phone",
    "normalize_state",
]
