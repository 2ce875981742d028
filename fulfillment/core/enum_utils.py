"""
Enum helpers for VARCHAR-backed status columns.

Statuses are stored as uppercase strings (String(50)), validated on input by
Python ``str`` enums. Services compare and persist plain strings, so any value
that might be an enum member goes through ``get_enum_value`` first.
"""

from enum import Enum
from typing import Any, Optional, TypeVar, Type


T = TypeVar('T', bound=Enum)


def get_enum_value(value: Any) -> Optional[str]:
    """
    Safely get string value from an enum or string.

    Examples:
        >>> get_enum_value(OrderStatus.PENDING)
        'PENDING'
        >>> get_enum_value("PENDING")
        'PENDING'
    """
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    return str(value)


def to_enum(value: Any, enum_class: Type[T]) -> Optional[T]:
    """Convert a stored string back to its enum member, or None when unknown."""
    if value is None:
        return None
    if isinstance(value, enum_class):
        return value
    try:
        return enum_class(str(value).upper())
    except (ValueError, KeyError):
        return None

