"""
Enum Utilities for VARCHAR-based Status Fields

Status-like columns are stored as VARCHAR(50) holding the enum value, never
as database ENUM types. Services compare against enums through these helpers
so that both enum members (from request schemas) and raw strings (from the
database) are accepted.

USAGE PATTERNS:
━━━━━━━━━━━━━━━
1. In SQLAlchemy Models:
   status: Mapped[str] = mapped_column(String(50), default="PENDING")

2. Writing from an enum:
   return_record.status = get_enum_value(ReturnStatus.APPROVED)

3. Reading back:
   if is_status(return_record.status, ReturnStatus.PENDING): ...
"""

from enum import Enum
from typing import Any, Optional, TypeVar, Type


T = TypeVar('T', bound=Enum)


def get_enum_value(value: Any) -> Optional[str]:
    """
    Safely get string value from an enum or string.

    Examples:
        >>> get_enum_value(ReturnStatus.PENDING)
        'PENDING'
        >>> get_enum_value("PENDING")
        'PENDING'
        >>> get_enum_value(None)
        None
    """
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    return str(value)


def to_enum(value: Any, enum_class: Type[T]) -> Optional[T]:
    """
    Convert a string value to an enum instance.

    Returns None when the value is not a member of ``enum_class``.
    """
    if value is None:
        return None
    if isinstance(value, enum_class):
        return value
    try:
        return enum_class(value)
    except (ValueError, KeyError):
        return None


def enum_values(enum_class: Type[Enum]) -> list:
    """Get all values from an enum class."""
    return [e.value for e in enum_class]


def enum_comment(enum_class: Type[Enum]) -> str:
    """
    Generate a comment string for VARCHAR column.

    Examples:
        >>> enum_comment(ReturnStatus)
        'PENDING, APPROVED, REJECTED, REFUNDED'
    """
    return ", ".join(enum_values(enum_class))


def is_status(db_value: Optional[str], enum_value: Enum) -> bool:
    """Compare a database string with an enum value."""
    if db_value is None:
        return False
    return db_value == enum_value.value

