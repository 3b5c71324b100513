"""
Input validation helpers.

Amounts and quantities are plain ints in minor units.  ``bool`` is an
``int`` subclass in Python and is rejected explicitly.
"""

from typing import Any
from uuid import UUID

from market_kernel.exceptions import ValidationError


def require_int(field: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(field, f"must be an integer, got {type(value).__name__}")
    return value


def require_positive_int(field: str, value: Any) -> int:
    value = require_int(field, value)
    if value <= 0:
        raise ValidationError(field, f"must be greater than zero, got {value}")
    return value


def require_non_negative_int(field: str, value: Any) -> int:
    value = require_int(field, value)
    if value < 0:
        raise ValidationError(field, f"must not be negative, got {value}")
    return value


def require_text(field: str, value: Any, max_length: int | None = None) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(field, "is required")
    value = value.strip()
    if max_length is not None and len(value) > max_length:
        raise ValidationError(field, f"must be at most {max_length} characters")
    return value


def require_uuid(field: str, value: Any) -> UUID:
    if isinstance(value, UUID):
        return value
    if isinstance(value, str):
        try:
            return UUID(value)
        except ValueError:
            pass
    raise ValidationError(field, "must be a valid identifier")


def require_choice(field: str, value: Any, choices: tuple[str, ...] | list[str]) -> str:
    if value not in choices:
        raise ValidationError(field, f"must be one of {', '.join(choices)}")
    return value
