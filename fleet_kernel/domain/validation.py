"""
Lightweight domain validation helpers.

Pure checks with no I/O, applied when payload DTOs are constructed so that
services only ever see well-formed input.  Amounts and litres are Decimal;
floats are refused rather than silently converted.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any

from fleet_kernel.exceptions import ValidationError


def to_decimal(value: Any, name: str) -> Decimal:
    """Coerce int/str/Decimal to Decimal; reject floats and garbage."""
    if isinstance(value, bool) or isinstance(value, float):
        raise ValidationError(name, f"must be Decimal, not {type(value).__name__}")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise ValidationError(name, f"not a number: {value!r}") from None
    if not result.is_finite():
        raise ValidationError(name, "must be finite")
    return result


def require_positive(value: Any, name: str) -> Decimal:
    result = to_decimal(value, name)
    if result <= 0:
        raise ValidationError(name, f"must be greater than zero, got {result}")
    return result


def require_nonzero(value: Any, name: str) -> Decimal:
    result = to_decimal(value, name)
    if result == 0:
        raise ValidationError(name, "must not be zero")
    return result


def require_text(value: str | None, name: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(name, "is required")
    return str(value).strip()


def require_date_order(start: date | None, end: date | None, name: str) -> None:
    if start is not None and end is not None and end < start:
        raise ValidationError(name, f"end {end} is before start {start}")
