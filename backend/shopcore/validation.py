from __future__ import annotations

from datetime import date
from typing import Any

from shopcore.errors import ValidationError
from shopcore.time_utils import parse_iso_date


# Maximum price: 9,999,999.99 in major units (999,999,999 minor units)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999

# Largest quantity or stock delta accepted on any path
MAX_QUANTITY = 1_000_000


def parse_int(value: Any, field: str) -> int:
    """
    Strict integer coercion.

    Rejects floats, bools, decimal strings and scientific notation so that
    "2.5" or 1e3 never silently become a quantity.
    """
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer", {"field": field})
        # Reject scientific notation (e.g., "1e15", "1E10")
        if "e" in stripped.lower():
            raise ValidationError(
                f"{field} must be a plain integer (scientific notation not allowed)",
                {"field": field},
            )
        # Reject decimal points (e.g., "12.5")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)", {"field": field})
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer", {"field": field})
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal", {"field": field})
    raise ValidationError(f"{field} must be an integer", {"field": field})


def parse_positive_int(value: Any, field: str) -> int:
    n = parse_int(value, field)
    if n <= 0:
        raise ValidationError(f"{field} must be a positive integer", {"field": field})
    return n


def parse_non_negative_int(value: Any, field: str) -> int:
    n = parse_int(value, field)
    if n < 0:
        raise ValidationError(f"{field} must be >= 0", {"field": field})
    return n


def parse_quantity(value: Any, field: str, *, allow_negative: bool = False) -> int:
    """Non-zero integer quantity bounded by MAX_QUANTITY in magnitude."""
    n = parse_int(value, field)
    if n == 0:
        raise ValidationError(f"{field} must be non-zero", {"field": field})
    if n < 0 and not allow_negative:
        raise ValidationError(f"{field} must be a positive integer", {"field": field})
    if abs(n) > MAX_QUANTITY:
        raise ValidationError(f"{field} exceeds maximum of {MAX_QUANTITY}", {"field": field})
    return n


def parse_price_cents(value: Any, field: str) -> int:
    n = parse_non_negative_int(value, field)
    if n > MAX_PRICE_CENTS:
        raise ValidationError(f"{field} exceeds maximum of {MAX_PRICE_CENTS}", {"field": field})
    return n


def parse_optional_int(value: Any, field: str) -> int | None:
    if value is None or value == "":
        return None
    return parse_int(value, field)


def parse_optional_date(value: Any, field: str) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            parsed = parse_iso_date(value)
        except ValueError:
            raise ValidationError(f"{field} must be an ISO-8601 date", {"field": field})
        if parsed is None:
            raise ValidationError(f"{field} must be an ISO-8601 date", {"field": field})
        return parsed
    raise ValidationError(f"{field} must be an ISO-8601 date", {"field": field})


def clean_str(value: Any, *, max_length: int | None = None) -> str | None:
    """Strip a string field; empty becomes None."""
    if value is None:
        return None
    cleaned = str(value).strip()
    if not cleaned:
        return None
    if max_length is not None:
        cleaned = cleaned[:max_length]
    return cleaned


def clamp_limit(value: Any, *, default: int = 100, maximum: int = 500) -> int:
    """Parse a ?limit= query arg; invalid values fall back to the default."""
    try:
        n = int(value)
    except (TypeError, ValueError):
        return default
    return max(1, min(n, maximum))


def clamp_offset(value: Any) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError):
        return 0
    return max(0, min(n, 2**31 - 1))
