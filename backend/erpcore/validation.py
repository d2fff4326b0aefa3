# Overview: Request payload coercion for the transaction routes; runs before any unit of work opens.

from __future__ import annotations

from typing import Any

from .errors import ValidationError
from .time_utils import parse_iso_date, parse_iso_datetime


# Maximum amount: $9,999,999.99 (999,999,999 cents)
MAX_AMOUNT_CENTS = 999_999_999


def coerce_int(value: Any, field: str, *, required: bool = True, default: int | None = None) -> int | None:
    """
    Strict integer coercion.

    Accepts ints and plain digit strings. Rejects bools, floats, decimals
    in strings and scientific notation.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{field} is required")
        return default

    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    if isinstance(value, str):
        stripped = value.strip()
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    raise ValidationError(f"{field} must be an integer")


def coerce_positive_int(value: Any, field: str) -> int:
    result = coerce_int(value, field)
    if result <= 0:
        raise ValidationError(f"{field} must be positive")
    return result


def coerce_amount_cents(value: Any, field: str, *, allow_zero: bool = True) -> int:
    result = coerce_int(value, field)
    if result < 0 or (result == 0 and not allow_zero):
        raise ValidationError(f"{field} must be {'non-negative' if allow_zero else 'positive'}")
    if result > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} exceeds the maximum of {MAX_AMOUNT_CENTS} cents")
    return result


def coerce_choice(value: Any, field: str, choices, *, default: str | None = None) -> str:
    if value is None and default is not None:
        return default
    normalized = str(value or "").strip().lower()
    if normalized not in choices:
        raise ValidationError(f"{field} must be one of: {', '.join(sorted(choices))}")
    return normalized


def optional_str(value: Any, field: str, *, max_length: int = 255) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    stripped = value.strip()
    if not stripped:
        return None
    if len(stripped) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return stripped


def require_items(data: dict, field: str = "items") -> list[dict]:
    items = data.get(field)
    if not isinstance(items, list) or not items:
        raise ValidationError(f"{field} must be a non-empty list")
    for index, item in enumerate(items, start=1):
        if not isinstance(item, dict):
            raise ValidationError(f"{field}[{index}] must be an object")
    return items


def coerce_date(value: Any, field: str):
    """ISO date ("YYYY-MM-DD") or None."""
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO date string")
    try:
        return parse_iso_date(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO date (YYYY-MM-DD)")


def coerce_datetime(value: Any, field: str):
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO-8601 string")
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime")


def coerce_date_bound(value: Any, field: str):
    """Bare ISO date stays a date (a whole day); anything longer is a datetime."""
    if isinstance(value, str) and len(value.strip()) == 10:
        return coerce_date(value.strip(), field)
    return coerce_datetime(value, field)
