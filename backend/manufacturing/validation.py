from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any


# Quantities and costs are stored as NUMERIC with 4 decimal places
QUANTITY_PLACES = Decimal("0.0001")

# Guard against nonsensical recipe/order sizes overflowing NUMERIC(18, 4)
MAX_QUANTITY = Decimal("99999999999999")


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate order code)."""


def parse_decimal(
    value: Any,
    field: str,
    *,
    minimum: Decimal | None = None,
    maximum: Decimal | None = None,
    exclusive_minimum: bool = False,
) -> Decimal:
    """
    Coerce an incoming number to a Decimal quantized to 4 places.

    Accepts int, Decimal, str, and float (floats go through str() so 0.1
    stays 0.1). Booleans are rejected even though bool subclasses int.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")

    if isinstance(value, Decimal):
        number = value
    elif isinstance(value, (int, float, str)):
        try:
            number = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValidationError(f"{field} must be a number")
    else:
        raise ValidationError(f"{field} must be a number")

    if not number.is_finite():
        raise ValidationError(f"{field} must be a finite number")

    if minimum is not None:
        if exclusive_minimum and number <= minimum:
            raise ValidationError(f"{field} must be greater than {minimum}")
        if not exclusive_minimum and number < minimum:
            raise ValidationError(f"{field} cannot be less than {minimum}")

    upper = MAX_QUANTITY if maximum is None else maximum
    if number > upper:
        raise ValidationError(f"{field} cannot exceed {upper}")

    return number.quantize(QUANTITY_PLACES)


def parse_positive_quantity(value: Any, field: str = "quantity") -> Decimal:
    return parse_decimal(value, field, minimum=Decimal("0"), exclusive_minimum=True)


def parse_percent(value: Any, field: str, *, default: Decimal, maximum: Decimal | None = Decimal("100")) -> Decimal:
    """Percentages default when omitted; None means 'not provided'."""
    if value is None:
        return default
    return parse_decimal(value, field, minimum=Decimal("0"), maximum=maximum)


def require_int(value: Any, field: str) -> int:
    """Strict id validation: rejects floats, bools and scientific notation."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.isascii() and stripped.isdigit():
            return int(stripped)
    raise ValidationError(f"{field} must be an integer")


def optional_int(value: Any, field: str) -> int | None:
    """require_int for nullable foreign keys (units)."""
    if value is None:
        return None
    return require_int(value, field)


def decimal_str(value: Decimal | None) -> str | None:
    """Serialize decimals for JSON without float rounding surprises."""
    if value is None:
        return None
    return str(Decimal(value).quantize(QUANTITY_PLACES))
