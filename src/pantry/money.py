"""Currency helpers using Decimal amounts and integer minor units."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_FLOOR, ROUND_HALF_UP

from .errors import InvalidRequestError


MINOR_UNITS_PER_UNIT = 100
_CENT = Decimal("0.01")


def to_decimal(value: Decimal | float | int | str, field_name: str = "amount") -> Decimal:
    """Parse a JSON-ish number into a Decimal, rejecting booleans and junk."""
    if isinstance(value, bool) or value is None:
        raise InvalidRequestError(f"{field_name} must be a number")
    try:
        dec = Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise InvalidRequestError(f"{field_name} must be a number") from e
    if not dec.is_finite():
        raise InvalidRequestError(f"{field_name} must be a finite number")
    return dec


def floor_amount(value: Decimal) -> Decimal:
    """Floor to the currency's smallest unit."""
    return value.quantize(_CENT, rounding=ROUND_FLOOR)


def apply_discount(total: Decimal, factor: Decimal) -> Decimal:
    """Multiply by a retention factor, flooring the result (never rounds up)."""
    return floor_amount(total * factor)


def split_amount(total: Decimal, initial_percentage: int) -> tuple[Decimal, Decimal]:
    """Split a total into (initial, delivery) portions; initial is floored."""
    initial = floor_amount(total * Decimal(initial_percentage) / Decimal(100))
    return initial, total - initial


def to_minor_units(value: Decimal | float | int | str) -> int:
    """Convert currency units to integer minor units (cents), rounding half up."""
    dec = to_decimal(value).quantize(_CENT, rounding=ROUND_HALF_UP)
    return int(dec * MINOR_UNITS_PER_UNIT)


def from_minor_units(value: int) -> Decimal:
    return (Decimal(value) / Decimal(MINOR_UNITS_PER_UNIT)).quantize(_CENT)


def json_number(value: Decimal) -> int | float:
    """Render a Decimal for JSON: whole amounts stay integers."""
    if value == value.to_integral_value():
        return int(value)
    return float(value)


def format_amount(value: Decimal, currency: str = "USD") -> str:
    if currency == "USD":
        return f"${value:.2f}"
    return f"{value:.2f} {currency}"
