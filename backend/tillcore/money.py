# Overview: Decimal helpers for currency amounts.

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

CENT = Decimal("0.01")
ZERO = Decimal("0")


def to_decimal(value: Any, *, field: str = "amount") -> Decimal:
    """
    Coerce int/str/Decimal input to Decimal without passing through float.

    Floats are converted via str() so 0.1 stays 0.1 rather than its binary expansion.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or value is None:
        raise ValueError(f"{field} must be a number")
    try:
        if isinstance(value, float):
            return Decimal(str(value))
        return Decimal(value)
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"{field} must be a number") from exc


def quantize_money(value: Decimal) -> Decimal:
    """Round to 2 places (half-up). Only for presentation and persisted charges."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def money_str(value: Decimal | None) -> str | None:
    if value is None:
        return None
    return format(quantize_money(Decimal(value)), "f")


def to_minor_units(value: Decimal) -> int:
    """Currency amount -> integer minor units (pesewas, kobo, cents)."""
    return int((quantize_money(value) * 100).to_integral_value(rounding=ROUND_HALF_UP))
