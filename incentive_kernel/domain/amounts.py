"""
Decimal helpers for payout arithmetic.

All payouts are Decimal, quantized to cents with ROUND_HALF_UP.  Raw values
enter through ``to_decimal``, which converts floats via ``str`` so ``0.1``
stays ``0.1``.
"""

import math
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

CENTS = Decimal("0.01")
ZERO = Decimal("0")


def to_decimal(value: Any) -> Decimal | None:
    """
    Coerce a raw value to Decimal.

    Returns None for None, booleans, empty strings and anything that does
    not parse as a finite number.  Thousands separators, currency symbols
    and a trailing percent sign are stripped from strings.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value)) if math.isfinite(value) else None
    if isinstance(value, str):
        cleaned = value.strip().replace(",", "").replace("$", "").rstrip("%").strip()
        if not cleaned:
            return None
        try:
            parsed = Decimal(cleaned)
        except InvalidOperation:
            return None
        return parsed if parsed.is_finite() else None
    return None


def quantize_cents(amount: Decimal) -> Decimal:
    """Round to cents, half up."""
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def money_str(amount: Decimal) -> str:
    """Cents-quantized string for JSON payloads."""
    return str(quantize_cents(amount))
