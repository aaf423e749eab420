# Overview: Input validation helpers shared by the reconciliation services.

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any


# Maximum money amount: 9,999,999,999.99
# This prevents database overflow issues and nonsensical prices
MAX_AMOUNT = Decimal("9999999999.99")

IMEI_LENGTHS = (15, 17)

_IMEI_SEPARATORS = re.compile(r"[\s-]")

CENT = Decimal("0.01")


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate IMEI)."""


def normalize_imei(value: str) -> str:
    """Strip spaces and dashes, uppercase."""
    return _IMEI_SEPARATORS.sub("", value or "").upper()


def validate_imei(value: Any) -> str:
    """
    Normalize and validate an IMEI.

    Returns the normalized value. Raises ValidationError unless the result
    is exactly 15 or 17 digits.
    """
    if not isinstance(value, str):
        raise ValidationError("imei must be a string")
    imei = normalize_imei(value)
    if not imei.isdigit() or len(imei) not in IMEI_LENGTHS:
        raise ValidationError("IMEI must be exactly 15 or 17 digits")
    return imei


def to_amount(value: Any, field: str, *, allow_negative: bool = False) -> Decimal:
    """Coerce a money value to a 2dp Decimal."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    if amount < 0 and not allow_negative:
        raise ValidationError(f"{field} cannot be negative")
    if abs(amount) > MAX_AMOUNT:
        raise ValidationError(f"{field} is too large")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def require_choice(value: Any, field: str, choices: tuple[str, ...]) -> str:
    if value not in choices:
        raise ValidationError(f"{field} must be one of: {', '.join(choices)}")
    return value
