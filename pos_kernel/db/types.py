"""
Module: pos_kernel.db.types
Responsibility: The money helpers every cash component uses.  Centralizes
    precision, rounding, and currency validation so that models and services
    agree on one representation.
Architecture position: Kernel > DB.  May be imported by pos_cash.  MUST NOT
    import from pos_cash.

Invariants enforced:
    - No floats anywhere.  to_money() rejects float input outright; amounts
      are Decimal quantized to the currency's minor unit.  Input finer than
      the minor unit is rejected rather than rounded.
    - round_money() is the ONLY sanctioned rounding function for money.
    - validate_currency() accepts only known ISO 4217 codes.

Failure modes:
    - ValidationError from to_money() on float, bool, non-numeric,
      non-finite or sub-minor-unit input.
    - ValidationError from validate_currency() on unknown codes.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from pos_kernel.exceptions import ValidationError

DEFAULT_ROUNDING = ROUND_HALF_UP

# Minor units for the currencies a venue is expected to operate in.
CURRENCY_MINOR_UNITS: dict[str, int] = {
    "BRL": 2,
    "USD": 2,
    "EUR": 2,
    "GBP": 2,
    "ARS": 2,
    "CLP": 0,
    "COP": 2,
    "MXN": 2,
    "PYG": 0,
    "UYU": 2,
    "JPY": 0,
}

ZERO = Decimal("0")


def validate_currency(currency: str) -> str:
    """
    Validate and normalize a currency code.

    Returns:
        The validated currency code (uppercase).

    Raises:
        ValidationError: If the code is not a supported ISO 4217 code.
    """
    if not currency or not isinstance(currency, str):
        raise ValidationError("currency", "must be a non-empty string", currency)

    normalized = currency.upper().strip()
    if normalized not in CURRENCY_MINOR_UNITS:
        raise ValidationError("currency", f"unsupported currency code '{currency}'", currency)
    return normalized


def minor_units(currency: str) -> int:
    """Decimal places of the currency's minor unit (2 for BRL)."""
    return CURRENCY_MINOR_UNITS[validate_currency(currency)]


def round_money(
    value: Decimal,
    decimal_places: int = 2,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the given number of decimal places.

    This is the ONLY sanctioned rounding function for money.  All other
    code delegates rounding here.
    """
    quantum = Decimal(1).scaleb(-decimal_places)
    return value.quantize(quantum, rounding=rounding)


def to_money(value: Any, field: str = "amount", decimal_places: int = 2) -> Decimal:
    """
    Convert boundary input to a quantized Decimal.

    Accepts Decimal, int, or a numeric string.  Floats are rejected: a float
    has already lost the exact cent value by the time it arrives here.

    Raises:
        ValidationError: On float, bool, non-numeric or non-finite input, and
            on more decimal places than the currency has.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise ValidationError(field, "must be Decimal, int or numeric string, not float", value)
    if isinstance(value, Decimal):
        dec = value
    elif isinstance(value, (int, str)):
        try:
            dec = Decimal(value.strip() if isinstance(value, str) else value)
        except InvalidOperation:
            raise ValidationError(field, "is not a number", value) from None
    else:
        raise ValidationError(field, f"unsupported type {type(value).__name__}", value)

    if not dec.is_finite():
        raise ValidationError(field, "must be finite", value)
    quantized = round_money(dec, decimal_places)
    if quantized != dec:
        raise ValidationError(
            field, f"has more than {decimal_places} decimal places", value,
        )
    return quantized


def format_money(value: Decimal, decimal_places: int = 2) -> str:
    """Render an amount with a fixed number of decimals, e.g. ``200.00``."""
    return f"{round_money(value, decimal_places):.{decimal_places}f}"
