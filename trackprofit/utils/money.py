"""Decimal helpers for provider payloads and ledger arithmetic."""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

ZERO = Decimal("0")
CENT = Decimal("0.01")


def to_decimal(value, default: Decimal = ZERO) -> Decimal:
    """Coerce strings, numbers and blanks into a Decimal."""
    if value is None or value == "":
        return default
    if isinstance(value, Decimal):
        return value if value.is_finite() else default
    try:
        amount = Decimal(str(value).strip().replace(",", "."))
    except (InvalidOperation, ValueError):
        return default
    return amount if amount.is_finite() else default


def to_int(value, default: int = 0) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


def round2(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def safe_div(numerator: Decimal, denominator: Decimal) -> Decimal:
    """Zero when the denominator is not positive."""
    if denominator is None or denominator <= 0:
        return ZERO
    return numerator / denominator
