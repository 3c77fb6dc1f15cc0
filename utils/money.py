"""
Integer minor-unit money helpers.

Amounts are cents (int). Rates are basis points (int, 10000 = 100%).
Floats never touch money: the only fractional step is applying a rate,
and that is rounded half-up to the nearest cent.
"""

from decimal import Decimal

BPS_SCALE = 10000
_CENT = Decimal("0.01")


def apply_rate(amount_cents: int, rate_bps: int) -> int:
    """
    Return `amount_cents * rate_bps / 10000`, rounded half-up to a cent.

    Raises ValueError on negative inputs.
    """
    if amount_cents < 0 or rate_bps < 0:
        raise ValueError("amount and rate must be non-negative")
    return (amount_cents * rate_bps + BPS_SCALE // 2) // BPS_SCALE


def format_cents(amount_cents: int) -> str:
    """Render cents as a plain decimal string: 123456 -> '1234.56'."""
    return str((Decimal(amount_cents) / 100).quantize(_CENT))
