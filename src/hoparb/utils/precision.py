"""Fixed-point helpers built on Decimal.

Amounts never pass through float on their way to a threshold comparison.
Floats appear only at display boundaries (API payloads, log lines).
"""

from decimal import ROUND_DOWN, ROUND_FLOOR, Decimal

HUNDRED = Decimal("100")


def quantize_amount(amount: Decimal, decimals: int) -> Decimal:
    """Round down to an asset's on-chain precision."""
    return amount.quantize(Decimal(1).scaleb(-decimals), rounding=ROUND_DOWN)


def floor_units(amount: Decimal) -> Decimal:
    """Drop the fractional part."""
    return amount.to_integral_value(rounding=ROUND_FLOOR)


def percentage_change(start: Decimal, end: Decimal) -> Decimal:
    """Return (end - start) / start as a percentage."""
    if start == 0:
        raise ValueError("Cannot compute percentage change from zero")
    return (end - start) / start * HUNDRED


def shave(amount: Decimal, fraction: Decimal) -> Decimal:
    """Reduce amount by fraction (0.02 means 2%)."""
    return amount * (Decimal(1) - fraction)


def clamp(value: Decimal, low: Decimal, high: Decimal) -> Decimal:
    return max(low, min(high, value))
