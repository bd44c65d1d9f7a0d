"""Pure metric math helpers used by stats and commission code."""
from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")


def safe_div(numerator: float | int, denominator: float | int) -> float:
    if denominator in (0, 0.0):
        return 0.0
    return float(numerator) / float(denominator)


def conversion_rate_pct(clicks: int, conversions: int) -> float:
    """Conversions per click as a percentage rounded to one decimal."""
    return round(safe_div(conversions, clicks) * 100, 1)


def to_money(value: Decimal | int | float | str | None) -> Decimal:
    """Quantize to cents with half-up rounding; None counts as zero."""
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


__all__ = ["safe_div", "conversion_rate_pct", "to_money", "CENT"]
