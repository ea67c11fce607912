"""Small numeric helpers shared by the analyses."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

# Percentages are reported with 2 decimal places (e.g., 33.33%)
PERCENTAGE_PRECISION = Decimal("0.01")

# Averages and ratios keep 4 decimal places
RATIO_PRECISION = Decimal("0.0001")


def quantize(value: float, precision: Decimal = RATIO_PRECISION) -> float:
    return float(Decimal(str(value)).quantize(precision, rounding=ROUND_HALF_UP))


def percentage(numerator: float, denominator: float) -> float:
    """``numerator / denominator * 100``, 0.0 when the denominator is 0."""
    if not denominator:
        return 0.0
    return quantize(numerator / denominator * 100, PERCENTAGE_PRECISION)


def ratio(numerator: float, denominator: float) -> float:
    if not denominator:
        return 0.0
    return quantize(numerator / denominator)


def mean_present(values: Iterable[float | None]) -> float:
    """Mean over the values that are not ``None`` (0.0 when none are)."""
    present = [value for value in values if value is not None]
    if not present:
        return 0.0
    return quantize(sum(present) / len(present))
