"""
Rollup ratio helpers.

Divisions are done in Decimal with ROUND_HALF_UP so reruns over the same
events produce identical floats; a zero denominator yields 0.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Union

Number = Union[int, Decimal]


def ratio(numerator: Number, denominator: Number, places: int = 2, scale: int = 1) -> float:
    """numerator / denominator * scale rounded half-up, 0 when the denominator is 0"""
    if not denominator:
        return 0.0
    exponent = Decimal(1).scaleb(-places)
    value = Decimal(numerator) * scale / Decimal(denominator)
    return float(value.quantize(exponent, rounding=ROUND_HALF_UP))


def average(total: Number, samples: int, places: int = 2) -> float:
    return ratio(total, samples, places)


def percentage(part: Number, whole: Number, places: int = 2) -> float:
    return ratio(part, whole, places, scale=100)
