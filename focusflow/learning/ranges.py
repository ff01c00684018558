"""
Tool: Range Calculator
Purpose: Turn a point estimate and a confidence level into a display range

A bare number ("43 minutes") reads as a promise. A range ("28-58 min")
reads as what it is: an estimate. Width shrinks as confidence grows.

    very_low  +/-35%
    low       +/-25%
    medium    +/-20%
    good      +/-15%
    high      +/-10%
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Tuple

from . import CONFIDENCE_LEVELS

RANGE_MULTIPLIERS = {
    "very_low": 0.35,
    "low": 0.25,
    "medium": 0.20,
    "good": 0.15,
    "high": 0.10,
}


def _round_half_up(value: float) -> int:
    # round() is banker's rounding; 57.5 minutes should show as 58
    return int(Decimal(repr(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def calculate_range(estimate_minutes: float, confidence: str) -> Tuple[int, int]:
    """
    Compute (low, high) minutes around an estimate.

    Args:
        estimate_minutes: Point estimate in minutes
        confidence: One of CONFIDENCE_LEVELS

    Returns:
        (low, high), low never below 1
    """
    if confidence not in RANGE_MULTIPLIERS:
        raise ValueError(f"Invalid confidence level. Must be one of: {CONFIDENCE_LEVELS}")

    multiplier = RANGE_MULTIPLIERS[confidence]
    low = max(1, _round_half_up(estimate_minutes * (1 - multiplier)))
    high = _round_half_up(estimate_minutes * (1 + multiplier))
    return low, max(low, high)


def format_range(low: int, high: int) -> str:
    """Render a range for display. A degenerate range shows once."""
    if low == high:
        return f"{low} min"
    return f"{low}–{high} min"
