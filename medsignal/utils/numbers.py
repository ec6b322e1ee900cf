"""Numeric helpers shared by the scoring modules."""

from __future__ import annotations

import math


def round_half_up(value: float, digits: int = 0) -> float:
    """Round .5 away from zero for positives, matching how scores are reported."""
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def round_score(value: float) -> int:
    return int(round_half_up(value))


def clamp(value: float, low: float = 0, high: float = 100) -> float:
    return max(low, min(high, value))
