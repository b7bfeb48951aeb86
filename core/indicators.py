"""
cascade-trader Core: Indicator Maths

Small numeric helpers shared by the history-based evaluators.
"""

import statistics
from typing import Optional, Sequence


def sma(prices: Sequence[float]) -> Optional[float]:
    """Arithmetic mean, or None for an empty window."""
    if not prices:
        return None
    return statistics.mean(prices)


def deviation_from(price: float, reference: float) -> Optional[float]:
    """Relative deviation (price - reference) / reference; None for a zero reference."""
    if not reference:
        return None
    return (price - reference) / reference


def coefficient_of_variation(prices: Sequence[float]) -> Optional[float]:
    """
    Population standard deviation divided by the mean.

    Returns None when the window is empty or the mean is zero.
    """
    if not prices:
        return None
    mean = statistics.mean(prices)
    if mean == 0:
        return None
    return statistics.pstdev(prices) / mean


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))
