"""
indicators.py - Numba-accelerated kernels for the tick signal engine.
All functions take a contiguous float64 price array, oldest first.
"""

import numpy as np
from numba import njit


@njit(cache=True)
def calc_window_mean(prices: np.ndarray, start: int, end: int) -> float:
    """Arithmetic mean of prices[start:end] (0.0 when empty)."""
    if end <= start:
        return 0.0
    total = 0.0
    for i in range(start, end):
        total += prices[i]
    return total / (end - start)


@njit(cache=True)
def calc_return_volatility(prices: np.ndarray) -> float:
    """Population std-dev of tick-to-tick relative returns."""
    n = len(prices)
    if n < 2:
        return 0.0
    m = n - 1
    mean = 0.0
    for i in range(1, n):
        mean += (prices[i] - prices[i - 1]) / prices[i - 1]
    mean /= m
    sq_sum = 0.0
    for i in range(1, n):
        diff = (prices[i] - prices[i - 1]) / prices[i - 1] - mean
        sq_sum += diff * diff
    return (sq_sum / m) ** 0.5


@njit(cache=True)
def calc_trend_edge(prices: np.ndarray) -> float:
    """
    Signed relative drift between the early and late thirds of the window:
    (mean(late) - mean(early)) / mean(early).
    """
    n = len(prices)
    if n < 3:
        return 0.0
    early = calc_window_mean(prices, 0, n // 3)
    late = calc_window_mean(prices, (2 * n) // 3, n)
    if early == 0.0:
        return 0.0
    return (late - early) / early


@njit(cache=True)
def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))
