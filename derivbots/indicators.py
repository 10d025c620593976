"""Price indicators over most-recent-first windows.

``prices[0]`` is the latest quote. Every function returns ``None`` (or 0 for
the counting helpers) when the window is too short.
"""
from typing import Optional, Sequence

import numpy as np


def sma(prices: Sequence[float], period: int) -> Optional[float]:
    if period <= 0 or len(prices) < period:
        return None
    return float(np.mean(np.asarray(prices[:period], dtype=float)))


def rsi(prices: Sequence[float], period: int = 5) -> Optional[float]:
    if len(prices) < period + 1:
        return None
    window = np.asarray(prices[:period + 1], dtype=float)
    # newer minus older for each step
    diffs = window[:-1] - window[1:]
    gains = diffs[diffs >= 0].sum()
    losses = -diffs[diffs < 0].sum()
    avg_gain = gains / period
    avg_loss = losses / period
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return float(100 - (100 / (1 + rs)))


def momentum(prices: Sequence[float], period: int = 5) -> float:
    """Percent change between the latest price and the one ``period - 1`` ticks back."""
    if len(prices) < period or prices[period - 1] == 0:
        return 0.0
    return float((prices[0] - prices[period - 1]) / prices[period - 1] * 100)


def volatility(prices: Sequence[float]) -> float:
    if len(prices) == 0:
        return 0.0
    return float(np.std(np.asarray(prices, dtype=float)))


def trend(prices: Sequence[float], length: int = 3) -> int:
    """Up-steps minus down-steps across the latest ``length`` prices."""
    if len(prices) < length:
        return 0
    recent = np.asarray(prices[:length], dtype=float)
    steps = np.sign(recent[:-1] - recent[1:])
    return int(steps.sum())
