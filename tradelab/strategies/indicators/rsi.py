# tradelab/strategies/indicators/rsi.py

from __future__ import annotations

from collections.abc import Sequence
from typing import Optional, Tuple

NEUTRAL_RSI = 50.0


def _bootstrap_averages(values: Sequence[float], period: int) -> Tuple[float, float]:
    """
    Initial average gain / loss from the first `period` differences.

    values : sequence of floats, oldest -> newest
    """
    gains = 0.0
    losses = 0.0

    for i in range(1, period + 1):
        delta = values[i] - values[i - 1]
        if delta > 0:
            gains += delta
        else:
            losses -= delta

    return gains / period, losses / period


def wilder_averages(
    values: Sequence[float],
    period: int = 14,
) -> Optional[Tuple[float, float]]:
    """
    Wilder-smoothed (avg_gain, avg_loss) over the whole series.

    Bootstraps from the first `period` deltas, then applies
        avg = (prev_avg * (period - 1) + current) / period
    for every later delta. Returns None when fewer than period + 1
    values are available.
    """
    if period <= 0:
        raise ValueError(f"RSI period must be positive, got {period}")

    if len(values) < period + 1:
        return None

    avg_gain, avg_loss = _bootstrap_averages(values, period)

    for i in range(period + 1, len(values)):
        delta = values[i] - values[i - 1]
        gain = delta if delta > 0 else 0.0
        loss = -delta if delta < 0 else 0.0

        avg_gain = (avg_gain * (period - 1) + gain) / period
        avg_loss = (avg_loss * (period - 1) + loss) / period

    return avg_gain, avg_loss


def rsi(closes: Sequence[float], period: int = 14) -> float:
    """
    Relative Strength Index in [0, 100] using Wilder's smoothing.

    Parameters
    ----------
    closes : sequence of floats
        Ordered oldest -> newest.
    period : int
        RSI period, typically 14.

    Returns
    -------
    float
        50.0 when there is not enough history (or the series never moved),
        100.0 when there were no losses at all.
    """
    averages = wilder_averages([float(c) for c in closes], period)
    if averages is None:
        return NEUTRAL_RSI

    avg_gain, avg_loss = averages

    if avg_loss == 0:
        # Flat series: nothing to be overbought about
        if avg_gain == 0:
            return NEUTRAL_RSI
        return 100.0

    rs = avg_gain / avg_loss
    return float(100 - (100 / (1 + rs)))
