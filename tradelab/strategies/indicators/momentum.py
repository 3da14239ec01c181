# tradelab/strategies/indicators/momentum.py

from __future__ import annotations

from collections.abc import Sequence

from tradelab.data.candle_normalizer import Candle

MOMENTUM_WINDOW = 6  # six 4h candles ~ one day


def momentum(candles: Sequence[Candle], window_size: int = MOMENTUM_WINDOW) -> float:
    """
    Percent change across the newest `window_size` candles.

    `candles` are ordered oldest -> newest. Compares the newest close with
    the oldest close of the trailing window. Returns 0.0 when fewer than
    two candles are available or the base close is zero.
    """
    recent = list(candles)[-window_size:]
    if len(recent) < 2:
        return 0.0

    last_close = recent[-1].close
    first_close = recent[0].close

    if first_close == 0:
        return 0.0
    return (last_close - first_close) / first_close * 100.0
