# tradelab/strategies/weights.py

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from typing import Dict, Optional

from tradelab.data.candle_normalizer import Candle
from tradelab.strategies.indicators.momentum import momentum
from tradelab.strategies.indicators.rsi import rsi

MAX_MOMENTUM_TILT = 0.15
OVERBOUGHT_FACTOR = 0.8
OVERSOLD_FACTOR = 1.2


def normalize_weights(
    weights: Mapping[str, float],
    pairs: Sequence[str],
) -> Dict[str, float]:
    """
    Scale weights for `pairs` to sum to 1.

    Pairs missing from `weights` count as 0; a zero total falls back to
    equal weighting.
    """
    if not pairs:
        return {}

    total = sum(weights.get(p, 0.0) for p in pairs)
    if total <= 0:
        equal = 1 / len(pairs)
        return {p: equal for p in pairs}
    return {p: weights.get(p, 0.0) / total for p in pairs}


def calculate_target_weights(
    pairs: Sequence[str],
    prices: Mapping[str, float],
    candles: Mapping[str, Sequence[Candle]],
    base_weights: Mapping[str, float],
    advisory_weights: Optional[Mapping[str, float]] = None,
    rsi_oversold: float = 30.0,
    rsi_overbought: float = 70.0,
) -> Dict[str, float]:
    """
    Target portfolio weights for one tick.

    Shared by the backtest simulator and the paper trader, so both always
    run the same arithmetic. `candles` per pair are oldest -> newest.
    `prices` is accepted for interface parity with the live tick.
    """
    # Advisory weights (AI) fully override indicator weighting.
    # Negative and non-finite advisory values count as 0.
    if advisory_weights:
        advisory = {
            pair: max(0.0, float(w))
            for pair, w in advisory_weights.items()
            if math.isfinite(w)
        }
        return normalize_weights(advisory, pairs)

    raw: Dict[str, float] = {}

    for pair in pairs:
        weight = base_weights.get(pair, 1 / len(pairs))
        pair_candles = candles.get(pair, ())

        tilt = momentum(pair_candles) / 100
        weight += max(-MAX_MOMENTUM_TILT, min(MAX_MOMENTUM_TILT, tilt))

        value = rsi([c.close for c in pair_candles])
        if value > rsi_overbought:
            weight *= OVERBOUGHT_FACTOR
        elif value < rsi_oversold:
            weight *= OVERSOLD_FACTOR

        raw[pair] = max(0.0, weight)

    return normalize_weights(raw, pairs)
