# tradelab/optimization/grid_search.py
"""
Parameter grids for strategy optimization.

Three generators:
  full          every value of every range x every weight variant
  reduced       coarser ranges, two weight variants (default for timed runs)
  neighborhood  {-1, 0, +1} steps around a known-good StrategyParams
"""

from __future__ import annotations

import itertools
import math
import random
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, TypeVar

from tradelab.strategies.params import StrategyParams

T = TypeVar("T")

PARAM_FIELDS = (
    "max_trade_percent",
    "stop_loss_percent",
    "cooldown_minutes",
    "rsi_oversold_threshold",
    "rsi_overbought_threshold",
)


@dataclass(frozen=True)
class ParameterRange:
    min: float
    max: float
    step: float

    def count(self) -> int:
        if self.step <= 0 or self.max < self.min:
            return 1
        return int(math.floor((self.max - self.min) / self.step + 1e-9)) + 1

    def values(self) -> List[float]:
        # index-based to avoid accumulating float error
        return [round(self.min + i * self.step, 3) for i in range(self.count())]


DEFAULT_PARAMETER_RANGES: Dict[str, ParameterRange] = {
    "max_trade_percent": ParameterRange(0.10, 0.30, 0.05),
    "stop_loss_percent": ParameterRange(0.03, 0.10, 0.01),
    "cooldown_minutes": ParameterRange(15, 60, 15),
    "rsi_oversold_threshold": ParameterRange(25, 35, 5),
    "rsi_overbought_threshold": ParameterRange(65, 75, 5),
}

REDUCED_PARAMETER_RANGES: Dict[str, ParameterRange] = {
    "max_trade_percent": ParameterRange(0.15, 0.25, 0.10),
    "stop_loss_percent": ParameterRange(0.04, 0.08, 0.02),
    "cooldown_minutes": ParameterRange(20, 40, 20),
    "rsi_oversold_threshold": ParameterRange(25, 35, 10),
    "rsi_overbought_threshold": ParameterRange(65, 75, 10),
}

EQUAL_WEIGHTS = {"BTC-EUR": 0.333, "ETH-EUR": 0.333, "SOL-EUR": 0.334}
BTC_HEAVY = {"BTC-EUR": 0.5, "ETH-EUR": 0.3, "SOL-EUR": 0.2}
ETH_HEAVY = {"BTC-EUR": 0.3, "ETH-EUR": 0.5, "SOL-EUR": 0.2}
BALANCED_MAJORS = {"BTC-EUR": 0.4, "ETH-EUR": 0.4, "SOL-EUR": 0.2}

DEFAULT_WEIGHT_VARIATIONS = [EQUAL_WEIGHTS, BTC_HEAVY, ETH_HEAVY, BALANCED_MAJORS]
REDUCED_WEIGHT_VARIATIONS = [EQUAL_WEIGHTS, BTC_HEAVY]

# neighborhood: (unit step, lower bound, upper bound) per field
NEIGHBORHOOD_STEPS = {
    "max_trade_percent": (0.05, 0.05, 0.40),
    "stop_loss_percent": (0.01, 0.02, 0.15),
    "cooldown_minutes": (10, 10, 120),
    "rsi_oversold_threshold": (5, 20, 40),
    "rsi_overbought_threshold": (5, 60, 80),
}


# -------------------------------------------------------------------
# Generators
# -------------------------------------------------------------------
def generate_parameter_grid(
    ranges: Mapping[str, ParameterRange] = DEFAULT_PARAMETER_RANGES,
    weight_variations: Sequence[Mapping[str, float]] = DEFAULT_WEIGHT_VARIATIONS,
) -> List[StrategyParams]:
    axes = [ranges[name].values() for name in PARAM_FIELDS]
    grid: List[StrategyParams] = []

    for mtp, sl, cd, oversold, overbought in itertools.product(*axes):
        for weights in weight_variations:
            grid.append(
                StrategyParams(
                    max_trade_percent=mtp,
                    stop_loss_percent=sl,
                    cooldown_minutes=int(cd),
                    rsi_oversold_threshold=oversold,
                    rsi_overbought_threshold=overbought,
                    base_weights=dict(weights),
                )
            )
    return grid


def generate_reduced_grid() -> List[StrategyParams]:
    return generate_parameter_grid(REDUCED_PARAMETER_RANGES, REDUCED_WEIGHT_VARIATIONS)


def _perturb(name: str, base: float, direction: int, multiplier: float) -> float:
    step, lower, upper = NEIGHBORHOOD_STEPS[name]
    return max(lower, min(upper, base + direction * step * multiplier))


def generate_neighborhood_grid(
    base: StrategyParams,
    step_multiplier: float = 0.5,
) -> List[StrategyParams]:
    """
    Every {-1, 0, +1} combination across the five numeric fields.
    Base weights are held; duplicates (after clamping) are dropped,
    first occurrence kept.
    """
    grid: List[StrategyParams] = []
    seen = set()

    for directions in itertools.product((-1, 0, 1), repeat=len(PARAM_FIELDS)):
        values = {
            name: _perturb(name, getattr(base, name), d, step_multiplier)
            for name, d in zip(PARAM_FIELDS, directions)
        }
        params = base.with_changes(
            max_trade_percent=round(values["max_trade_percent"], 6),
            stop_loss_percent=round(values["stop_loss_percent"], 6),
            cooldown_minutes=int(round(values["cooldown_minutes"])),
            rsi_oversold_threshold=round(values["rsi_oversold_threshold"], 6),
            rsi_overbought_threshold=round(values["rsi_overbought_threshold"], 6),
            base_weights=dict(base.base_weights),
        )

        key = (
            tuple(getattr(params, name) for name in PARAM_FIELDS),
            tuple(sorted(params.base_weights.items())),
        )
        if key in seen:
            continue
        seen.add(key)
        grid.append(params)

    return grid


# -------------------------------------------------------------------
# Sampling / sizing
# -------------------------------------------------------------------
def sample_combinations(
    items: Sequence[T],
    max_count: Optional[int],
    rng: Optional[random.Random] = None,
) -> List[T]:
    """
    Uniform sample of `max_count` items via a Fisher-Yates shuffle.
    Returns a copy of `items` unchanged when no cap applies.
    """
    if max_count is None or len(items) <= max_count:
        return list(items)

    rng = rng or random.Random()
    shuffled = list(items)
    for i in range(len(shuffled) - 1, 0, -1):
        j = rng.randint(0, i)
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled[:max_count]


def estimate_grid_size(
    ranges: Mapping[str, ParameterRange] = DEFAULT_PARAMETER_RANGES,
    weight_variations_count: int = len(DEFAULT_WEIGHT_VARIATIONS),
) -> int:
    total = 1
    for r in ranges.values():
        total *= r.count()
    return total * weight_variations_count


def describe_parameters(params: StrategyParams) -> str:
    weights = " ".join(
        f"{pair.split('-')[0]}={weight * 100:.0f}%"
        for pair, weight in params.base_weights.items()
    )
    return ", ".join(
        [
            f"Max Trade: {params.max_trade_percent * 100:.0f}%",
            f"Stop Loss: {params.stop_loss_percent * 100:.0f}%",
            f"Cooldown: {params.cooldown_minutes}min",
            f"RSI Oversold: {params.rsi_oversold_threshold:g}",
            f"RSI Overbought: {params.rsi_overbought_threshold:g}",
            f"Weights: {weights}",
        ]
    )
