# tradelab/strategies/params.py

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Mapping

from tradelab.config import DEFAULT_BASE_WEIGHTS
from tradelab.core.errors import InvalidParameterError


@dataclass(frozen=True)
class StrategyParams:
    """
    Tunable parameters of the rebalancing strategy.

    Immutable once a run starts; optimizers derive new instances with
    `with_changes()` instead of mutating.
    """

    max_trade_percent: float = 0.2         # fraction of portfolio per leg
    stop_loss_percent: float = 0.05        # 0-1
    cooldown_minutes: int = 30
    rsi_oversold_threshold: float = 30.0   # 0-100
    rsi_overbought_threshold: float = 70.0  # 0-100
    base_weights: Dict[str, float] = field(
        default_factory=lambda: dict(DEFAULT_BASE_WEIGHTS)
    )

    # ------------------------------------------------------------------
    def validate(self) -> "StrategyParams":
        """Raise InvalidParameterError on out-of-range values; return self."""
        numeric = {
            "max_trade_percent": self.max_trade_percent,
            "stop_loss_percent": self.stop_loss_percent,
            "cooldown_minutes": self.cooldown_minutes,
            "rsi_oversold_threshold": self.rsi_oversold_threshold,
            "rsi_overbought_threshold": self.rsi_overbought_threshold,
        }
        for name, value in numeric.items():
            if not math.isfinite(value):
                raise InvalidParameterError(f"{name} must be finite, got {value}", name)

        if not 0 <= self.max_trade_percent <= 1:
            raise InvalidParameterError(
                f"max_trade_percent must be within [0, 1], got {self.max_trade_percent}",
                "max_trade_percent",
            )
        if not 0 <= self.stop_loss_percent <= 1:
            raise InvalidParameterError(
                f"stop_loss_percent must be within [0, 1], got {self.stop_loss_percent}",
                "stop_loss_percent",
            )
        if self.cooldown_minutes < 0:
            raise InvalidParameterError(
                f"cooldown_minutes must be >= 0, got {self.cooldown_minutes}",
                "cooldown_minutes",
            )
        for name in ("rsi_oversold_threshold", "rsi_overbought_threshold"):
            value = numeric[name]
            if not 0 <= value <= 100:
                raise InvalidParameterError(
                    f"{name} must be within [0, 100], got {value}", name
                )
        if self.rsi_oversold_threshold >= self.rsi_overbought_threshold:
            raise InvalidParameterError(
                "rsi_oversold_threshold must be below rsi_overbought_threshold "
                f"({self.rsi_oversold_threshold} >= {self.rsi_overbought_threshold})",
                "rsi_oversold_threshold",
            )

        if not self.base_weights:
            raise InvalidParameterError("base_weights must not be empty", "base_weights")
        for pair, weight in self.base_weights.items():
            if not math.isfinite(weight) or weight < 0:
                raise InvalidParameterError(
                    f"base weight for {pair} must be a non-negative number, got {weight}",
                    "base_weights",
                )
        if sum(self.base_weights.values()) <= 0:
            raise InvalidParameterError(
                "base_weights must sum to a positive total", "base_weights"
            )
        return self

    def with_changes(self, **changes: Any) -> "StrategyParams":
        return replace(self, **changes)

    # ------------------------------------------------------------------
    # Persisted (JSON) representation, camelCase as stored by the dashboard
    # ------------------------------------------------------------------
    def to_dict(self) -> Dict[str, Any]:
        return {
            "maxTradePercent": self.max_trade_percent,
            "stopLossPercent": self.stop_loss_percent,
            "cooldownMinutes": self.cooldown_minutes,
            "rsiOversoldThreshold": self.rsi_oversold_threshold,
            "rsiOverboughtThreshold": self.rsi_overbought_threshold,
            "baseWeights": dict(self.base_weights),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StrategyParams":
        defaults = cls()
        try:
            return cls(
                max_trade_percent=float(data.get("maxTradePercent", defaults.max_trade_percent)),
                stop_loss_percent=float(data.get("stopLossPercent", defaults.stop_loss_percent)),
                cooldown_minutes=int(data.get("cooldownMinutes", defaults.cooldown_minutes)),
                rsi_oversold_threshold=float(
                    data.get("rsiOversoldThreshold", defaults.rsi_oversold_threshold)
                ),
                rsi_overbought_threshold=float(
                    data.get("rsiOverboughtThreshold", defaults.rsi_overbought_threshold)
                ),
                base_weights={
                    str(k): float(v)
                    for k, v in data.get("baseWeights", defaults.base_weights).items()
                },
            )
        except (TypeError, ValueError, AttributeError) as exc:
            raise InvalidParameterError(f"Malformed strategy params: {exc}") from exc


DEFAULT_STRATEGY_PARAMS = StrategyParams()
