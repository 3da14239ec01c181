# tradelab/backtesting/config.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Optional

from tradelab.config import DEFAULT_PAIRS, GRANULARITIES
from tradelab.core.errors import InvalidParameterError
from tradelab.strategies.params import DEFAULT_STRATEGY_PARAMS, StrategyParams

RUN_RUNNING = "running"
RUN_COMPLETED = "completed"
RUN_FAILED = "failed"


@dataclass
class BacktestConfig:
    """
    Configuration for a single backtest run.
    """

    # Market data
    pairs: tuple[str, ...] = DEFAULT_PAIRS
    days: int = 30
    granularity: str = "FOUR_HOUR"

    # Portfolio
    initial_capital_eur: float = 1000.0

    # Strategy
    strategy_params: StrategyParams = DEFAULT_STRATEGY_PARAMS

    # Execution assumptions
    min_trade_size_eur: float = 5.0
    max_drawdown_percent: float = 0.10   # simulator kill-switch
    candle_lookback: int = 24            # candles visible per pair per tick

    # Window end; None means the run start time
    end_time: Optional[datetime] = None

    def validate(self) -> "BacktestConfig":
        if not self.pairs:
            raise InvalidParameterError("pairs must not be empty", "pairs")
        if self.days <= 0:
            raise InvalidParameterError(f"days must be positive, got {self.days}", "days")
        if self.granularity not in GRANULARITIES:
            raise InvalidParameterError(
                f"granularity must be one of {GRANULARITIES}, got {self.granularity}",
                "granularity",
            )
        if self.initial_capital_eur <= 0:
            raise InvalidParameterError(
                f"initial_capital_eur must be positive, got {self.initial_capital_eur}",
                "initial_capital_eur",
            )
        if self.min_trade_size_eur < 0:
            raise InvalidParameterError(
                f"min_trade_size_eur must be >= 0, got {self.min_trade_size_eur}",
                "min_trade_size_eur",
            )
        if not 0 < self.max_drawdown_percent <= 1:
            raise InvalidParameterError(
                f"max_drawdown_percent must be within (0, 1], got {self.max_drawdown_percent}",
                "max_drawdown_percent",
            )
        self.strategy_params.validate()
        return self


# -------------------------------------------------------------
# Run artefacts
# -------------------------------------------------------------

@dataclass(frozen=True)
class SimulatedTrade:
    timestamp: int          # epoch seconds of the tick
    pair: str
    side: str               # BUY | SELL
    amount_eur: float
    price: float            # post-slippage
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "pair": self.pair,
            "side": self.side,
            "amountEur": self.amount_eur,
            "price": self.price,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SimulatedTrade":
        return cls(
            timestamp=int(data["timestamp"]),
            pair=data["pair"],
            side=data["side"],
            amount_eur=float(data["amountEur"]),
            price=float(data["price"]),
            reason=data.get("reason", ""),
        )


@dataclass(frozen=True)
class PortfolioSnapshot:
    timestamp: int
    balances: dict[str, float]
    total_value_eur: float
    weights: dict[str, float]

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "balances": dict(self.balances),
            "totalValueEur": self.total_value_eur,
            "weights": dict(self.weights),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PortfolioSnapshot":
        return cls(
            timestamp=int(data["timestamp"]),
            balances={k: float(v) for k, v in data["balances"].items()},
            total_value_eur=float(data["totalValueEur"]),
            weights={k: float(v) for k, v in data.get("weights", {}).items()},
        )


@dataclass(frozen=True)
class EvaluationMetrics:
    total_return: float = 0.0
    sharpe_ratio: float = 0.0
    max_drawdown: float = 0.0
    win_rate: float = 0.0
    total_trades: int = 0
    combined_score: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalReturn": self.total_return,
            "sharpeRatio": self.sharpe_ratio,
            "maxDrawdown": self.max_drawdown,
            "winRate": self.win_rate,
            "totalTrades": self.total_trades,
            "combinedScore": self.combined_score,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EvaluationMetrics":
        return cls(
            total_return=float(data.get("totalReturn", 0.0)),
            sharpe_ratio=float(data.get("sharpeRatio", 0.0)),
            max_drawdown=float(data.get("maxDrawdown", 0.0)),
            win_rate=float(data.get("winRate", 0.0)),
            total_trades=int(data.get("totalTrades", 0)),
            combined_score=float(data.get("combinedScore", 0.0)),
        )


@dataclass
class BacktestResult:
    """
    Outcome of one completed backtest.

    The run row persisted by the run store only keeps metrics and counts;
    `to_dict()` is the full representation (trades + equity curve).
    """

    run_id: str
    started_at: datetime
    completed_at: datetime
    strategy_params: StrategyParams
    trades: list[SimulatedTrade] = field(default_factory=list)
    snapshots: list[PortfolioSnapshot] = field(default_factory=list)
    metrics: EvaluationMetrics = field(default_factory=EvaluationMetrics)

    def to_dict(self) -> dict[str, Any]:
        return {
            "runId": self.run_id,
            "startedAt": self.started_at.isoformat(),
            "completedAt": self.completed_at.isoformat(),
            "strategyParams": self.strategy_params.to_dict(),
            "trades": [t.to_dict() for t in self.trades],
            "snapshots": [s.to_dict() for s in self.snapshots],
            "metrics": self.metrics.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BacktestResult":
        return cls(
            run_id=data["runId"],
            started_at=datetime.fromisoformat(data["startedAt"]),
            completed_at=datetime.fromisoformat(data["completedAt"]),
            strategy_params=StrategyParams.from_dict(data["strategyParams"]),
            trades=[SimulatedTrade.from_dict(t) for t in data.get("trades", [])],
            snapshots=[PortfolioSnapshot.from_dict(s) for s in data.get("snapshots", [])],
            metrics=EvaluationMetrics.from_dict(data.get("metrics", {})),
        )

    def summary(self) -> dict[str, Any]:
        """What the run store keeps for a completed run."""
        return {
            "metrics": self.metrics.to_dict(),
            "tradeCount": len(self.trades),
            "snapshotCount": len(self.snapshots),
        }


@dataclass
class BacktestRunRecord:
    """One row of backtest history (running, completed or failed)."""

    run_id: str
    started_at: datetime
    strategy_params: StrategyParams
    status: str = RUN_RUNNING
    completed_at: datetime | None = None
    results: dict[str, Any] | None = None

    @property
    def combined_score(self) -> float:
        if not self.results:
            return 0.0
        return float(self.results.get("metrics", {}).get("combinedScore", 0.0))

    @property
    def error(self) -> str | None:
        if self.status != RUN_FAILED or not self.results:
            return None
        return self.results.get("error")
