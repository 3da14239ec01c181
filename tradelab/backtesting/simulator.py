# tradelab/backtesting/simulator.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence

from tradelab.backtesting.config import PortfolioSnapshot, SimulatedTrade
from tradelab.core.logger import get_logger
from tradelab.data.candle_normalizer import Candle
from tradelab.execution.rebalance import compute_rebalance_trades
from tradelab.execution.simulated import SimulatedExecutionEngine
from tradelab.risk.config import RiskConfig
from tradelab.risk.manager import RiskManager
from tradelab.risk.result import VETO_DRAWDOWN
from tradelab.strategies.params import StrategyParams
from tradelab.strategies.portfolio_metrics import (
    compute_current_weights,
    compute_portfolio_value,
    initial_balances,
)
from tradelab.strategies.weights import calculate_target_weights

logger = get_logger(__name__)

STATE_ACTIVE = "active"
STATE_COOLDOWN = "cooldown"
STATE_DRAWDOWN_PAUSED = "drawdown_paused"

TRADE_REASON = "backtest_rebalance"


@dataclass(frozen=True)
class SimulatorConfig:
    pairs: tuple[str, ...]
    strategy_params: StrategyParams
    min_trade_size_eur: float = 5.0
    max_drawdown_percent: float = 0.10


class TradeSimulator:
    """
    Deterministic per-run trading state machine.

    States:
      active          -> trading allowed this tick
      cooldown        -> last trade too recent; snapshot only, re-checked next tick
      drawdown_paused -> drawdown limit hit; snapshot only for the rest of the run

    The `timestamp` passed to process_candle() is the only clock. The
    simulator never reads wall time and holds no randomness, so identical
    input sequences produce identical trades and snapshots.
    """

    def __init__(
        self,
        initial_capital_eur: float,
        config: SimulatorConfig,
        execution: Optional[SimulatedExecutionEngine] = None,
    ) -> None:
        self.config = config
        self.execution = execution or SimulatedExecutionEngine()
        self.risk = RiskManager(
            RiskConfig(
                max_drawdown_pct=config.max_drawdown_percent,
                max_trade_pct=config.strategy_params.max_trade_percent,
                cooldown_minutes=config.strategy_params.cooldown_minutes,
                min_trade_size_eur=config.min_trade_size_eur,
            )
        )

        self._balances: Dict[str, float] = initial_balances(config.pairs, initial_capital_eur)
        self._last_trade_time: Optional[int] = None
        self._peak_value = float(initial_capital_eur)
        self._state = STATE_ACTIVE
        self._paused_drawdown: Optional[float] = None
        self._trades: List[SimulatedTrade] = []
        self._snapshots: List[PortfolioSnapshot] = []

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------
    def process_candle(
        self,
        timestamp: int,
        prices: Mapping[str, float],
        recent_candles: Mapping[str, Sequence[Candle]],
    ) -> None:
        if self._snapshots and timestamp <= self._snapshots[-1].timestamp:
            raise ValueError(
                f"timestamps must strictly increase ({timestamp} after "
                f"{self._snapshots[-1].timestamp})"
            )

        params = self.config.strategy_params
        total_value = compute_portfolio_value(self._balances, prices)
        self._peak_value = max(self._peak_value, total_value)

        if self._state == STATE_DRAWDOWN_PAUSED:
            self._record_snapshot(timestamp, prices)
            return

        gate = self.risk.evaluate_tick(
            now=timestamp,
            current_value=total_value,
            peak_value=self._peak_value,
            last_trade_time=self._last_trade_time,
        )
        if gate.is_veto():
            if gate.veto_reason == VETO_DRAWDOWN:
                self._state = STATE_DRAWDOWN_PAUSED
                self._paused_drawdown = gate.drawdown
                logger.info(
                    "[SIM] Drawdown %.2f%% >= %.2f%% at %s, trading paused for the rest of the run",
                    gate.drawdown * 100,
                    self.config.max_drawdown_percent * 100,
                    timestamp,
                )
            else:
                self._state = STATE_COOLDOWN
            self._record_snapshot(timestamp, prices)
            return

        self._state = STATE_ACTIVE

        target_weights = calculate_target_weights(
            self.config.pairs,
            prices,
            recent_candles,
            params.base_weights,
            rsi_oversold=params.rsi_oversold_threshold,
            rsi_overbought=params.rsi_overbought_threshold,
        )
        current_weights = compute_current_weights(self._balances, prices)
        orders = compute_rebalance_trades(
            current_weights,
            target_weights,
            total_value,
            prices,
            self.config.min_trade_size_eur,
            params.max_trade_percent,
        )

        for order in orders:
            fill = self.execution.fill(self._balances, order, prices[order.pair])
            if fill is None:
                continue
            self._last_trade_time = timestamp
            self._trades.append(
                SimulatedTrade(
                    timestamp=timestamp,
                    pair=fill.pair,
                    side=fill.side,
                    amount_eur=fill.amount_eur,
                    price=fill.price,
                    reason=TRADE_REASON,
                )
            )

        self._record_snapshot(timestamp, prices)

    def _record_snapshot(self, timestamp: int, prices: Mapping[str, float]) -> None:
        self._snapshots.append(
            PortfolioSnapshot(
                timestamp=timestamp,
                balances=dict(self._balances),
                total_value_eur=compute_portfolio_value(self._balances, prices),
                weights=compute_current_weights(self._balances, prices),
            )
        )

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    @property
    def trades(self) -> List[SimulatedTrade]:
        return list(self._trades)

    @property
    def snapshots(self) -> List[PortfolioSnapshot]:
        return list(self._snapshots)

    @property
    def balances(self) -> Dict[str, float]:
        return dict(self._balances)

    @property
    def state(self) -> str:
        return self._state

    @property
    def peak_value(self) -> float:
        return self._peak_value

    @property
    def paused_drawdown(self) -> Optional[float]:
        """Drawdown recorded when the run paused, None while trading."""
        return self._paused_drawdown

    def final_value(self, prices: Mapping[str, float]) -> float:
        return compute_portfolio_value(self._balances, prices)
