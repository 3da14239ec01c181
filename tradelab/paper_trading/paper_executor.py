from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from tradelab.config import DEFAULT_TRADING_CONFIG, GRANULARITY_SECONDS, TradingConfig
from tradelab.core.logger import get_logger
from tradelab.data.candle_normalizer import Candle, normalize_candles
from tradelab.execution.rebalance import RebalanceOrder, compute_rebalance_trades
from tradelab.execution.simulated import SimulatedExecutionEngine
from tradelab.paper_trading.records import (
    PaperPnLPoint,
    PaperPortfolio,
    PaperState,
    PaperTradeRecord,
)
from tradelab.risk.config import risk_config_from_trading_config
from tradelab.risk.manager import RiskManager
from tradelab.strategies.indicators.momentum import momentum
from tradelab.strategies.indicators.rsi import rsi
from tradelab.strategies.params import StrategyParams
from tradelab.strategies.portfolio_metrics import (
    compute_current_weights,
    compute_portfolio_value,
    initial_balances,
)
from tradelab.strategies.weights import calculate_target_weights

logger = get_logger(__name__)

INDICATOR_GRANULARITY = "FOUR_HOUR"
INDICATOR_CANDLES = 24

STATUS_OK = "ok"
STATUS_DRAWDOWN_PAUSED = "drawdown_paused"
STATUS_DRAWDOWN_TRIGGERED = "drawdown_triggered"
STATUS_COOLDOWN = "cooldown"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PaperTickResult:
    status: str
    total_value_eur: Optional[float] = None
    trades: int = 0
    indicators: Dict[str, Dict[str, float]] = field(default_factory=dict)
    target_weights: Dict[str, float] = field(default_factory=dict)


class PaperTrader:
    """
    Shadow execution of the live strategy against live prices.

    Mirrors a live tick (gates, indicators, target weights, rebalance)
    but fills through SimulatedExecutionEngine instead of the exchange.
    Every trade and PnL point is tagged with the strategy id under test;
    that history is what candidate promotion scores.

    `market` needs async get_price(pair) and get_candles(pair,
    granularity, start, end); `store` is the DB facade (or a fake with
    the same paper-trading methods).
    """

    def __init__(
        self,
        market: Any,
        store: Any,
        *,
        clock: Callable[[], datetime] = _utcnow,
        initial_capital_eur: float = 1000.0,
        execution: Optional[SimulatedExecutionEngine] = None,
    ):
        self.market = market
        self.store = store
        self.clock = clock
        self.initial_capital_eur = initial_capital_eur
        self.execution = execution or SimulatedExecutionEngine()

    # ------------------------------------------------------------------
    # Bootstrap
    # ------------------------------------------------------------------
    async def initialize(self, config: Optional[TradingConfig] = None) -> PaperPortfolio:
        """Fresh all-cash paper portfolio, config and state."""
        config = config or replace(DEFAULT_TRADING_CONFIG, enabled=True)
        portfolio = PaperPortfolio(
            balances=initial_balances(config.pairs, self.initial_capital_eur),
            total_value_eur=self.initial_capital_eur,
            peak_value_eur=self.initial_capital_eur,
            last_update=self.clock(),
        )
        await self.store.set_paper_portfolio(portfolio)
        await self.store.set_paper_config(config)
        await self.store.set_paper_state(PaperState())
        logger.info("[PAPER] Initialised paper portfolio with %.2f EUR", self.initial_capital_eur)
        return portfolio

    async def _load(self) -> tuple[PaperPortfolio, TradingConfig, PaperState]:
        portfolio = await self.store.get_paper_portfolio()
        config = await self.store.get_paper_config()
        if portfolio is None or config is None:
            portfolio = await self.initialize(config)
            config = await self.store.get_paper_config()
        state = await self.store.get_paper_state() or PaperState()
        return portfolio, config, state

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------
    async def execute_tick(
        self,
        strategy_id: Optional[str] = None,
        advisory_weights: Optional[Mapping[str, float]] = None,
    ) -> PaperTickResult:
        now = self.clock()
        portfolio, config, state = await self._load()
        risk = RiskManager(risk_config_from_trading_config(config))

        state.last_tick_time = now
        await self.store.set_paper_state(state)

        if portfolio.drawdown_paused:
            return PaperTickResult(status=STATUS_DRAWDOWN_PAUSED)

        last_trade = state.last_trade_time.timestamp() if state.last_trade_time else None
        if risk.in_cooldown(now.timestamp(), last_trade):
            return PaperTickResult(status=STATUS_COOLDOWN)

        prices, candles_map = await self._fetch_market(config.pairs, now)
        indicators = {
            pair: {
                "rsi": rsi([c.close for c in candles_map[pair]]),
                "momentum": momentum(candles_map[pair]),
            }
            for pair in config.pairs
        }

        balances = dict(portfolio.balances)
        total_value = compute_portfolio_value(balances, prices)
        peak_value = portfolio.peak_value_eur or total_value

        drawdown = risk.check_drawdown(total_value, peak_value)
        if drawdown.is_veto():
            portfolio.drawdown_paused = True
            portfolio.total_value_eur = total_value
            portfolio.last_update = now
            await self.store.set_paper_portfolio(portfolio)
            logger.warning(
                "[PAPER] Drawdown %.2f%% >= %.2f%%, paper trading paused",
                drawdown.drawdown * 100,
                config.max_drawdown_percent * 100,
            )
            return PaperTickResult(status=STATUS_DRAWDOWN_TRIGGERED, total_value_eur=total_value)

        if not config.ai_enabled:
            advisory_weights = None

        target_weights = calculate_target_weights(
            config.pairs,
            prices,
            candles_map,
            config.base_weights,
            advisory_weights=advisory_weights,
        )
        current_weights = compute_current_weights(balances, prices)
        orders = compute_rebalance_trades(
            current_weights,
            target_weights,
            total_value,
            prices,
            config.min_trade_size_eur,
            config.max_trade_percent,
        )

        reason = "paper_ai_rebalance" if advisory_weights else "paper_indicator_rebalance"
        executed: List[PaperTradeRecord] = []

        for order in orders:
            amount = risk.clamp_trade_size(order.amount_eur, total_value)
            if amount < config.min_trade_size_eur:
                continue

            fill = self.execution.fill(
                balances,
                RebalanceOrder(pair=order.pair, side=order.side, amount_eur=amount),
                prices[order.pair],
            )
            if fill is None:
                continue

            record = PaperTradeRecord(
                trade_id=str(uuid.uuid4()),
                timestamp=now,
                pair=fill.pair,
                side=fill.side,
                amount_eur=fill.amount_eur,
                price=fill.price,
                reason=reason,
                strategy_id=strategy_id,
            )
            await self.store.add_paper_trade(record)
            executed.append(record)

        new_total = compute_portfolio_value(balances, prices)
        portfolio = PaperPortfolio(
            balances=balances,
            weights=target_weights,
            total_value_eur=new_total,
            peak_value_eur=max(peak_value, new_total),
            drawdown_paused=False,
            last_update=now,
        )
        await self.store.set_paper_portfolio(portfolio)
        await self.store.add_paper_pnl_point(
            PaperPnLPoint(timestamp=now, total_value_eur=new_total, strategy_id=strategy_id)
        )

        if executed:
            state.last_trade_time = now
        await self.store.set_paper_state(state)

        logger.info(
            "[PAPER] tick %s: value=%.2f trades=%d",
            strategy_id or "-",
            new_total,
            len(executed),
        )
        return PaperTickResult(
            status=STATUS_OK,
            total_value_eur=new_total,
            trades=len(executed),
            indicators=indicators,
            target_weights=target_weights,
        )

    async def _fetch_market(
        self, pairs: tuple[str, ...], now: datetime
    ) -> tuple[Dict[str, float], Dict[str, List[Candle]]]:
        end = int(now.timestamp())
        start = end - INDICATOR_CANDLES * GRANULARITY_SECONDS[INDICATOR_GRANULARITY]

        async def one(pair: str):
            price, candles = await asyncio.gather(
                self.market.get_price(pair),
                self.market.get_candles(pair, INDICATOR_GRANULARITY, start, end),
            )
            return pair, price, normalize_candles(candles)[-INDICATOR_CANDLES:]

        fetched = await asyncio.gather(*(one(pair) for pair in pairs))
        prices = {pair: price for pair, price, _ in fetched}
        candles_map = {pair: candles for pair, _, candles in fetched}
        return prices, candles_map

    # ------------------------------------------------------------------
    # Config sync
    # ------------------------------------------------------------------
    async def sync_config_with_strategy(self, params: StrategyParams) -> Optional[TradingConfig]:
        """Copy a candidate's tunable fields into the paper config."""
        config = await self.store.get_paper_config()
        if config is None:
            return None

        updated = replace(
            config,
            max_trade_percent=params.max_trade_percent,
            stop_loss_percent=params.stop_loss_percent,
            cooldown_minutes=params.cooldown_minutes,
            base_weights=dict(params.base_weights),
        )
        await self.store.set_paper_config(updated)
        return updated

    async def get_status(self) -> Dict[str, Any]:
        portfolio = await self.store.get_paper_portfolio()
        config = await self.store.get_paper_config()
        state = await self.store.get_paper_state()

        current = portfolio.total_value_eur if portfolio else self.initial_capital_eur
        return {
            "portfolio": portfolio,
            "config": config,
            "state": state,
            "performance": {
                "total_return": (current - self.initial_capital_eur) / self.initial_capital_eur,
                "current_value": current,
                "initial_value": self.initial_capital_eur,
            },
        }
