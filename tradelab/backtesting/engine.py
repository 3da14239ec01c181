# tradelab/backtesting/engine.py

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from tradelab.backtesting.config import (
    RUN_COMPLETED,
    BacktestConfig,
    BacktestResult,
    BacktestRunRecord,
)
from tradelab.backtesting.simulator import SimulatorConfig, TradeSimulator
from tradelab.core.errors import InsufficientDataError
from tradelab.core.logger import get_logger
from tradelab.data.candle_normalizer import Candle, build_timeline, recent_candles
from tradelab.data.historical_loader import CandleSource, fetch_historical_candles
from tradelab.evaluation.metrics import calculate_metrics
from tradelab.strategies.params import StrategyParams

logger = get_logger(__name__)

BEST_RUN_WINDOW = 50


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BacktestEngine:
    """
    Historical backtest driver.

      - Fetches per-pair candles through an injected candle source
      - Aligns them on the union of candle timestamps
      - Drives a fresh TradeSimulator tick by tick (no look-ahead)
      - Scores the run and records it in the optional run store

    `run_store` is any object with the DB facade's backtest-run methods;
    `clock` supplies run start/completion times only, never simulation time.
    """

    def __init__(
        self,
        candle_source: CandleSource,
        run_store: Optional[Any] = None,
        clock: Callable[[], datetime] = _utcnow,
        *,
        fetch_batch_size: int = 2,
        fetch_batch_delay: float = 0.2,
    ) -> None:
        self.candle_source = candle_source
        self.run_store = run_store
        self.clock = clock
        self.fetch_batch_size = fetch_batch_size
        self.fetch_batch_delay = fetch_batch_delay

    # -------------------------------------------------------------
    # Core backtest runner
    # -------------------------------------------------------------
    async def run_backtest(self, config: Optional[BacktestConfig] = None) -> BacktestResult:
        config = (config or BacktestConfig()).validate()
        params = config.strategy_params

        run_id = str(uuid.uuid4())
        started_at = self.clock()

        if self.run_store is not None:
            await self.run_store.record_backtest_start(run_id, started_at, params.to_dict())

        logger.info(
            "[BACKTEST] %s start: pairs=%s days=%d granularity=%s capital=%.2f",
            run_id,
            ",".join(config.pairs),
            config.days,
            config.granularity,
            config.initial_capital_eur,
        )

        try:
            window_end = config.end_time or started_at
            end_ts = int(window_end.timestamp())
            start_ts = int((window_end - timedelta(days=config.days)).timestamp())

            candles_map = await fetch_historical_candles(
                self.candle_source,
                config.pairs,
                start_ts,
                end_ts,
                config.granularity,
                batch_size=self.fetch_batch_size,
                batch_delay=self.fetch_batch_delay,
            )

            simulator = self.simulate(config, candles_map)

            trades = simulator.trades
            snapshots = simulator.snapshots
            metrics = calculate_metrics(snapshots, trades, config.initial_capital_eur)

            result = BacktestResult(
                run_id=run_id,
                started_at=started_at,
                completed_at=self.clock(),
                strategy_params=params,
                trades=trades,
                snapshots=snapshots,
                metrics=metrics,
            )

            if self.run_store is not None:
                await self.run_store.record_backtest_complete(
                    run_id, result.completed_at, result.summary()
                )
        except Exception as exc:
            logger.error("[BACKTEST] %s failed: %s", run_id, exc)
            if self.run_store is not None:
                await self.run_store.record_backtest_failed(run_id, self.clock(), str(exc))
            raise

        logger.info(
            "[BACKTEST] %s complete: return=%.2f%% sharpe=%.2f dd=%.2f%% trades=%d score=%.4f",
            run_id,
            metrics.total_return * 100,
            metrics.sharpe_ratio,
            metrics.max_drawdown * 100,
            metrics.total_trades,
            metrics.combined_score,
        )
        return result

    # -------------------------------------------------------------
    # Simulation loop (synchronous, no I/O)
    # -------------------------------------------------------------
    @staticmethod
    def simulate(
        config: BacktestConfig,
        candles_map: Dict[str, Sequence[Candle]],
    ) -> TradeSimulator:
        """
        Drive a fresh simulator over the aligned timeline.

        `candles_map` values must be ascending. Ticks where any pair has
        no candle at or before the timestamp are skipped.
        """
        timeline = build_timeline(candles_map)
        if not timeline:
            raise InsufficientDataError(
                f"No historical data available for {', '.join(config.pairs)} "
                f"over the last {config.days} days"
            )

        simulator = TradeSimulator(
            config.initial_capital_eur,
            SimulatorConfig(
                pairs=tuple(config.pairs),
                strategy_params=config.strategy_params,
                min_trade_size_eur=config.min_trade_size_eur,
                max_drawdown_percent=config.max_drawdown_percent,
            ),
        )

        skipped = 0
        for ts in timeline:
            prices: Dict[str, float] = {}
            window: Dict[str, List[Candle]] = {}

            for pair in config.pairs:
                visible = recent_candles(candles_map.get(pair, ()), ts, config.candle_lookback)
                if visible:
                    prices[pair] = visible[-1].close
                    window[pair] = visible

            if len(prices) != len(config.pairs):
                skipped += 1
                continue

            simulator.process_candle(ts, prices, window)

        if skipped:
            logger.debug("[BACKTEST] skipped %d incomplete ticks of %d", skipped, len(timeline))
        return simulator

    # -------------------------------------------------------------
    # Batch + history helpers
    # -------------------------------------------------------------
    async def run_multiple_backtests(
        self,
        params_list: Sequence[StrategyParams],
        base_config: Optional[BacktestConfig] = None,
        delay: float = 0.1,
    ) -> List[BacktestResult]:
        """Sequential runs sharing `base_config`, one per parameter set."""
        base_config = base_config or BacktestConfig()
        results: List[BacktestResult] = []

        for i, params in enumerate(params_list):
            cfg = BacktestConfig(
                pairs=base_config.pairs,
                days=base_config.days,
                granularity=base_config.granularity,
                initial_capital_eur=base_config.initial_capital_eur,
                strategy_params=params,
                min_trade_size_eur=base_config.min_trade_size_eur,
                max_drawdown_percent=base_config.max_drawdown_percent,
                candle_lookback=base_config.candle_lookback,
                end_time=base_config.end_time,
            )
            results.append(await self.run_backtest(cfg))

            if i + 1 < len(params_list) and delay > 0:
                await asyncio.sleep(delay)

        return results

    async def get_backtest_runs(self, limit: int = 10) -> List[BacktestRunRecord]:
        if self.run_store is None:
            return []
        return await self.run_store.get_backtest_runs(limit=limit)

    async def get_best_backtest(self) -> Optional[BacktestRunRecord]:
        """Best combined score among the 50 most recent completed runs."""
        if self.run_store is None:
            return None

        runs = await self.run_store.get_backtest_runs(limit=BEST_RUN_WINDOW, status=RUN_COMPLETED)
        best: Optional[BacktestRunRecord] = None
        for run in runs:
            if best is None or run.combined_score > best.combined_score:
                best = run
        return best
