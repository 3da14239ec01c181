# tradelab/optimization/optimizer.py

from __future__ import annotations

import asyncio
import random
import time
from dataclasses import dataclass, field, replace
from typing import Any, List, Optional

from tradelab.backtesting.config import BacktestConfig, EvaluationMetrics
from tradelab.backtesting.engine import BacktestEngine
from tradelab.config import DEFAULT_PAIRS
from tradelab.core.errors import InvalidParameterError, OptimizationError
from tradelab.core.logger import get_logger
from tradelab.evaluation.metrics import TIE_THRESHOLD, compare_metrics
from tradelab.optimization.grid_search import (
    describe_parameters,
    generate_neighborhood_grid,
    generate_parameter_grid,
    generate_reduced_grid,
    sample_combinations,
)
from tradelab.strategies.params import StrategyParams

logger = get_logger(__name__)

MODE_FULL = "full"
MODE_REDUCED = "reduced"
MODE_NEIGHBORHOOD = "neighborhood"
MODES = (MODE_FULL, MODE_REDUCED, MODE_NEIGHBORHOOD)

PROGRESS_EVERY = 10


@dataclass
class OptimizationConfig:
    mode: str = MODE_REDUCED
    base_params: Optional[StrategyParams] = None   # neighborhood center
    days: int = 30
    initial_capital_eur: float = 1000.0
    pairs: tuple[str, ...] = DEFAULT_PAIRS
    granularity: str = "FOUR_HOUR"
    top_results_count: int = 5
    max_combinations: Optional[int] = None
    seed: Optional[int] = None                     # sampling seed; None = non-deterministic

    def validate(self) -> "OptimizationConfig":
        if self.mode not in MODES:
            raise InvalidParameterError(f"Unknown optimization mode: {self.mode}", "mode")
        if self.mode == MODE_NEIGHBORHOOD and self.base_params is None:
            raise InvalidParameterError("base_params required for neighborhood mode", "base_params")
        if self.top_results_count <= 0:
            raise InvalidParameterError("top_results_count must be positive", "top_results_count")
        if self.max_combinations is not None and self.max_combinations <= 0:
            raise InvalidParameterError("max_combinations must be positive", "max_combinations")
        return self


@dataclass(frozen=True)
class ScoredParams:
    params: StrategyParams
    score: float
    metrics: EvaluationMetrics


@dataclass
class OptimizationResult:
    total_combinations: int
    tested_combinations: int
    best_params: StrategyParams
    best_score: float
    best_metrics: EvaluationMetrics
    top_results: List[ScoredParams] = field(default_factory=list)
    duration_seconds: float = 0.0


@dataclass(frozen=True)
class StrategyComparison:
    winner: str   # "A" | "B" | "tie"
    score_a: float
    score_b: float
    metrics_a: EvaluationMetrics
    metrics_b: EvaluationMetrics


class Optimizer:
    """
    Grid-search optimizer over the backtest engine.

    Combinations run one at a time with `delay_seconds` between them so
    the candle source is never hammered; only one BacktestResult is held
    at a time. A failing combination is logged and skipped.
    """

    def __init__(
        self,
        engine: BacktestEngine,
        candidates: Optional[Any] = None,
        *,
        delay_seconds: float = 0.05,
    ):
        self.engine = engine
        self.candidates = candidates
        self.delay_seconds = delay_seconds

    # ------------------------------------------------------------------
    def build_grid(self, config: OptimizationConfig) -> List[StrategyParams]:
        if config.mode == MODE_FULL:
            grid = generate_parameter_grid()
        elif config.mode == MODE_NEIGHBORHOOD:
            grid = generate_neighborhood_grid(config.base_params)
        else:
            grid = generate_reduced_grid()

        rng = random.Random(config.seed)
        return sample_combinations(grid, config.max_combinations, rng)

    def _backtest_config(self, config: OptimizationConfig, params: StrategyParams) -> BacktestConfig:
        return BacktestConfig(
            pairs=tuple(config.pairs),
            days=config.days,
            granularity=config.granularity,
            initial_capital_eur=config.initial_capital_eur,
            strategy_params=params,
        )

    async def run_optimization(
        self, config: Optional[OptimizationConfig] = None
    ) -> OptimizationResult:
        config = (config or OptimizationConfig()).validate()
        started = time.monotonic()

        grid = self.build_grid(config)
        total = len(grid)
        logger.info("[OPTIMIZER] mode=%s combinations=%d days=%d", config.mode, total, config.days)

        results: List[ScoredParams] = []

        for i, params in enumerate(grid):
            try:
                result = await self.engine.run_backtest(self._backtest_config(config, params))
            except Exception:
                logger.exception("[OPTIMIZER] Backtest failed for params: %s", describe_parameters(params))
            else:
                results.append(
                    ScoredParams(
                        params=params,
                        score=result.metrics.combined_score,
                        metrics=result.metrics,
                    )
                )
                if len(results) % PROGRESS_EVERY == 0:
                    logger.info(
                        "[OPTIMIZER] progress %d/%d (%.1f%%)",
                        len(results),
                        total,
                        len(results) / total * 100,
                    )

            if i + 1 < total and self.delay_seconds > 0:
                await asyncio.sleep(self.delay_seconds)

        if not results:
            raise OptimizationError(f"No successful backtests completed ({total} attempted)")

        # stable: equal scores keep run order
        ranked = sorted(results, key=lambda r: r.score, reverse=True)
        top = ranked[: config.top_results_count]
        best = top[0]

        logger.info(
            "[OPTIMIZER] done: tested=%d/%d best=%.4f (%s)",
            len(results),
            total,
            best.score,
            describe_parameters(best.params),
        )

        return OptimizationResult(
            total_combinations=total,
            tested_combinations=len(results),
            best_params=best.params,
            best_score=best.score,
            best_metrics=best.metrics,
            top_results=top,
            duration_seconds=time.monotonic() - started,
        )

    # ------------------------------------------------------------------
    # Derived operations
    # ------------------------------------------------------------------
    async def run_optimization_with_candidates(
        self,
        config: Optional[OptimizationConfig] = None,
        candidate_count: int = 3,
    ) -> tuple[OptimizationResult, List[int]]:
        """Optimize, then queue the top results for paper testing."""
        if self.candidates is None:
            raise InvalidParameterError("a candidate store is required to add candidates", "candidates")

        optimization = await self.run_optimization(config)

        candidate_ids: List[int] = []
        for scored in optimization.top_results[:candidate_count]:
            candidate_id = await self.candidates.add_strategy_candidate(scored.params, scored.score)
            candidate_ids.append(candidate_id)

        logger.info("[OPTIMIZER] added paper-testing candidates %s", candidate_ids)
        return optimization, candidate_ids

    async def run_quick_optimization(
        self, max_combinations: int = 20, seed: Optional[int] = None
    ) -> OptimizationResult:
        return await self.run_optimization(
            OptimizationConfig(
                mode=MODE_REDUCED,
                max_combinations=max_combinations,
                days=14,
                seed=seed,
            )
        )

    async def fine_tune_strategy(
        self,
        base_params: StrategyParams,
        iterations: int = 2,
        days: int = 30,
    ) -> OptimizationResult:
        """
        Repeated neighborhood searches, each centered on the previous best.
        Stops early once the best beats the runner-up by less than 0.01.
        """
        if iterations <= 0:
            raise InvalidParameterError("iterations must be positive", "iterations")

        center = base_params
        result: Optional[OptimizationResult] = None

        for i in range(iterations):
            result = await self.run_optimization(
                OptimizationConfig(mode=MODE_NEIGHBORHOOD, base_params=center, days=days)
            )
            center = result.best_params

            runner_up = result.top_results[1].score if len(result.top_results) > 1 else 0.0
            if i > 0 and result.best_score - runner_up < TIE_THRESHOLD:
                logger.info("[OPTIMIZER] fine-tune converged after %d rounds", i + 1)
                break

        return result

    async def compare_strategies(
        self,
        params_a: StrategyParams,
        params_b: StrategyParams,
        days: int = 30,
    ) -> StrategyComparison:
        """Both strategies over the same window; a winner needs a 0.01 score lead."""
        base = OptimizationConfig(days=days)
        # one window end for both runs
        window = replace(self._backtest_config(base, params_a), end_time=self.engine.clock())
        results = await self.engine.run_multiple_backtests(
            [params_a, params_b],
            window,
            delay=self.delay_seconds,
        )
        a, b = results
        comparison = compare_metrics(a.metrics, b.metrics)
        return StrategyComparison(
            winner=comparison.winner,
            score_a=a.metrics.combined_score,
            score_b=b.metrics.combined_score,
            metrics_a=a.metrics,
            metrics_b=b.metrics,
        )
