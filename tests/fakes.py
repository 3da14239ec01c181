"""In-memory collaborators shared by the unit tests."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from itertools import count
from typing import Any, Dict, List, Mapping, Optional, Sequence

from tradelab.backtesting.config import (
    RUN_COMPLETED,
    RUN_FAILED,
    RUN_RUNNING,
    BacktestRunRecord,
)
from tradelab.config import DEFAULT_TRADING_CONFIG, TradingConfig
from tradelab.core.errors import ExternalFetchError
from tradelab.data.candle_normalizer import Candle
from tradelab.evaluation.evaluator import STATUS_PAPER_TESTING, StrategyCandidate
from tradelab.paper_trading.records import (
    PaperPnLPoint,
    PaperPortfolio,
    PaperState,
    PaperTradeRecord,
)
from tradelab.strategies.params import StrategyParams

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)
FOUR_HOURS = 4 * 3600


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def make_candles(
    closes: Sequence[float], start: int = 1_700_000_000, step: int = FOUR_HOURS
) -> List[Candle]:
    return [
        Candle(start=start + i * step, open=c, high=c, low=c, close=c, volume=1.0)
        for i, c in enumerate(closes)
    ]


# -------------------------------------------------------------------
# Market data
# -------------------------------------------------------------------
class FakeCandleSource:
    """Serves fixed candle lists per pair, ignoring the requested window."""

    def __init__(self, candles: Mapping[str, Sequence[Candle]], failing: Sequence[str] = ()):
        self.candles = {pair: list(c) for pair, c in candles.items()}
        self.failing = set(failing)
        self.calls: List[tuple] = []

    async def get_candles(self, pair: str, granularity: str, start: int, end: int) -> List[Candle]:
        self.calls.append((pair, granularity, start, end))
        if pair in self.failing:
            raise ExternalFetchError(f"boom {pair}", pair=pair)
        return list(self.candles.get(pair, []))


class WindowedCandleClient:
    """Synthesises one candle per granularity step inside [start, end)."""

    def __init__(self, step: int):
        self.step = step
        self.calls: List[tuple] = []

    async def get_candles(self, pair: str, granularity: str, start: int, end: int) -> List[Candle]:
        self.calls.append((pair, start, end))
        first = start - start % self.step
        if first < start:
            first += self.step
        return [
            Candle(start=ts, open=100.0, high=100.0, low=100.0, close=100.0, volume=1.0)
            for ts in range(first, end, self.step)
        ]


class FakeMarket:
    """Spot prices plus flat candle history for the paper trader."""

    def __init__(self, prices: Mapping[str, float]):
        self.prices = dict(prices)

    async def get_price(self, pair: str) -> float:
        return self.prices[pair]

    async def get_candles(self, pair: str, granularity: str, start: int, end: int) -> List[Candle]:
        price = self.prices[pair]
        return make_candles([price] * 24, start=start)


# -------------------------------------------------------------------
# Store
# -------------------------------------------------------------------
class InMemoryStore:
    """Same surface as tradelab.persistence.db.DB, kept in dicts and lists."""

    def __init__(self):
        self.runs: Dict[str, BacktestRunRecord] = {}
        self.candidates: Dict[int, StrategyCandidate] = {}
        self.paper_trades: List[PaperTradeRecord] = []
        self.paper_pnl: List[PaperPnLPoint] = []
        self.documents: Dict[str, Any] = {}
        self.cache: Dict[tuple, tuple] = {}
        self._ids = count(1)

    # backtest runs
    async def record_backtest_start(self, run_id, started_at, strategy_params):
        self.runs[run_id] = BacktestRunRecord(
            run_id=run_id,
            started_at=started_at,
            strategy_params=StrategyParams.from_dict(strategy_params),
            status=RUN_RUNNING,
        )

    async def record_backtest_complete(self, run_id, completed_at, summary):
        run = self.runs[run_id]
        run.status, run.completed_at, run.results = RUN_COMPLETED, completed_at, summary

    async def record_backtest_failed(self, run_id, completed_at, error):
        run = self.runs[run_id]
        run.status, run.completed_at, run.results = RUN_FAILED, completed_at, {"error": error}

    async def get_backtest_runs(self, limit=10, status=None):
        runs = sorted(self.runs.values(), key=lambda r: r.started_at, reverse=True)
        if status is not None:
            runs = [r for r in runs if r.status == status]
        return runs[:limit]

    # candidates
    async def get_strategy_candidates(self):
        ordered = sorted(self.candidates.values(), key=lambda c: c.id, reverse=True)
        return [replace(c) for c in ordered]

    async def get_strategy_candidate(self, candidate_id):
        c = self.candidates.get(candidate_id)
        return replace(c) if c else None

    async def add_strategy_candidate(self, params, backtest_score):
        candidate_id = next(self._ids)
        self.candidates[candidate_id] = StrategyCandidate(
            id=candidate_id,
            created_at=T0,
            strategy_params=params,
            backtest_score=backtest_score,
        )
        return candidate_id

    async def update_candidate_paper_results(self, candidate_id, paper_score, paper_days_tested):
        c = self.candidates[candidate_id]
        c.paper_score, c.paper_days_tested = paper_score, paper_days_tested

    async def update_candidate_status(self, candidate_id, status, promoted_at=None):
        c = self.candidates[candidate_id]
        if c.status != STATUS_PAPER_TESTING:
            return
        c.status = status
        if promoted_at is not None:
            c.promoted_at = promoted_at

    # paper history
    async def add_paper_trade(self, trade):
        self.paper_trades.append(trade)

    async def get_paper_trades(self, limit=50, strategy_id=None):
        rows = [t for t in self.paper_trades if strategy_id is None or t.strategy_id == strategy_id]
        return sorted(rows, key=lambda t: t.timestamp, reverse=True)[:limit]

    async def add_paper_pnl_point(self, point):
        self.paper_pnl.append(point)

    async def get_paper_pnl_history(self, limit=200, strategy_id=None):
        rows = [p for p in self.paper_pnl if strategy_id is None or p.strategy_id == strategy_id]
        return sorted(rows, key=lambda p: p.timestamp, reverse=True)[:limit]

    # documents, stored as dicts like the JSON column
    async def get_config(self) -> TradingConfig:
        data = self.documents.get("trading_config")
        return TradingConfig.from_dict(data) if data else DEFAULT_TRADING_CONFIG

    async def set_config(self, config):
        self.documents["trading_config"] = config.to_dict()

    async def get_paper_config(self) -> Optional[TradingConfig]:
        data = self.documents.get("paper_config")
        return TradingConfig.from_dict(data) if data else None

    async def set_paper_config(self, config):
        self.documents["paper_config"] = config.to_dict()

    async def get_paper_portfolio(self):
        data = self.documents.get("paper_portfolio")
        return PaperPortfolio.from_dict(data) if data else None

    async def set_paper_portfolio(self, portfolio):
        self.documents["paper_portfolio"] = portfolio.to_dict()

    async def get_paper_state(self):
        data = self.documents.get("paper_state")
        return PaperState.from_dict(data) if data else None

    async def set_paper_state(self, state):
        self.documents["paper_state"] = state.to_dict()

    # candle cache
    async def get_cached_candles(self, pair, granularity, start_time):
        return self.cache.get((pair, granularity, start_time))

    async def cache_candles(self, pair, granularity, start_time, candles, fetched_at):
        self.cache[(pair, granularity, start_time)] = (list(candles), fetched_at)
