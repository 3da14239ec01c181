# tradelab/evaluation/metrics.py
"""
Performance metrics for a run's equity curve and trade list.

Everything here is a pure function of (snapshots, trades, initial
capital), so backtests and paper trading are scored identically.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Dict, List

from tradelab.backtesting.config import (
    EvaluationMetrics,
    PortfolioSnapshot,
    SimulatedTrade,
)
from tradelab.execution.rebalance import BUY

SNAPSHOTS_PER_DAY = 6  # 4h candles
SHARPE_CAP = 3.0
TIE_THRESHOLD = 0.01

# combined score weights
RETURN_WEIGHT = 0.30
SHARPE_WEIGHT = 0.30
DRAWDOWN_WEIGHT = 0.25
WIN_RATE_WEIGHT = 0.15


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


# -------------------------------------------------------------------
# Aggregate
# -------------------------------------------------------------------
def calculate_metrics(
    snapshots: Sequence[PortfolioSnapshot],
    trades: Sequence[SimulatedTrade],
    initial_capital: float,
) -> EvaluationMetrics:
    """All metrics for one run. No snapshots -> all zeros."""
    if not snapshots:
        return EvaluationMetrics()

    total_return = calculate_total_return(snapshots, initial_capital)
    sharpe = calculate_sharpe_ratio(snapshots)
    max_dd = calculate_max_drawdown(snapshots)
    win_rate = calculate_win_rate(trades)

    return EvaluationMetrics(
        total_return=total_return,
        sharpe_ratio=sharpe,
        max_drawdown=max_dd,
        win_rate=win_rate,
        total_trades=len(trades),
        combined_score=calculate_combined_score(total_return, sharpe, max_dd, win_rate),
    )


# -------------------------------------------------------------------
# Individual metrics
# -------------------------------------------------------------------
def calculate_total_return(
    snapshots: Sequence[PortfolioSnapshot],
    initial_capital: float,
) -> float:
    if not snapshots or initial_capital <= 0:
        return 0.0
    return (snapshots[-1].total_value_eur - initial_capital) / initial_capital


def snapshot_returns(snapshots: Sequence[PortfolioSnapshot]) -> List[float]:
    """Fractional return between consecutive snapshots (zero-valued bases skipped)."""
    returns: List[float] = []
    for prev, curr in zip(snapshots, snapshots[1:]):
        if prev.total_value_eur > 0:
            returns.append(
                (curr.total_value_eur - prev.total_value_eur) / prev.total_value_eur
            )
    return returns


def calculate_sharpe_ratio(snapshots: Sequence[PortfolioSnapshot]) -> float:
    """
    Annualised Sharpe ratio (risk-free rate 0), clamped to [-3, 3].

    Uses the population standard deviation of per-snapshot returns and
    assumes 6 snapshots per day. A zero-variance series scores 3.0 when
    its mean is positive, otherwise 0.0.
    """
    returns = snapshot_returns(snapshots)
    if not returns:
        return 0.0

    mean = sum(returns) / len(returns)
    variance = sum((r - mean) ** 2 for r in returns) / len(returns)
    std = math.sqrt(variance)

    if std == 0:
        return SHARPE_CAP if mean > 0 else 0.0

    sharpe = mean / std * math.sqrt(SNAPSHOTS_PER_DAY * 365)
    return max(-SHARPE_CAP, min(SHARPE_CAP, sharpe))


def calculate_max_drawdown(snapshots: Sequence[PortfolioSnapshot]) -> float:
    if not snapshots:
        return 0.0

    max_dd = 0.0
    peak = snapshots[0].total_value_eur

    for snap in snapshots:
        if snap.total_value_eur > peak:
            peak = snap.total_value_eur
        if peak <= 0:
            continue
        drawdown = (peak - snap.total_value_eur) / peak
        if drawdown > max_dd:
            max_dd = drawdown

    return max_dd


def calculate_win_rate(trades: Sequence[SimulatedTrade]) -> float:
    """
    Share of trades that are winning sells.

    Per pair, BUYs open or add to a EUR position with a weighted average
    entry price; a SELL against an open position wins when its price is
    above the entry, whatever its size. The denominator is every trade,
    buys included.
    """
    if not trades:
        return 0.0

    position: Dict[str, float] = {}
    entry: Dict[str, float] = {}
    wins = 0

    for trade in trades:
        pos = position.get(trade.pair, 0.0)
        entry_price = entry.get(trade.pair, 0.0)

        if trade.side == BUY:
            if pos <= 0:
                entry_price = trade.price
                pos = trade.amount_eur
            else:
                entry_price = (
                    entry_price * pos + trade.price * trade.amount_eur
                ) / (pos + trade.amount_eur)
                pos += trade.amount_eur
        else:
            if pos > 0 and entry_price > 0 and trade.price > entry_price:
                wins += 1
            pos -= trade.amount_eur
            if pos <= 0:
                pos = 0.0
                entry_price = 0.0

        position[trade.pair] = pos
        entry[trade.pair] = entry_price

    return wins / len(trades)


def calculate_combined_score(
    total_return: float,
    sharpe_ratio: float,
    max_drawdown: float,
    win_rate: float,
) -> float:
    """
    Weighted score in [0, 1]:
      return   30%  normalised from [-50%, +100%]
      sharpe   30%  normalised from [-1, 3]
      drawdown 25%  inverted, 0% -> 1 and 50% -> 0
      win rate 15%
    """
    norm_return = _clamp01((total_return + 0.5) / 1.5)
    norm_sharpe = _clamp01((sharpe_ratio + 1) / 4)
    norm_drawdown = _clamp01(1 - max_drawdown * 2)
    norm_win_rate = _clamp01(win_rate)

    return (
        norm_return * RETURN_WEIGHT
        + norm_sharpe * SHARPE_WEIGHT
        + norm_drawdown * DRAWDOWN_WEIGHT
        + norm_win_rate * WIN_RATE_WEIGHT
    )


# -------------------------------------------------------------------
# Extras
# -------------------------------------------------------------------
def calculate_realized_pnl(trades: Sequence[SimulatedTrade]) -> float:
    """
    Realized EUR profit using average-cost accounting per pair.

    Reported next to win rate; it is not part of the combined score.
    Sells beyond the held quantity only realize against what was held.
    """
    qty: Dict[str, float] = {}
    cost: Dict[str, float] = {}
    realized = 0.0

    for trade in trades:
        if trade.price <= 0:
            continue
        units = trade.amount_eur / trade.price
        held = qty.get(trade.pair, 0.0)
        basis = cost.get(trade.pair, 0.0)

        if trade.side == BUY:
            qty[trade.pair] = held + units
            cost[trade.pair] = basis + trade.amount_eur
            continue

        if held <= 0:
            continue
        sold = min(units, held)
        avg_cost = basis / held
        realized += sold * (trade.price - avg_cost)
        qty[trade.pair] = held - sold
        cost[trade.pair] = basis - sold * avg_cost

    return realized


@dataclass(frozen=True)
class MetricComparison:
    a: float
    b: float
    winner: str  # "A" | "B" | "tie"


@dataclass(frozen=True)
class ComparisonResult:
    winner: str
    score_diff: float
    comparison: Dict[str, MetricComparison]


def _pick(a: float, b: float, higher_is_better: bool = True) -> str:
    if a == b:
        return "tie"
    if (a > b) == higher_is_better:
        return "A"
    return "B"


def compare_metrics(a: EvaluationMetrics, b: EvaluationMetrics) -> ComparisonResult:
    """Head-to-head; overall winner only when scores differ by >= 0.01."""
    comparison = {
        "total_return": MetricComparison(a.total_return, b.total_return, _pick(a.total_return, b.total_return)),
        "sharpe_ratio": MetricComparison(a.sharpe_ratio, b.sharpe_ratio, _pick(a.sharpe_ratio, b.sharpe_ratio)),
        "max_drawdown": MetricComparison(
            a.max_drawdown, b.max_drawdown, _pick(a.max_drawdown, b.max_drawdown, higher_is_better=False)
        ),
        "win_rate": MetricComparison(a.win_rate, b.win_rate, _pick(a.win_rate, b.win_rate)),
    }

    diff = a.combined_score - b.combined_score
    if abs(diff) < TIE_THRESHOLD:
        winner = "tie"
    else:
        winner = "A" if diff > 0 else "B"

    return ComparisonResult(winner=winner, score_diff=diff, comparison=comparison)
