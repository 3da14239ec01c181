# tradelab/evaluation/evaluator.py

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional, Sequence

from tradelab.backtesting.config import (
    EvaluationMetrics,
    PortfolioSnapshot,
    SimulatedTrade,
)
from tradelab.core.errors import CandidateStateError, InvalidParameterError
from tradelab.evaluation.metrics import calculate_metrics
from tradelab.strategies.params import StrategyParams

STATUS_PAPER_TESTING = "paper_testing"
STATUS_PROMOTED = "promoted"
STATUS_REJECTED = "rejected"

PAPER_HISTORY_LIMIT = 1000
SECONDS_PER_DAY = 86400

# blend used to rank candidates that are not (yet) eligible
BACKTEST_BLEND = 0.4
PAPER_BLEND = 0.6


# -------------------------------------------------------------------
# Promotion criteria
# -------------------------------------------------------------------
@dataclass(frozen=True)
class PromotionCriteria:
    """
    Thresholds a paper-tested candidate must meet to go live.

    min_backtest_score  combined score of the optimizer backtest (0-1)
    min_paper_days      whole days of paper history required
    min_paper_score     combined score of the paper history (0-1)
    max_paper_drawdown  worst peak-to-trough drop allowed while paper trading
    """

    min_backtest_score: float = 0.60
    min_paper_days: int = 7
    min_paper_score: float = 0.55
    max_paper_drawdown: float = 0.08

    def __post_init__(self) -> None:
        for name in ("min_backtest_score", "min_paper_score", "max_paper_drawdown"):
            value = getattr(self, name)
            if not math.isfinite(value) or not 0 <= value <= 1:
                raise InvalidParameterError(f"{name} must be within [0, 1], got {value}", name)
        if self.min_paper_days < 0:
            raise InvalidParameterError(
                f"min_paper_days must be >= 0, got {self.min_paper_days}", "min_paper_days"
            )


DEFAULT_PROMOTION_CRITERIA = PromotionCriteria()


@dataclass(frozen=True)
class Eligibility:
    eligible: bool
    reasons: List[str] = field(default_factory=list)


def meets_promotion_criteria(
    backtest_score: float,
    paper_score: float,
    paper_days_tested: int,
    paper_max_drawdown: float,
    criteria: PromotionCriteria = DEFAULT_PROMOTION_CRITERIA,
) -> Eligibility:
    reasons: List[str] = []

    if backtest_score < criteria.min_backtest_score:
        reasons.append(
            f"Backtest score {backtest_score * 100:.1f}% < "
            f"{criteria.min_backtest_score * 100:.1f}% minimum"
        )
    if paper_days_tested < criteria.min_paper_days:
        reasons.append(
            f"Paper days tested {paper_days_tested} < {criteria.min_paper_days} minimum"
        )
    if paper_score < criteria.min_paper_score:
        reasons.append(
            f"Paper score {paper_score * 100:.1f}% < "
            f"{criteria.min_paper_score * 100:.1f}% minimum"
        )
    if paper_max_drawdown > criteria.max_paper_drawdown:
        reasons.append(
            f"Paper drawdown {paper_max_drawdown * 100:.1f}% > "
            f"{criteria.max_paper_drawdown * 100:.1f}% maximum"
        )

    return Eligibility(eligible=not reasons, reasons=reasons)


# -------------------------------------------------------------------
# Candidates
# -------------------------------------------------------------------
@dataclass
class StrategyCandidate:
    id: int
    created_at: datetime
    strategy_params: StrategyParams
    backtest_score: Optional[float] = None
    paper_score: Optional[float] = None
    paper_days_tested: int = 0
    status: str = STATUS_PAPER_TESTING
    promoted_at: Optional[datetime] = None

    @property
    def is_paper_testing(self) -> bool:
        return self.status == STATUS_PAPER_TESTING

    def blended_score(self) -> float:
        return (self.backtest_score or 0.0) * BACKTEST_BLEND + (self.paper_score or 0.0) * PAPER_BLEND

    def check_transition(self, new_status: str) -> None:
        """A candidate leaves paper_testing at most once."""
        if new_status not in (STATUS_PROMOTED, STATUS_REJECTED):
            raise CandidateStateError(f"Unknown target status {new_status!r}")
        if not self.is_paper_testing:
            raise CandidateStateError(
                f"Candidate {self.id} is already {self.status}, cannot move to {new_status}"
            )


# -------------------------------------------------------------------
# Paper performance
# -------------------------------------------------------------------
@dataclass(frozen=True)
class PaperPerformance:
    score: float
    metrics: EvaluationMetrics
    days_tested: int


async def evaluate_paper_performance(
    history: Any,
    strategy_id: Optional[str],
    initial_capital: float = 1000.0,
) -> PaperPerformance:
    """
    Score the paper history recorded for `strategy_id` (all history when
    None) with the same metrics as a backtest.

    `history` exposes get_paper_pnl_history(limit, strategy_id) and
    get_paper_trades(limit, strategy_id).
    """
    pnl = await history.get_paper_pnl_history(limit=PAPER_HISTORY_LIMIT, strategy_id=strategy_id)
    trades = await history.get_paper_trades(limit=PAPER_HISTORY_LIMIT, strategy_id=strategy_id)

    if not pnl:
        return PaperPerformance(score=0.0, metrics=EvaluationMetrics(), days_tested=0)

    # stores return newest first; metrics need chronological order
    pnl = sorted(pnl, key=lambda p: p.timestamp)
    trades = sorted(trades, key=lambda t: t.timestamp)

    snapshots = [
        PortfolioSnapshot(
            timestamp=int(p.timestamp.timestamp()),
            balances={},
            total_value_eur=p.total_value_eur,
            weights={},
        )
        for p in pnl
    ]
    simulated = [
        SimulatedTrade(
            timestamp=int(t.timestamp.timestamp()),
            pair=t.pair,
            side=t.side,
            amount_eur=t.amount_eur,
            price=t.price,
            reason=t.reason,
        )
        for t in trades
    ]

    metrics = calculate_metrics(snapshots, simulated, initial_capital)
    span = (pnl[-1].timestamp - pnl[0].timestamp).total_seconds()
    days_tested = math.ceil(span / SECONDS_PER_DAY)

    return PaperPerformance(score=metrics.combined_score, metrics=metrics, days_tested=days_tested)


def best_candidate(
    candidates: Sequence[StrategyCandidate],
    min_paper_days: int = DEFAULT_PROMOTION_CRITERIA.min_paper_days,
) -> Optional[StrategyCandidate]:
    """Highest 40/60 backtest/paper blend among evaluated paper-testing candidates."""
    pool = [
        c
        for c in candidates
        if c.is_paper_testing
        and c.backtest_score is not None
        and c.paper_score is not None
        and c.paper_days_tested >= min_paper_days
    ]
    if not pool:
        return None
    return max(pool, key=lambda c: c.blended_score())
