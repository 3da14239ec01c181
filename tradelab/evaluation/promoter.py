# tradelab/evaluation/promoter.py

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from tradelab.config import ROLLBACK_TRADING_CONFIG, TradingConfig
from tradelab.core.errors import CandidateStateError
from tradelab.core.logger import get_logger
from tradelab.evaluation.evaluator import (
    DEFAULT_PROMOTION_CRITERIA,
    STATUS_PROMOTED,
    STATUS_REJECTED,
    PaperPerformance,
    PromotionCriteria,
    StrategyCandidate,
    best_candidate,
    evaluate_paper_performance,
    meets_promotion_criteria,
)
from tradelab.strategies.params import StrategyParams

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PromotionResult:
    promoted: bool
    reason: str
    candidate_id: Optional[int] = None
    strategy_params: Optional[StrategyParams] = None
    backtest_score: Optional[float] = None
    paper_score: Optional[float] = None
    paper_days_tested: Optional[int] = None
    reasons: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class RollbackResult:
    success: bool
    reason: str
    config: TradingConfig


@dataclass(frozen=True)
class CandidateStatus:
    id: int
    status: str
    backtest_score: Optional[float]
    paper_score: Optional[float]
    paper_days_tested: int
    eligible: bool
    reasons: List[str]


class StrategyPromoter:
    """
    Paper-testing -> live promotion state machine.

        paper_testing --> promoted   (terminal)
                      \\-> rejected   (terminal)

    Collaborators are injected: `candidates` (candidate store), `history`
    (paper trade / PnL history), `config_store` (live TradingConfig,
    get_config / set_config). A single DB facade can play all three.
    """

    def __init__(
        self,
        candidates: Any,
        history: Any,
        config_store: Any,
        *,
        clock: Callable[[], datetime] = _utcnow,
        initial_capital_eur: float = 1000.0,
    ):
        self.candidates = candidates
        self.history = history
        self.config_store = config_store
        self.clock = clock
        self.initial_capital_eur = initial_capital_eur

    async def _paper_performance(self, candidate: StrategyCandidate) -> PaperPerformance:
        return await evaluate_paper_performance(
            self.history, str(candidate.id), self.initial_capital_eur
        )

    # ------------------------------------------------------------------
    # Automatic promotion
    # ------------------------------------------------------------------
    async def check_and_promote(
        self, criteria: PromotionCriteria = DEFAULT_PROMOTION_CRITERIA
    ) -> PromotionResult:
        """
        Re-score every paper-testing candidate and promote the first one
        that meets `criteria`. At most one promotion per call.
        """
        all_candidates = await self.candidates.get_strategy_candidates()
        testing = [
            c for c in all_candidates if c.is_paper_testing and c.backtest_score is not None
        ]

        if not testing:
            return PromotionResult(
                promoted=False, reason="No strategy candidates in paper testing phase"
            )

        performance: Dict[int, PaperPerformance] = {}

        for candidate in testing:
            perf = await self._paper_performance(candidate)
            performance[candidate.id] = perf

            await self.candidates.update_candidate_paper_results(
                candidate.id, perf.score, perf.days_tested
            )
            candidate.paper_score = perf.score
            candidate.paper_days_tested = perf.days_tested

            eligibility = meets_promotion_criteria(
                candidate.backtest_score,
                perf.score,
                perf.days_tested,
                perf.metrics.max_drawdown,
                criteria,
            )
            if eligibility.eligible:
                await self._promote(candidate)
                return PromotionResult(
                    promoted=True,
                    reason="Strategy met all promotion criteria",
                    candidate_id=candidate.id,
                    strategy_params=candidate.strategy_params,
                    backtest_score=candidate.backtest_score,
                    paper_score=perf.score,
                    paper_days_tested=perf.days_tested,
                )

        best = best_candidate(testing, criteria.min_paper_days)
        if best is None:
            return PromotionResult(promoted=False, reason="No eligible candidates found")

        perf = performance[best.id]
        eligibility = meets_promotion_criteria(
            best.backtest_score,
            perf.score,
            perf.days_tested,
            perf.metrics.max_drawdown,
            criteria,
        )
        return PromotionResult(
            promoted=False,
            reason="Best candidate not yet eligible: " + "; ".join(eligibility.reasons),
            candidate_id=best.id,
            strategy_params=best.strategy_params,
            backtest_score=best.backtest_score,
            paper_score=perf.score,
            paper_days_tested=perf.days_tested,
            reasons=eligibility.reasons,
        )

    async def _promote(self, candidate: StrategyCandidate) -> None:
        candidate.check_transition(STATUS_PROMOTED)
        params = candidate.strategy_params

        current = await self.config_store.get_config()
        updated = replace(
            current,
            max_trade_percent=params.max_trade_percent,
            stop_loss_percent=params.stop_loss_percent,
            cooldown_minutes=params.cooldown_minutes,
            base_weights=dict(params.base_weights),
        )
        await self.config_store.set_config(updated)

        promoted_at = self.clock()
        await self.candidates.update_candidate_status(candidate.id, STATUS_PROMOTED, promoted_at)
        candidate.status = STATUS_PROMOTED
        candidate.promoted_at = promoted_at

        logger.info(
            "[PROMOTER] Strategy %s promoted to live trading with params %s",
            candidate.id,
            params.to_dict(),
        )

    # ------------------------------------------------------------------
    # Manual operations
    # ------------------------------------------------------------------
    async def manual_promote(self, candidate_id: int) -> PromotionResult:
        """Promote regardless of criteria, if the candidate is still paper testing."""
        candidate = await self.candidates.get_strategy_candidate(candidate_id)
        if candidate is None:
            return PromotionResult(promoted=False, reason=f"Candidate {candidate_id} not found")

        if not candidate.is_paper_testing:
            return PromotionResult(
                promoted=False,
                candidate_id=candidate_id,
                reason=f"Candidate already {candidate.status}",
            )

        await self._promote(candidate)
        return PromotionResult(
            promoted=True,
            reason="Manually promoted by user",
            candidate_id=candidate_id,
            strategy_params=candidate.strategy_params,
            backtest_score=candidate.backtest_score,
            paper_score=candidate.paper_score,
            paper_days_tested=candidate.paper_days_tested,
        )

    async def reject_candidate(self, candidate_id: int, reason: str) -> bool:
        """
        Move a paper-testing candidate to rejected.

        Returns False when it was already rejected (no-op). Rejecting a
        promoted or unknown candidate raises CandidateStateError.
        """
        candidate = await self.candidates.get_strategy_candidate(candidate_id)
        if candidate is None:
            raise CandidateStateError(f"Candidate {candidate_id} not found")
        if candidate.status == STATUS_REJECTED:
            return False

        candidate.check_transition(STATUS_REJECTED)
        await self.candidates.update_candidate_status(candidate_id, STATUS_REJECTED, None)
        logger.info("[PROMOTER] Strategy %s rejected: %s", candidate_id, reason)
        return True

    async def rollback_config(self) -> RollbackResult:
        """Replace the live config with the built-in default. Candidates are untouched."""
        await self.config_store.set_config(ROLLBACK_TRADING_CONFIG)
        logger.warning("[PROMOTER] Live configuration rolled back to defaults")
        return RollbackResult(
            success=True,
            reason="Rolled back to default configuration",
            config=ROLLBACK_TRADING_CONFIG,
        )

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------
    async def get_promotion_status(
        self, criteria: PromotionCriteria = DEFAULT_PROMOTION_CRITERIA
    ) -> tuple[List[CandidateStatus], TradingConfig]:
        """Eligibility of every candidate (read-only) plus the live config."""
        candidates = await self.candidates.get_strategy_candidates()
        statuses: List[CandidateStatus] = []

        for c in candidates:
            eligible, reasons = False, ["Not evaluated"]
            if c.backtest_score is not None:
                perf = await self._paper_performance(c)
                result = meets_promotion_criteria(
                    c.backtest_score,
                    perf.score,
                    perf.days_tested,
                    perf.metrics.max_drawdown,
                    criteria,
                )
                eligible, reasons = result.eligible, result.reasons

            statuses.append(
                CandidateStatus(
                    id=c.id,
                    status=c.status,
                    backtest_score=c.backtest_score,
                    paper_score=c.paper_score,
                    paper_days_tested=c.paper_days_tested,
                    eligible=eligible,
                    reasons=reasons,
                )
            )

        return statuses, await self.config_store.get_config()
