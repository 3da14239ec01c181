from typing import Optional

from tradelab.risk.config import RiskConfig
from tradelab.risk.result import RiskCheckResult, VETO_COOLDOWN, VETO_DRAWDOWN
from tradelab.strategies.portfolio_metrics import compute_drawdown


class RiskManager:
    """
    Safety gates evaluated before any trading tick.

    Stateless: callers own the peak value and last-trade time and pass
    them in, which keeps the simulator the single owner of run state.
    Times are epoch seconds.
    """

    def __init__(self, config: RiskConfig):
        self.config = config

    # =====================================================================
    # HARD RULES (VETO)
    # =====================================================================

    def check_drawdown(self, current_value: float, peak_value: float) -> RiskCheckResult:
        drawdown = compute_drawdown(current_value, peak_value)
        if drawdown >= self.config.max_drawdown_pct:
            return RiskCheckResult(
                allow=False,
                veto_reason=VETO_DRAWDOWN,
                drawdown=drawdown,
                metadata={"peak_value": peak_value, "current_value": current_value},
            )
        return RiskCheckResult.ok(drawdown)

    def in_cooldown(self, now: float, last_trade_time: Optional[float]) -> bool:
        if last_trade_time is None:
            return False
        return now - last_trade_time < self.config.cooldown_minutes * 60

    def check_cooldown(self, now: float, last_trade_time: Optional[float]) -> RiskCheckResult:
        if self.in_cooldown(now, last_trade_time):
            return RiskCheckResult(
                allow=False,
                veto_reason=VETO_COOLDOWN,
                metadata={"last_trade_time": last_trade_time},
            )
        return RiskCheckResult.ok()

    def evaluate_tick(
        self,
        now: float,
        current_value: float,
        peak_value: float,
        last_trade_time: Optional[float],
    ) -> RiskCheckResult:
        """Drawdown first, then cooldown."""
        result = self.check_drawdown(current_value, peak_value)
        if result.is_veto():
            return result

        cooldown = self.check_cooldown(now, last_trade_time)
        if cooldown.is_veto():
            cooldown.drawdown = result.drawdown
            return cooldown
        return result

    # =====================================================================
    # SIZING
    # =====================================================================

    def clamp_trade_size(self, trade_eur: float, total_value_eur: float) -> float:
        return min(trade_eur, total_value_eur * self.config.max_trade_pct)

