from dataclasses import dataclass
from typing import Optional, Dict, Any

VETO_DRAWDOWN = "drawdown_paused"
VETO_COOLDOWN = "cooldown"


@dataclass
class RiskCheckResult:
    allow: bool                      # If False -> veto this tick
    veto_reason: Optional[str] = None
    drawdown: float = 0.0            # fraction below peak at check time
    metadata: Optional[Dict[str, Any]] = None

    def is_veto(self) -> bool:
        return not self.allow

    @classmethod
    def ok(cls, drawdown: float = 0.0) -> "RiskCheckResult":
        return cls(allow=True, drawdown=drawdown)
