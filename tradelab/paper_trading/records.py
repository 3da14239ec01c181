from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Mapping, Optional


@dataclass(frozen=True)
class PaperTradeRecord:
    trade_id: str
    timestamp: datetime
    pair: str
    side: str
    amount_eur: float
    price: float
    reason: str
    strategy_id: Optional[str] = None


@dataclass(frozen=True)
class PaperPnLPoint:
    timestamp: datetime
    total_value_eur: float
    strategy_id: Optional[str] = None


@dataclass
class PaperPortfolio:
    balances: Dict[str, float]
    total_value_eur: float
    peak_value_eur: float
    weights: Dict[str, float] = field(default_factory=dict)
    drawdown_paused: bool = False
    last_update: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "balances": dict(self.balances),
            "weights": dict(self.weights),
            "total_value_eur": self.total_value_eur,
            "peak_value_eur": self.peak_value_eur,
            "drawdown_paused": self.drawdown_paused,
            "last_update": self.last_update.isoformat() if self.last_update else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PaperPortfolio":
        last = data.get("last_update")
        return cls(
            balances={k: float(v) for k, v in data["balances"].items()},
            weights={k: float(v) for k, v in data.get("weights", {}).items()},
            total_value_eur=float(data["total_value_eur"]),
            peak_value_eur=float(data["peak_value_eur"]),
            drawdown_paused=bool(data.get("drawdown_paused", False)),
            last_update=datetime.fromisoformat(last) if last else None,
        )


@dataclass
class PaperState:
    last_tick_time: Optional[datetime] = None
    last_trade_time: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "last_tick_time": self.last_tick_time.isoformat() if self.last_tick_time else None,
            "last_trade_time": self.last_trade_time.isoformat() if self.last_trade_time else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PaperState":
        tick = data.get("last_tick_time")
        trade = data.get("last_trade_time")
        return cls(
            last_tick_time=datetime.fromisoformat(tick) if tick else None,
            last_trade_time=datetime.fromisoformat(trade) if trade else None,
        )
