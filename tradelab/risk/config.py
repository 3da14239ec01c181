from dataclasses import dataclass

from tradelab.config import TradingConfig

@dataclass
class RiskConfig:
    # Global kill-switch: fraction below running peak that pauses trading
    max_drawdown_pct: float = 0.10

    # Per-leg cap, fraction of total portfolio value
    max_trade_pct: float = 0.20

    # Minimum spacing between trading ticks
    cooldown_minutes: int = 30

    # Legs smaller than this (EUR) are dust
    min_trade_size_eur: float = 5.0


def risk_config_from_trading_config(cfg: TradingConfig) -> RiskConfig:
    """Risk limits of a live / paper trading configuration."""
    return RiskConfig(
        max_drawdown_pct=cfg.max_drawdown_percent,
        max_trade_pct=cfg.max_trade_percent,
        cooldown_minutes=cfg.cooldown_minutes,
        min_trade_size_eur=cfg.min_trade_size_eur,
    )
