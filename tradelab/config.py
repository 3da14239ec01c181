from __future__ import annotations

import os
from dataclasses import asdict, dataclass
from typing import Any

from dotenv import load_dotenv


# Load .env file from project root
load_dotenv()


GRANULARITIES = ("ONE_HOUR", "FOUR_HOUR", "ONE_DAY")
GRANULARITY_SECONDS = {"ONE_HOUR": 3600, "FOUR_HOUR": 14400, "ONE_DAY": 86400}

DEFAULT_PAIRS = ("BTC-EUR", "ETH-EUR", "SOL-EUR")
DEFAULT_BASE_WEIGHTS = {"BTC-EUR": 0.333, "ETH-EUR": 0.333, "SOL-EUR": 0.334}


@dataclass
class AppConfig:
    database_url: str | None
    api_key: str | None
    api_secret: str | None
    log_level: str = "INFO"

    # Backtest defaults
    backtest_days: int = 30
    initial_capital_eur: float = 1000.0
    granularity: str = "FOUR_HOUR"

    # Pause between optimizer runs (external API politeness)
    optimizer_delay_seconds: float = 0.05

    @property
    def has_database(self) -> bool:
        return bool(self.database_url)


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"Invalid {name}: {raw!r} (expected integer)")


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"Invalid {name}: {raw!r} (expected number)")


def load_app_config() -> AppConfig:
    granularity = os.getenv("BACKTEST_GRANULARITY", "FOUR_HOUR").upper()
    if granularity not in GRANULARITIES:
        raise ValueError(f"Invalid BACKTEST_GRANULARITY: {granularity}")

    days = _get_int("BACKTEST_DAYS", 30)
    if days <= 0:
        raise ValueError(f"BACKTEST_DAYS must be positive, got {days}")

    capital = _get_float("BACKTEST_INITIAL_CAPITAL_EUR", 1000.0)
    if capital <= 0:
        raise ValueError(
            f"BACKTEST_INITIAL_CAPITAL_EUR must be positive, got {capital}"
        )

    delay = _get_float("OPTIMIZER_DELAY_SECONDS", 0.05)
    if delay < 0:
        raise ValueError(f"OPTIMIZER_DELAY_SECONDS must be >= 0, got {delay}")

    return AppConfig(
        database_url=os.getenv("DATABASE_URL"),
        api_key=os.getenv("COINBASE_API_KEY"),
        api_secret=os.getenv("COINBASE_API_SECRET"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        backtest_days=days,
        initial_capital_eur=capital,
        granularity=granularity,
        optimizer_delay_seconds=delay,
    )


# -------------------------------------------------------------------
# Live trading configuration (read/written through the config store)
# -------------------------------------------------------------------

@dataclass(frozen=True)
class TradingConfig:
    enabled: bool
    pairs: tuple[str, ...]
    base_weights: dict[str, float]
    max_trade_percent: float        # 0.2 = 20% of portfolio per leg
    min_trade_size_eur: float
    cooldown_minutes: int
    stop_loss_percent: float
    max_drawdown_percent: float
    ai_enabled: bool = True

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["pairs"] = list(self.pairs)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TradingConfig":
        return cls(
            enabled=bool(data["enabled"]),
            pairs=tuple(data["pairs"]),
            base_weights={k: float(v) for k, v in data["base_weights"].items()},
            max_trade_percent=float(data["max_trade_percent"]),
            min_trade_size_eur=float(data["min_trade_size_eur"]),
            cooldown_minutes=int(data["cooldown_minutes"]),
            stop_loss_percent=float(data["stop_loss_percent"]),
            max_drawdown_percent=float(data["max_drawdown_percent"]),
            ai_enabled=bool(data.get("ai_enabled", True)),
        )


DEFAULT_TRADING_CONFIG = TradingConfig(
    enabled=False,
    pairs=DEFAULT_PAIRS,
    base_weights=dict(DEFAULT_BASE_WEIGHTS),
    max_trade_percent=0.2,
    min_trade_size_eur=5.0,
    cooldown_minutes=30,
    stop_loss_percent=0.05,
    max_drawdown_percent=0.1,
    ai_enabled=True,
)

# Rollback target: same values as the default, but trading switched on.
ROLLBACK_TRADING_CONFIG = TradingConfig(
    enabled=True,
    pairs=DEFAULT_PAIRS,
    base_weights=dict(DEFAULT_BASE_WEIGHTS),
    max_trade_percent=0.2,
    min_trade_size_eur=5.0,
    cooldown_minutes=30,
    stop_loss_percent=0.05,
    max_drawdown_percent=0.1,
    ai_enabled=True,
)
