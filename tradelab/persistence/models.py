from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import (
    JSON,
    DateTime,
    Float,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
)


# ============================================================
# Base Declarative Class
# ============================================================

class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


# ============================================================
# Backtest runs
# ============================================================

class BacktestRun(Base):
    __tablename__ = "backtest_runs"

    id: Mapped[int] = mapped_column(primary_key=True)
    run_id: Mapped[str] = mapped_column(String(36), unique=True, nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    strategy_params: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    # {metrics, tradeCount, snapshotCount} or {error}
    results: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON)
    status: Mapped[str] = mapped_column(String, nullable=False)  # running | completed | failed

    __table_args__ = (
        Index("ix_backtest_runs_started_at", "started_at"),
    )

    def __repr__(self) -> str:
        return f"<BacktestRun {self.run_id} {self.status}>"


# ============================================================
# Strategy candidates (promotion pipeline)
# ============================================================

class Candidate(Base):
    __tablename__ = "strategy_candidates"

    id: Mapped[int] = mapped_column(primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    strategy_params: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    backtest_score: Mapped[Optional[float]] = mapped_column(Float)
    paper_score: Mapped[Optional[float]] = mapped_column(Float)
    paper_days_tested: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[str] = mapped_column(String, default="paper_testing", nullable=False)
    promoted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    def __repr__(self) -> str:
        return f"<Candidate {self.id} {self.status}>"


# ============================================================
# Paper trading history
# ============================================================

class PaperTrade(Base):
    __tablename__ = "paper_trades"

    id: Mapped[int] = mapped_column(primary_key=True)
    trade_id: Mapped[str] = mapped_column(String(36), unique=True, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    pair: Mapped[str] = mapped_column(String, nullable=False)
    side: Mapped[str] = mapped_column(String, nullable=False)  # BUY | SELL
    amount_eur: Mapped[float] = mapped_column(Numeric(24, 10), nullable=False)
    price: Mapped[float] = mapped_column(Numeric(24, 10), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(String)
    strategy_id: Mapped[Optional[str]] = mapped_column(String)

    __table_args__ = (
        Index("ix_paper_trades_strategy_ts", "strategy_id", "timestamp"),
    )


class PaperPnL(Base):
    __tablename__ = "paper_pnl_history"

    id: Mapped[int] = mapped_column(primary_key=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    total_value_eur: Mapped[float] = mapped_column(Numeric(24, 10), nullable=False)
    strategy_id: Mapped[Optional[str]] = mapped_column(String)

    __table_args__ = (
        Index("ix_paper_pnl_strategy_ts", "strategy_id", "timestamp"),
    )


# ============================================================
# Candle cache
# ============================================================

class CandleCache(Base):
    __tablename__ = "candle_cache"

    id: Mapped[int] = mapped_column(primary_key=True)
    pair: Mapped[str] = mapped_column(String, nullable=False)
    granularity: Mapped[str] = mapped_column(String, nullable=False)
    start_time: Mapped[str] = mapped_column(String, nullable=False)  # "<start>-<granularity>"
    candles: Mapped[list] = mapped_column(JSON, nullable=False)
    fetched_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("pair", "granularity", "start_time", name="uq_candle_cache_window"),
    )


# ============================================================
# Key/value JSON documents (live config, paper portfolio/config/state)
# ============================================================

class ConfigEntry(Base):
    __tablename__ = "config_entries"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    data: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
