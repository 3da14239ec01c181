from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import async_sessionmaker

from tradelab.backtesting.config import (
    RUN_COMPLETED,
    RUN_FAILED,
    RUN_RUNNING,
    BacktestRunRecord,
)
from tradelab.config import DEFAULT_TRADING_CONFIG, TradingConfig
from tradelab.evaluation.evaluator import STATUS_PAPER_TESTING, StrategyCandidate
from tradelab.paper_trading.records import (
    PaperPnLPoint,
    PaperPortfolio,
    PaperState,
    PaperTradeRecord,
)
from tradelab.strategies.params import StrategyParams

from .models import (
    BacktestRun,
    Candidate,
    CandleCache,
    ConfigEntry,
    PaperPnL,
    PaperTrade,
)

LIVE_CONFIG_KEY = "trading_config"
PAPER_CONFIG_KEY = "paper_config"
PAPER_PORTFOLIO_KEY = "paper_portfolio"
PAPER_STATE_KEY = "paper_state"


# -------------------------------------------------------------------
# DB Facade
# -------------------------------------------------------------------


class DB:
    """
    Persistence API for the evaluation pipeline.

    This class is the *only* place that touches SQLAlchemy sessions.
    The backtest engine, promoter, optimizer and paper trader receive it
    (or an in-memory fake with the same methods) as an injected store.
    """

    def __init__(self, session_maker: async_sessionmaker):
        self.session_maker = session_maker

    # ---------------------------------------------------------------
    # Timestamp normalization helper
    # ---------------------------------------------------------------
    def _normalize_dt(self, dt: datetime | None) -> datetime:
        """Ensure all timestamps are timezone-aware UTC."""
        if dt is None:
            return datetime.now(timezone.utc)
        if dt.tzinfo is None:
            return dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)

    # ---------------------------------------------------------------
    # Session primitives
    # ---------------------------------------------------------------
    @asynccontextmanager
    async def get_session(self):
        session = self.session_maker()
        try:
            yield session
        finally:
            await session.close()

    @asynccontextmanager
    async def transaction(self):
        """Session that commits on success and rolls back on any error."""
        async with self.session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    # ---------------------------------------------------------------
    # Backtest runs
    # ---------------------------------------------------------------

    async def record_backtest_start(
        self, run_id: str, started_at: datetime, strategy_params: dict[str, Any]
    ) -> None:
        async with self.transaction() as session:
            session.add(
                BacktestRun(
                    run_id=run_id,
                    started_at=self._normalize_dt(started_at),
                    strategy_params=strategy_params,
                    status=RUN_RUNNING,
                )
            )

    async def _finish_backtest(
        self, run_id: str, completed_at: datetime, results: dict[str, Any], status: str
    ) -> None:
        async with self.transaction() as session:
            await session.execute(
                update(BacktestRun)
                .where(BacktestRun.run_id == run_id)
                .values(
                    completed_at=self._normalize_dt(completed_at),
                    results=results,
                    status=status,
                )
            )

    async def record_backtest_complete(
        self, run_id: str, completed_at: datetime, summary: dict[str, Any]
    ) -> None:
        await self._finish_backtest(run_id, completed_at, summary, RUN_COMPLETED)

    async def record_backtest_failed(
        self, run_id: str, completed_at: datetime, error: str
    ) -> None:
        await self._finish_backtest(run_id, completed_at, {"error": error}, RUN_FAILED)

    async def get_backtest_runs(
        self, limit: int = 10, status: str | None = None
    ) -> list[BacktestRunRecord]:
        stmt = select(BacktestRun).order_by(BacktestRun.started_at.desc()).limit(limit)
        if status is not None:
            stmt = stmt.where(BacktestRun.status == status)

        async with self.get_session() as session:
            rows = (await session.execute(stmt)).scalars().all()

        return [
            BacktestRunRecord(
                run_id=row.run_id,
                started_at=row.started_at,
                completed_at=row.completed_at,
                strategy_params=StrategyParams.from_dict(row.strategy_params),
                results=row.results,
                status=row.status,
            )
            for row in rows
        ]

    # ---------------------------------------------------------------
    # Strategy candidates
    # ---------------------------------------------------------------

    @staticmethod
    def _to_candidate(row: Candidate) -> StrategyCandidate:
        return StrategyCandidate(
            id=row.id,
            created_at=row.created_at,
            strategy_params=StrategyParams.from_dict(row.strategy_params),
            backtest_score=row.backtest_score,
            paper_score=row.paper_score,
            paper_days_tested=row.paper_days_tested or 0,
            status=row.status,
            promoted_at=row.promoted_at,
        )

    async def get_strategy_candidates(self) -> list[StrategyCandidate]:
        """All candidates, newest first."""
        async with self.get_session() as session:
            rows = (
                await session.execute(select(Candidate).order_by(Candidate.created_at.desc()))
            ).scalars().all()
        return [self._to_candidate(r) for r in rows]

    async def get_strategy_candidate(self, candidate_id: int) -> Optional[StrategyCandidate]:
        async with self.get_session() as session:
            row = await session.get(Candidate, candidate_id)
        return self._to_candidate(row) if row else None

    async def add_strategy_candidate(self, params: StrategyParams, backtest_score: float) -> int:
        async with self.transaction() as session:
            row = Candidate(
                strategy_params=params.to_dict(),
                backtest_score=backtest_score,
                paper_days_tested=0,
                status=STATUS_PAPER_TESTING,
            )
            session.add(row)
            await session.flush()
            return row.id

    async def update_candidate_paper_results(
        self, candidate_id: int, paper_score: float, paper_days_tested: int
    ) -> None:
        async with self.transaction() as session:
            await session.execute(
                update(Candidate)
                .where(Candidate.id == candidate_id)
                .values(paper_score=paper_score, paper_days_tested=paper_days_tested)
            )

    async def update_candidate_status(
        self, candidate_id: int, status: str, promoted_at: datetime | None = None
    ) -> None:
        """Conditional on the row still being paper_testing."""
        values: dict[str, Any] = {"status": status}
        if promoted_at is not None:
            values["promoted_at"] = self._normalize_dt(promoted_at)

        async with self.transaction() as session:
            await session.execute(
                update(Candidate)
                .where(
                    Candidate.id == candidate_id,
                    Candidate.status == STATUS_PAPER_TESTING,
                )
                .values(**values)
            )

    # ---------------------------------------------------------------
    # Paper trading history
    # ---------------------------------------------------------------

    async def add_paper_trade(self, trade: PaperTradeRecord) -> None:
        async with self.transaction() as session:
            session.add(
                PaperTrade(
                    trade_id=trade.trade_id,
                    timestamp=self._normalize_dt(trade.timestamp),
                    pair=trade.pair,
                    side=trade.side,
                    amount_eur=trade.amount_eur,
                    price=trade.price,
                    reason=trade.reason,
                    strategy_id=trade.strategy_id,
                )
            )

    async def get_paper_trades(
        self, limit: int = 50, strategy_id: str | None = None
    ) -> list[PaperTradeRecord]:
        """Newest first."""
        stmt = select(PaperTrade).order_by(PaperTrade.timestamp.desc()).limit(limit)
        if strategy_id is not None:
            stmt = stmt.where(PaperTrade.strategy_id == strategy_id)

        async with self.get_session() as session:
            rows = (await session.execute(stmt)).scalars().all()

        return [
            PaperTradeRecord(
                trade_id=r.trade_id,
                timestamp=r.timestamp,
                pair=r.pair,
                side=r.side,
                amount_eur=float(r.amount_eur),
                price=float(r.price),
                reason=r.reason or "",
                strategy_id=r.strategy_id,
            )
            for r in rows
        ]

    async def add_paper_pnl_point(self, point: PaperPnLPoint) -> None:
        async with self.transaction() as session:
            session.add(
                PaperPnL(
                    timestamp=self._normalize_dt(point.timestamp),
                    total_value_eur=point.total_value_eur,
                    strategy_id=point.strategy_id,
                )
            )

    async def get_paper_pnl_history(
        self, limit: int = 200, strategy_id: str | None = None
    ) -> list[PaperPnLPoint]:
        """Newest first."""
        stmt = select(PaperPnL).order_by(PaperPnL.timestamp.desc()).limit(limit)
        if strategy_id is not None:
            stmt = stmt.where(PaperPnL.strategy_id == strategy_id)

        async with self.get_session() as session:
            rows = (await session.execute(stmt)).scalars().all()

        return [
            PaperPnLPoint(
                timestamp=r.timestamp,
                total_value_eur=float(r.total_value_eur),
                strategy_id=r.strategy_id,
            )
            for r in rows
        ]

    # ---------------------------------------------------------------
    # JSON documents: live config + paper portfolio/config/state
    # ---------------------------------------------------------------

    async def _get_document(self, key: str) -> Optional[dict[str, Any]]:
        async with self.get_session() as session:
            row = await session.get(ConfigEntry, key)
        return row.data if row else None

    async def _set_document(self, key: str, data: dict[str, Any]) -> None:
        """Single-statement replace of the whole document."""
        stmt = pg_insert(ConfigEntry).values(key=key, data=data)
        stmt = stmt.on_conflict_do_update(
            index_elements=[ConfigEntry.key],
            set_={"data": stmt.excluded.data, "updated_at": datetime.now(timezone.utc)},
        )
        async with self.transaction() as session:
            await session.execute(stmt)

    async def get_config(self) -> TradingConfig:
        data = await self._get_document(LIVE_CONFIG_KEY)
        return TradingConfig.from_dict(data) if data else DEFAULT_TRADING_CONFIG

    async def set_config(self, config: TradingConfig) -> None:
        await self._set_document(LIVE_CONFIG_KEY, config.to_dict())

    async def get_paper_config(self) -> Optional[TradingConfig]:
        data = await self._get_document(PAPER_CONFIG_KEY)
        return TradingConfig.from_dict(data) if data else None

    async def set_paper_config(self, config: TradingConfig) -> None:
        await self._set_document(PAPER_CONFIG_KEY, config.to_dict())

    async def get_paper_portfolio(self) -> Optional[PaperPortfolio]:
        data = await self._get_document(PAPER_PORTFOLIO_KEY)
        return PaperPortfolio.from_dict(data) if data else None

    async def set_paper_portfolio(self, portfolio: PaperPortfolio) -> None:
        await self._set_document(PAPER_PORTFOLIO_KEY, portfolio.to_dict())

    async def get_paper_state(self) -> Optional[PaperState]:
        data = await self._get_document(PAPER_STATE_KEY)
        return PaperState.from_dict(data) if data else None

    async def set_paper_state(self, state: PaperState) -> None:
        await self._set_document(PAPER_STATE_KEY, state.to_dict())

    # ---------------------------------------------------------------
    # Candle cache
    # ---------------------------------------------------------------

    async def get_cached_candles(
        self, pair: str, granularity: str, start_time: str
    ) -> Optional[tuple[list[dict[str, Any]], datetime]]:
        async with self.get_session() as session:
            row = (
                await session.execute(
                    select(CandleCache).where(
                        CandleCache.pair == pair,
                        CandleCache.granularity == granularity,
                        CandleCache.start_time == start_time,
                    )
                )
            ).scalars().first()

        if row is None:
            return None
        return row.candles, self._normalize_dt(row.fetched_at)

    async def cache_candles(
        self,
        pair: str,
        granularity: str,
        start_time: str,
        candles: list[dict[str, Any]],
        fetched_at: datetime,
    ) -> None:
        stmt = pg_insert(CandleCache).values(
            pair=pair,
            granularity=granularity,
            start_time=start_time,
            candles=candles,
            fetched_at=self._normalize_dt(fetched_at),
        )
        stmt = stmt.on_conflict_do_update(
            constraint="uq_candle_cache_window",
            set_={
                "candles": stmt.excluded.candles,
                "fetched_at": stmt.excluded.fetched_at,
            },
        )
        async with self.transaction() as session:
            await session.execute(stmt)
