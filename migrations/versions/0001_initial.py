"""initial schema

Revision ID: 0001
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "backtest_runs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("run_id", sa.String(length=36), nullable=False, unique=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("strategy_params", sa.JSON(), nullable=False),
        sa.Column("results", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
    )
    op.create_index("ix_backtest_runs_started_at", "backtest_runs", ["started_at"])

    op.create_table(
        "strategy_candidates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=True,
        ),
        sa.Column("strategy_params", sa.JSON(), nullable=False),
        sa.Column("backtest_score", sa.Float(), nullable=True),
        sa.Column("paper_score", sa.Float(), nullable=True),
        sa.Column("paper_days_tested", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(), nullable=False, server_default="paper_testing"),
        sa.Column("promoted_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "paper_trades",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("trade_id", sa.String(length=36), nullable=False, unique=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("pair", sa.String(), nullable=False),
        sa.Column("side", sa.String(), nullable=False),
        sa.Column("amount_eur", sa.Numeric(24, 10), nullable=False),
        sa.Column("price", sa.Numeric(24, 10), nullable=False),
        sa.Column("reason", sa.String(), nullable=True),
        sa.Column("strategy_id", sa.String(), nullable=True),
    )
    op.create_index(
        "ix_paper_trades_strategy_ts", "paper_trades", ["strategy_id", "timestamp"]
    )

    op.create_table(
        "paper_pnl_history",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("total_value_eur", sa.Numeric(24, 10), nullable=False),
        sa.Column("strategy_id", sa.String(), nullable=True),
    )
    op.create_index(
        "ix_paper_pnl_strategy_ts", "paper_pnl_history", ["strategy_id", "timestamp"]
    )

    op.create_table(
        "candle_cache",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("pair", sa.String(), nullable=False),
        sa.Column("granularity", sa.String(), nullable=False),
        sa.Column("start_time", sa.String(), nullable=False),
        sa.Column("candles", sa.JSON(), nullable=False),
        sa.Column("fetched_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "pair", "granularity", "start_time", name="uq_candle_cache_window"
        ),
    )

    op.create_table(
        "config_entries",
        sa.Column("key", sa.String(), primary_key=True),
        sa.Column("data", sa.JSON(), nullable=False),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=True,
        ),
    )


def downgrade() -> None:
    op.drop_table("config_entries")
    op.drop_table("candle_cache")
    op.drop_index("ix_paper_pnl_strategy_ts", table_name="paper_pnl_history")
    op.drop_table("paper_pnl_history")
    op.drop_index("ix_paper_trades_strategy_ts", table_name="paper_trades")
    op.drop_table("paper_trades")
    op.drop_table("strategy_candidates")
    op.drop_index("ix_backtest_runs_started_at", table_name="backtest_runs")
    op.drop_table("backtest_runs")
