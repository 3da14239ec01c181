# tradelab/cli.py
"""
Command line entry point.

    tradelab backtest [--days N] [--pairs BTC-EUR,ETH-EUR]
    tradelab optimize [--mode reduced] [--max-combinations N] [--seed S] [--candidates N]
    tradelab promote [CANDIDATE_ID]
    tradelab reject CANDIDATE_ID REASON
    tradelab rollback
    tradelab status
    tradelab paper-init
    tradelab paper-tick [--strategy-id ID]

Settings come from the environment / .env (see tradelab.config).
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional

from tradelab.backtesting.config import BacktestConfig
from tradelab.backtesting.engine import BacktestEngine
from tradelab.config import DEFAULT_PAIRS, AppConfig, load_app_config
from tradelab.core.errors import TradeLabError
from tradelab.core.logger import get_logger, set_level
from tradelab.data.coinbase_client import CoinbaseClient
from tradelab.data.historical_loader import HistoricalLoader
from tradelab.evaluation.promoter import StrategyPromoter
from tradelab.optimization.grid_search import describe_parameters
from tradelab.optimization.optimizer import MODES, MODE_REDUCED, OptimizationConfig, Optimizer
from tradelab.paper_trading.paper_executor import PaperTrader
from tradelab.persistence.db import DB
from tradelab.persistence.engine import build_engine, build_session_maker

logger = get_logger(__name__)


@dataclass
class Services:
    app: AppConfig
    db: DB
    client: CoinbaseClient
    backtests: BacktestEngine

    def promoter(self) -> StrategyPromoter:
        return StrategyPromoter(
            self.db, self.db, self.db, initial_capital_eur=self.app.initial_capital_eur
        )

    def optimizer(self) -> Optimizer:
        return Optimizer(self.backtests, self.db, delay_seconds=self.app.optimizer_delay_seconds)

    def paper_trader(self) -> PaperTrader:
        return PaperTrader(self.client, self.db, initial_capital_eur=self.app.initial_capital_eur)


@asynccontextmanager
async def open_services(app: AppConfig) -> AsyncIterator[Services]:
    engine = build_engine(app.database_url or "")
    try:
        db = DB(build_session_maker(engine))
        client = CoinbaseClient(app.api_key, app.api_secret)
        loader = HistoricalLoader(client, db)
        yield Services(app=app, db=db, client=client, backtests=BacktestEngine(loader, db))
    finally:
        await engine.dispose()


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


# -------------------------------------------------------------------
# Commands
# -------------------------------------------------------------------
async def cmd_backtest(services: Services, args: argparse.Namespace) -> int:
    pairs = tuple(args.pairs.split(",")) if args.pairs else DEFAULT_PAIRS
    config = BacktestConfig(
        pairs=pairs,
        days=args.days or services.app.backtest_days,
        granularity=services.app.granularity,
        initial_capital_eur=services.app.initial_capital_eur,
    )
    result = await services.backtests.run_backtest(config)
    _print_json({"runId": result.run_id, **result.summary()})
    return 0


async def cmd_optimize(services: Services, args: argparse.Namespace) -> int:
    config = OptimizationConfig(
        mode=args.mode,
        days=args.days or services.app.backtest_days,
        initial_capital_eur=services.app.initial_capital_eur,
        granularity=services.app.granularity,
        max_combinations=args.max_combinations,
        seed=args.seed,
    )
    optimizer = services.optimizer()

    candidate_ids: List[int] = []
    if args.candidates > 0:
        result, candidate_ids = await optimizer.run_optimization_with_candidates(
            config, candidate_count=args.candidates
        )
    else:
        result = await optimizer.run_optimization(config)

    print(f"Tested {result.tested_combinations}/{result.total_combinations} "
          f"in {result.duration_seconds:.1f}s")
    for rank, scored in enumerate(result.top_results, start=1):
        print(f"{rank}. score={scored.score:.4f}  {describe_parameters(scored.params)}")
    if candidate_ids:
        print(f"Candidates queued for paper testing: {candidate_ids}")
    return 0


async def cmd_promote(services: Services, args: argparse.Namespace) -> int:
    promoter = services.promoter()
    if args.candidate_id is not None:
        result = await promoter.manual_promote(args.candidate_id)
    else:
        result = await promoter.check_and_promote()

    print(result.reason)
    for reason in result.reasons:
        print(f"  - {reason}")
    return 0 if result.promoted else 1


async def cmd_reject(services: Services, args: argparse.Namespace) -> int:
    changed = await services.promoter().reject_candidate(args.candidate_id, args.reason)
    print("Rejected" if changed else "Already rejected")
    return 0


async def cmd_rollback(services: Services, args: argparse.Namespace) -> int:
    result = await services.promoter().rollback_config()
    print(result.reason)
    return 0


async def cmd_status(services: Services, args: argparse.Namespace) -> int:
    statuses, config = await services.promoter().get_promotion_status()
    for s in statuses:
        flag = "eligible" if s.eligible else "; ".join(s.reasons)
        print(f"#{s.id} {s.status:<14} days={s.paper_days_tested} {flag}")
    _print_json({"liveConfig": config.to_dict()})
    return 0


async def cmd_paper_init(services: Services, args: argparse.Namespace) -> int:
    portfolio = await services.paper_trader().initialize()
    _print_json(portfolio.to_dict())
    return 0


async def cmd_paper_tick(services: Services, args: argparse.Namespace) -> int:
    result = await services.paper_trader().execute_tick(strategy_id=args.strategy_id)
    print(f"status={result.status} trades={result.trades} value={result.total_value_eur}")
    return 0


COMMANDS = {
    "backtest": cmd_backtest,
    "optimize": cmd_optimize,
    "promote": cmd_promote,
    "reject": cmd_reject,
    "rollback": cmd_rollback,
    "status": cmd_status,
    "paper-init": cmd_paper_init,
    "paper-tick": cmd_paper_tick,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tradelab")
    parser.add_argument("--log-level", help="override LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    backtest = sub.add_parser("backtest", help="run one backtest with default params")
    backtest.add_argument("--days", type=int)
    backtest.add_argument("--pairs", help="comma separated, e.g. BTC-EUR,ETH-EUR")

    optimize = sub.add_parser("optimize", help="grid-search strategy parameters")
    optimize.add_argument("--mode", choices=MODES, default=MODE_REDUCED)
    optimize.add_argument("--days", type=int)
    optimize.add_argument("--max-combinations", type=int)
    optimize.add_argument("--seed", type=int)
    optimize.add_argument("--candidates", type=int, default=0,
                          help="queue the top N results for paper testing")

    promote = sub.add_parser("promote", help="auto-promote, or force one candidate")
    promote.add_argument("candidate_id", type=int, nargs="?")

    reject = sub.add_parser("reject", help="reject a paper-testing candidate")
    reject.add_argument("candidate_id", type=int)
    reject.add_argument("reason")

    sub.add_parser("rollback", help="restore the default live configuration")
    sub.add_parser("status", help="candidate eligibility and live config")
    sub.add_parser("paper-init", help="reset the paper portfolio to cash")

    tick = sub.add_parser("paper-tick", help="run one paper trading tick")
    tick.add_argument("--strategy-id")

    return parser


async def _run(app: AppConfig, args: argparse.Namespace) -> int:
    async with open_services(app) as services:
        return await COMMANDS[args.command](services, args)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    app = load_app_config()
    set_level(args.log_level or app.log_level)

    try:
        return asyncio.run(_run(app, args))
    except TradeLabError as exc:
        logger.error("%s: %s", type(exc).__name__, exc)
        return 2


if __name__ == "__main__":
    sys.exit(main())
