from datetime import timedelta

import pytest

from fakes import T0, FakeCandleSource, InMemoryStore, make_candles
from tradelab.backtesting.config import (
    RUN_COMPLETED,
    RUN_FAILED,
    BacktestConfig,
    BacktestResult,
    BacktestRunRecord,
)
from tradelab.backtesting.engine import BacktestEngine
from tradelab.core.errors import ExternalFetchError, InsufficientDataError, InvalidParameterError
from tradelab.data.candle_normalizer import recent_candles
from tradelab.strategies.params import StrategyParams
from tradelab.strategies.weights import calculate_target_weights

PAIRS = ("BTC-EUR", "ETH-EUR", "SOL-EUR")


def flat_source(n=10, price=100.0) -> FakeCandleSource:
    return FakeCandleSource({p: make_candles([price] * n) for p in PAIRS})


def engine(source, store=None, clock=None) -> BacktestEngine:
    return BacktestEngine(source, store, clock or (lambda: T0), fetch_batch_delay=0)


class TestRunBacktest:
    @pytest.mark.asyncio
    async def test_should_score_flat_market(self, store) -> None:
        config = BacktestConfig(strategy_params=StrategyParams(max_trade_percent=0.5))
        result = await engine(flat_source(), store).run_backtest(config)

        assert len(result.trades) == 3
        assert len(result.snapshots) == 10
        assert result.metrics.total_return == pytest.approx(1 / 1.001 - 1)
        assert result.metrics.max_drawdown == pytest.approx(0.0)
        assert result.metrics.sharpe_ratio == 0.0
        assert result.metrics.win_rate == 0.0
        assert result.metrics.combined_score == pytest.approx(
            0.3 * ((1 / 1.001 - 1 + 0.5) / 1.5) + 0.3 * 0.25 + 0.25
        )

    @pytest.mark.asyncio
    async def test_should_produce_empty_trade_list_when_trading_disabled(self) -> None:
        config = BacktestConfig(
            strategy_params=StrategyParams(max_trade_percent=0.0),
            min_trade_size_eur=0.0,
        )
        result = await engine(flat_source()).run_backtest(config)

        assert result.trades == []
        assert result.metrics.total_return == 0.0
        assert result.snapshots[-1].total_value_eur == 1000.0

    @pytest.mark.asyncio
    async def test_should_skip_ticks_until_every_pair_has_data(self) -> None:
        source = FakeCandleSource(
            {
                "BTC-EUR": make_candles([100.0] * 10),
                "ETH-EUR": make_candles([100.0] * 10),
                "SOL-EUR": make_candles([100.0] * 6, start=1_700_000_000 + 4 * 14400),
            }
        )
        result = await engine(source).run_backtest(BacktestConfig())
        assert len(result.snapshots) == 6
        assert result.snapshots[0].timestamp == 1_700_000_000 + 4 * 14400

    @pytest.mark.asyncio
    async def test_should_record_completed_run(self, store) -> None:
        result = await engine(flat_source(), store).run_backtest()

        runs = await store.get_backtest_runs()
        assert [r.run_id for r in runs] == [result.run_id]
        assert runs[0].status == RUN_COMPLETED
        assert runs[0].combined_score == pytest.approx(result.metrics.combined_score)
        assert runs[0].results["tradeCount"] == len(result.trades)

    @pytest.mark.asyncio
    async def test_should_fetch_window_ending_at_start_time(self) -> None:
        source = flat_source()
        await engine(source).run_backtest(BacktestConfig(days=7))

        _, granularity, start, end = source.calls[0]
        assert granularity == "FOUR_HOUR"
        assert end == int(T0.timestamp())
        assert start == int((T0 - timedelta(days=7)).timestamp())
        assert len(source.calls) == 3


class TestFlatMarketScenario:
    @pytest.mark.asyncio
    async def test_should_hold_equal_weights_over_thirty_days(self) -> None:
        equal = {p: 1 / 3 for p in PAIRS}
        params = StrategyParams(base_weights=equal)
        source = flat_source(n=180)

        result = await engine(source).run_backtest(
            BacktestConfig(pairs=PAIRS, days=30, initial_capital_eur=1000.0, strategy_params=params)
        )

        candles = source.candles["BTC-EUR"]
        for candle in candles:
            window = {p: recent_candles(candles, candle.start, 24) for p in PAIRS}
            targets = calculate_target_weights(PAIRS, {p: 100.0 for p in PAIRS}, window, equal)
            assert targets == pytest.approx(equal)

        assert len(result.snapshots) == 180
        # capital is deployed over the first ticks, then the portfolio holds
        first_day = candles[0].start + 86400
        assert result.trades
        assert all(t.side == "BUY" and t.timestamp < first_day for t in result.trades)
        assert result.snapshots[-1].weights == pytest.approx(equal, abs=1e-3)
        assert result.metrics.total_return == pytest.approx(0.0, abs=2e-3)
        assert result.metrics.max_drawdown == pytest.approx(0.0, abs=2e-3)


class TestBacktestFailures:
    @pytest.mark.asyncio
    async def test_should_raise_insufficient_data_and_record_failure(self, store) -> None:
        source = FakeCandleSource({})
        with pytest.raises(InsufficientDataError):
            await engine(source, store).run_backtest()

        runs = await store.get_backtest_runs()
        assert runs[0].status == RUN_FAILED
        assert "No historical data" in runs[0].error

    @pytest.mark.asyncio
    async def test_should_propagate_fetch_errors(self, store) -> None:
        source = flat_source()
        source.failing.add("ETH-EUR")

        with pytest.raises(ExternalFetchError) as exc_info:
            await engine(source, store).run_backtest()
        assert exc_info.value.pair == "ETH-EUR"
        assert (await store.get_backtest_runs())[0].status == RUN_FAILED

    @pytest.mark.asyncio
    async def test_should_validate_config_before_recording(self, store) -> None:
        with pytest.raises(InvalidParameterError):
            await engine(flat_source(), store).run_backtest(BacktestConfig(days=0))
        assert store.runs == {}


class TestBacktestHistory:
    @pytest.mark.asyncio
    async def test_should_pick_best_completed_run(self, store) -> None:
        def run(run_id, minutes, status, score):
            return BacktestRunRecord(
                run_id=run_id,
                started_at=T0 + timedelta(minutes=minutes),
                strategy_params=StrategyParams(),
                status=status,
                results={"metrics": {"combinedScore": score}},
            )

        store.runs = {
            "a": run("a", 1, RUN_COMPLETED, 0.4),
            "b": run("b", 2, RUN_COMPLETED, 0.7),
            "c": run("c", 3, RUN_FAILED, 0.9),
        }
        best = await engine(flat_source(), store).get_best_backtest()
        assert best.run_id == "b"

    @pytest.mark.asyncio
    async def test_should_return_nothing_without_store(self) -> None:
        bt = engine(flat_source())
        assert await bt.get_best_backtest() is None
        assert await bt.get_backtest_runs() == []

    @pytest.mark.asyncio
    async def test_should_run_multiple_backtests_in_order(self) -> None:
        params = [StrategyParams(max_trade_percent=0.0), StrategyParams(max_trade_percent=0.5)]
        results = await engine(flat_source()).run_multiple_backtests(params, delay=0)

        assert [r.strategy_params for r in results] == params
        assert len(results[0].trades) == 0
        assert len(results[1].trades) == 3

    @pytest.mark.asyncio
    async def test_should_serialise_full_result(self) -> None:
        result = await engine(flat_source()).run_backtest(
            BacktestConfig(strategy_params=StrategyParams(max_trade_percent=0.5))
        )
        restored = BacktestResult.from_dict(result.to_dict())
        assert restored == result


class TestBacktestConfig:
    def test_should_reject_bad_values(self) -> None:
        for bad in (
            BacktestConfig(pairs=()),
            BacktestConfig(granularity="ONE_WEEK"),
            BacktestConfig(initial_capital_eur=0),
            BacktestConfig(max_drawdown_percent=0),
            BacktestConfig(strategy_params=StrategyParams(max_trade_percent=2)),
        ):
            with pytest.raises(InvalidParameterError):
                bad.validate()


class FailingCompletionStore(InMemoryStore):
    async def record_backtest_complete(self, run_id, completed_at, summary):
        raise RuntimeError("connection reset")


class TestRunBookkeeping:
    @pytest.mark.asyncio
    async def test_should_mark_run_failed_when_completion_write_fails(self) -> None:
        store = FailingCompletionStore()

        with pytest.raises(RuntimeError, match="connection reset"):
            await engine(flat_source(), store).run_backtest()

        runs = await store.get_backtest_runs()
        assert [r.status for r in runs] == [RUN_FAILED]
        assert runs[0].error == "connection reset"
