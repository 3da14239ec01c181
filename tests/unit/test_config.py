import pytest

from tradelab.cli import build_parser
from tradelab.config import DEFAULT_TRADING_CONFIG, TradingConfig, load_app_config
from tradelab.core.errors import InvalidParameterError
from tradelab.strategies.params import StrategyParams


class TestAppConfig:
    def test_should_read_environment(self, monkeypatch) -> None:
        monkeypatch.setenv("DATABASE_URL", "postgresql+asyncpg://db/tradelab")
        monkeypatch.setenv("BACKTEST_DAYS", "14")
        monkeypatch.setenv("BACKTEST_GRANULARITY", "one_day")
        monkeypatch.setenv("LOG_LEVEL", "debug")

        cfg = load_app_config()

        assert cfg.has_database
        assert cfg.backtest_days == 14
        assert cfg.granularity == "ONE_DAY"
        assert cfg.log_level == "DEBUG"

    def test_should_reject_bad_values(self, monkeypatch) -> None:
        monkeypatch.setenv("BACKTEST_GRANULARITY", "ONE_WEEK")
        with pytest.raises(ValueError):
            load_app_config()

        monkeypatch.setenv("BACKTEST_GRANULARITY", "FOUR_HOUR")
        monkeypatch.setenv("BACKTEST_DAYS", "soon")
        with pytest.raises(ValueError):
            load_app_config()


class TestTradingConfig:
    def test_should_survive_json_document_round_trip(self) -> None:
        restored = TradingConfig.from_dict(DEFAULT_TRADING_CONFIG.to_dict())
        assert restored == DEFAULT_TRADING_CONFIG
        assert isinstance(DEFAULT_TRADING_CONFIG.to_dict()["pairs"], list)


class TestStrategyParams:
    def test_should_store_camel_case(self) -> None:
        data = StrategyParams(cooldown_minutes=45).to_dict()
        assert data["cooldownMinutes"] == 45
        assert "baseWeights" in data

    def test_should_fill_missing_fields_with_defaults(self) -> None:
        params = StrategyParams.from_dict({"maxTradePercent": "0.3"})
        assert params.max_trade_percent == 0.3
        assert params.cooldown_minutes == 30

    def test_should_reject_malformed_documents(self) -> None:
        with pytest.raises(InvalidParameterError):
            StrategyParams.from_dict({"baseWeights": ["BTC-EUR"]})

    @pytest.mark.parametrize(
        "changes, field",
        [
            ({"max_trade_percent": 1.5}, "max_trade_percent"),
            ({"cooldown_minutes": -1}, "cooldown_minutes"),
            ({"rsi_oversold_threshold": 80.0}, "rsi_oversold_threshold"),
            ({"base_weights": {}}, "base_weights"),
            ({"base_weights": {"BTC-EUR": -1.0}}, "base_weights"),
            ({"stop_loss_percent": float("nan")}, "stop_loss_percent"),
        ],
    )
    def test_should_name_the_invalid_field(self, changes, field) -> None:
        with pytest.raises(InvalidParameterError) as exc_info:
            StrategyParams(**changes).validate()
        assert exc_info.value.field == field


class TestCommandLine:
    def test_should_parse_optimize_options(self) -> None:
        args = build_parser().parse_args(
            ["optimize", "--mode", "full", "--max-combinations", "50", "--seed", "3", "--candidates", "2"]
        )
        assert (args.command, args.mode, args.max_combinations, args.seed, args.candidates) == (
            "optimize", "full", 50, 3, 2
        )

    def test_should_parse_promotion_commands(self) -> None:
        parser = build_parser()
        assert parser.parse_args(["promote"]).candidate_id is None
        assert parser.parse_args(["promote", "4"]).candidate_id == 4
        args = parser.parse_args(["reject", "4", "too risky"])
        assert (args.candidate_id, args.reason) == (4, "too risky")
