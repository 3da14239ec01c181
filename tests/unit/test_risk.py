import pytest

from tradelab.config import DEFAULT_TRADING_CONFIG
from tradelab.risk.config import RiskConfig, risk_config_from_trading_config
from tradelab.risk.manager import RiskManager
from tradelab.risk.result import VETO_COOLDOWN, VETO_DRAWDOWN


@pytest.fixture
def risk() -> RiskManager:
    return RiskManager(RiskConfig(max_drawdown_pct=0.10, max_trade_pct=0.2, cooldown_minutes=30))


class TestDrawdownGate:
    def test_should_allow_below_limit(self, risk: RiskManager) -> None:
        result = risk.check_drawdown(910.0, 1000.0)
        assert result.allow
        assert result.drawdown == pytest.approx(0.09)

    def test_should_veto_at_limit(self, risk: RiskManager) -> None:
        result = risk.check_drawdown(900.0, 1000.0)
        assert result.is_veto()
        assert result.veto_reason == VETO_DRAWDOWN

    def test_should_ignore_non_positive_peak(self, risk: RiskManager) -> None:
        assert risk.check_drawdown(10.0, 0.0).allow


class TestCooldownGate:
    def test_should_block_until_cooldown_elapsed(self, risk: RiskManager) -> None:
        assert risk.in_cooldown(1000 + 1799, 1000)
        assert not risk.in_cooldown(1000 + 1800, 1000)
        assert not risk.in_cooldown(5000, None)

    def test_should_check_drawdown_before_cooldown(self, risk: RiskManager) -> None:
        result = risk.evaluate_tick(now=1010, current_value=800.0, peak_value=1000.0, last_trade_time=1000)
        assert result.veto_reason == VETO_DRAWDOWN

    def test_should_carry_drawdown_on_cooldown_veto(self, risk: RiskManager) -> None:
        result = risk.evaluate_tick(now=1010, current_value=950.0, peak_value=1000.0, last_trade_time=1000)
        assert result.veto_reason == VETO_COOLDOWN
        assert result.drawdown == pytest.approx(0.05)


class TestSizing:
    def test_should_clamp_trade_to_share_of_portfolio(self, risk: RiskManager) -> None:
        assert risk.clamp_trade_size(500.0, 1000.0) == pytest.approx(200.0)
        assert risk.clamp_trade_size(50.0, 1000.0) == 50.0

    def test_should_build_from_trading_config(self) -> None:
        cfg = risk_config_from_trading_config(DEFAULT_TRADING_CONFIG)
        assert cfg.max_trade_pct == DEFAULT_TRADING_CONFIG.max_trade_percent
        assert cfg.cooldown_minutes == DEFAULT_TRADING_CONFIG.cooldown_minutes
