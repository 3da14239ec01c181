import random

import pytest

from fakes import make_candles
from tradelab.strategies.indicators.momentum import momentum
from tradelab.strategies.weights import (
    MAX_MOMENTUM_TILT,
    OVERBOUGHT_FACTOR,
    OVERSOLD_FACTOR,
    calculate_target_weights,
    normalize_weights,
)

PAIRS = ("BTC-EUR", "ETH-EUR", "SOL-EUR")
BASE = {"BTC-EUR": 0.5, "ETH-EUR": 0.3, "SOL-EUR": 0.2}
PRICES = {p: 100.0 for p in PAIRS}


def flat(n=24, price=100.0):
    return make_candles([price] * n)


class TestNormalizeWeights:
    def test_should_scale_to_one(self) -> None:
        assert normalize_weights({"A": 2, "B": 6}, ["A", "B"]) == {"A": 0.25, "B": 0.75}

    def test_should_fall_back_to_equal_weights_when_all_zero(self) -> None:
        weights = normalize_weights({"A": 0.0}, ["A", "B"])
        assert weights == {"A": 0.5, "B": 0.5}


class TestTargetWeights:
    def test_should_keep_base_weights_for_flat_markets(self) -> None:
        candles = {p: flat() for p in PAIRS}
        weights = calculate_target_weights(PAIRS, PRICES, candles, BASE)
        assert weights == pytest.approx(BASE)

    def test_should_cap_momentum_tilt(self) -> None:
        # +100% over the window, but the tilt stops at 0.15
        rally = make_candles([100.0] * 18 + [100, 120, 140, 160, 180, 200])
        candles = {"BTC-EUR": rally, "ETH-EUR": flat(), "SOL-EUR": flat()}
        assert momentum(rally) == pytest.approx(100.0)

        weights = calculate_target_weights(
            PAIRS, PRICES, candles, BASE, rsi_oversold=0.0, rsi_overbought=100.0
        )
        raw = {"BTC-EUR": 0.5 + MAX_MOMENTUM_TILT, "ETH-EUR": 0.3, "SOL-EUR": 0.2}
        total = sum(raw.values())
        assert weights == pytest.approx({p: w / total for p, w in raw.items()})

    def test_should_dampen_overbought_and_boost_oversold(self) -> None:
        rising = make_candles([100 + i * 0.1 for i in range(24)])
        falling = make_candles([100 - i * 0.1 for i in range(24)])
        candles = {"BTC-EUR": rising, "ETH-EUR": falling, "SOL-EUR": flat()}

        weights = calculate_target_weights(PAIRS, PRICES, candles, BASE)

        btc = (0.5 + momentum(rising) / 100) * OVERBOUGHT_FACTOR
        eth = (0.3 + momentum(falling) / 100) * OVERSOLD_FACTOR
        sol = 0.2
        total = btc + eth + sol
        assert weights["BTC-EUR"] == pytest.approx(btc / total)
        assert weights["ETH-EUR"] == pytest.approx(eth / total)
        assert weights["SOL-EUR"] == pytest.approx(sol / total)

    def test_should_floor_negative_weights_at_zero(self) -> None:
        crash = make_candles([100.0] * 18 + [100, 80, 60, 40, 20, 10])
        candles = {"BTC-EUR": flat(), "ETH-EUR": flat(), "SOL-EUR": crash}
        base = {"BTC-EUR": 0.45, "ETH-EUR": 0.45, "SOL-EUR": 0.1}

        weights = calculate_target_weights(
            PAIRS, PRICES, candles, base, rsi_oversold=0.0, rsi_overbought=100.0
        )
        assert weights["SOL-EUR"] == 0.0
        assert sum(weights.values()) == pytest.approx(1.0)

    def test_should_let_advisory_weights_override_indicators(self) -> None:
        candles = {p: flat() for p in PAIRS}
        weights = calculate_target_weights(
            PAIRS, PRICES, candles, BASE, advisory_weights={"BTC-EUR": 3, "ETH-EUR": 1}
        )
        assert weights == {"BTC-EUR": 0.75, "ETH-EUR": 0.25, "SOL-EUR": 0.0}

    def test_should_default_missing_base_weight_to_equal_share(self) -> None:
        candles = {p: flat() for p in PAIRS}
        weights = calculate_target_weights(PAIRS, PRICES, candles, {"BTC-EUR": 1 / 3})
        assert weights == pytest.approx({p: 1 / 3 for p in PAIRS})

    def test_should_ignore_negative_advisory_weights(self) -> None:
        weights = calculate_target_weights(
            PAIRS, PRICES, {}, {}, advisory_weights={"BTC-EUR": -0.5, "ETH-EUR": 1.0}
        )
        assert weights == {"BTC-EUR": 0.0, "ETH-EUR": 1.0, "SOL-EUR": 0.0}

    def test_should_fall_back_to_equal_weights_for_unusable_advisory(self) -> None:
        weights = calculate_target_weights(
            PAIRS,
            PRICES,
            {},
            {},
            advisory_weights={"BTC-EUR": -1.0, "ETH-EUR": float("nan"), "SOL-EUR": float("inf")},
        )
        assert weights == pytest.approx({p: 1 / 3 for p in PAIRS})


class TestTargetWeightBounds:
    @pytest.mark.parametrize("seed", range(5))
    def test_should_sum_to_one_without_negatives(self, seed) -> None:
        rng = random.Random(seed)

        for _ in range(200):
            base = {p: rng.choice([0.0, rng.uniform(0, 1)]) for p in PAIRS}
            candles = {
                p: make_candles([rng.uniform(1, 1000) for _ in range(rng.randint(0, 30))])
                for p in PAIRS
            }
            advisory = None
            if rng.random() < 0.3:
                advisory = {p: rng.uniform(-2, 2) for p in rng.sample(PAIRS, rng.randint(1, 3))}
            oversold = rng.uniform(0, 50)
            overbought = rng.uniform(oversold, 100)

            weights = calculate_target_weights(
                PAIRS,
                PRICES,
                candles,
                base,
                advisory_weights=advisory,
                rsi_oversold=oversold,
                rsi_overbought=overbought,
            )

            assert set(weights) == set(PAIRS)
            assert abs(sum(weights.values()) - 1.0) <= 1e-9
            assert all(0.0 <= w <= 1.0 for w in weights.values())
