# tradelab/strategies/portfolio_metrics.py

from __future__ import annotations

from typing import Dict, Iterable, Mapping, Optional

QUOTE_CURRENCY = "EUR"


def coin_for_pair(pair: str) -> Optional[str]:
    """'BTC-EUR' -> 'BTC'. Pairs not quoted in EUR are not tradable here."""
    base, sep, quote = pair.partition("-")
    if not sep or not base or quote != QUOTE_CURRENCY:
        return None
    return base


def initial_balances(pairs: Iterable[str], capital_eur: float) -> Dict[str, float]:
    balances = {QUOTE_CURRENCY: float(capital_eur)}
    for pair in pairs:
        coin = coin_for_pair(pair)
        if coin is not None:
            balances.setdefault(coin, 0.0)
    return balances


# --------------------------------------------------------------------
# Valuation
# --------------------------------------------------------------------
def compute_portfolio_value(
    balances: Mapping[str, float],
    prices: Mapping[str, float],
) -> float:
    """EUR balance plus every coin balance marked at its pair price."""
    total = float(balances.get(QUOTE_CURRENCY, 0.0))
    for pair, price in prices.items():
        coin = coin_for_pair(pair)
        if coin and balances.get(coin):
            total += balances[coin] * price
    return total


def compute_current_weights(
    balances: Mapping[str, float],
    prices: Mapping[str, float],
) -> Dict[str, float]:
    """
    Share of total value held in each priced pair's coin.

    Returns {} for an empty / non-positive portfolio.
    """
    total_value = compute_portfolio_value(balances, prices)
    if total_value <= 0:
        return {}

    weights: Dict[str, float] = {}
    for pair, price in prices.items():
        coin = coin_for_pair(pair)
        if coin:
            weights[pair] = balances.get(coin, 0.0) * price / total_value
    return weights


def compute_drawdown(current_value: float, peak_value: float) -> float:
    """Fractional decline from the running peak (0 when peak <= 0)."""
    if peak_value <= 0:
        return 0.0
    return (peak_value - current_value) / peak_value
