# tradelab/execution/rebalance.py

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Mapping

BUY = "BUY"
SELL = "SELL"


@dataclass(frozen=True)
class RebalanceOrder:
    pair: str
    side: str          # BUY | SELL
    amount_eur: float  # always positive


def compute_rebalance_trades(
    current_weights: Mapping[str, float],
    target_weights: Mapping[str, float],
    total_value: float,
    prices: Mapping[str, float],
    min_trade_size: float,
    max_trade_percent: float,
) -> List[RebalanceOrder]:
    """
    Diff current vs target weights into BUY/SELL legs.

    Pairs are visited in `target_weights` insertion order so the same
    inputs always yield the same order list. Legs below `min_trade_size`
    EUR are dropped, the rest are capped at `total_value * max_trade_percent`.
    """
    orders: List[RebalanceOrder] = []
    max_size = total_value * max_trade_percent

    for pair, target in target_weights.items():
        current = current_weights.get(pair, 0.0)
        delta_eur = (target - current) * total_value

        # dust
        if abs(delta_eur) < min_trade_size:
            continue

        amount = min(abs(delta_eur), max_size)
        if amount <= 0:
            continue

        orders.append(
            RebalanceOrder(
                pair=pair,
                side=BUY if delta_eur > 0 else SELL,
                amount_eur=amount,
            )
        )

    return orders
