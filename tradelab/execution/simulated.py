from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from tradelab.execution.rebalance import BUY, RebalanceOrder
from tradelab.strategies.portfolio_metrics import QUOTE_CURRENCY, coin_for_pair

DEFAULT_SLIPPAGE = 0.001  # 0.1%, always against the trader


@dataclass(frozen=True)
class Fill:
    pair: str
    side: str
    amount_eur: float
    price: float       # post-slippage
    quantity: float    # coin units moved


class SimulatedExecutionEngine:
    """
    Paper-trading / backtest execution engine.

    - No exchange calls
    - Immediate full fills
    - Adverse slippage: buys at price * (1 + s), sells at price * (1 - s)

    Fills mutate the caller's balance mapping in place, one order at a
    time, so every order sees the balances left by the previous one.
    """

    def __init__(self, slippage: float = DEFAULT_SLIPPAGE):
        if not 0 <= slippage < 1:
            raise ValueError(f"slippage must be within [0, 1), got {slippage}")
        self.slippage = slippage

    def effective_price(self, side: str, price: float) -> float:
        if side == BUY:
            return price * (1 + self.slippage)
        return price * (1 - self.slippage)

    def fill(
        self,
        balances: Dict[str, float],
        order: RebalanceOrder,
        price: float,
    ) -> Optional[Fill]:
        """
        Apply `order` to `balances` at `price` (pre-slippage).

        Returns None when the order cannot be filled at all (unknown pair,
        non-positive price, nothing left to sell).
        """
        coin = coin_for_pair(order.pair)
        if coin is None or price <= 0:
            return None

        fill_price = self.effective_price(order.side, price)
        amount = order.amount_eur
        quantity = amount / fill_price

        if order.side == BUY:
            balances[QUOTE_CURRENCY] = balances.get(QUOTE_CURRENCY, 0.0) - amount
            balances[coin] = balances.get(coin, 0.0) + quantity
        else:
            held = balances.get(coin, 0.0)
            if held <= 0:
                return None
            # never sell more coin than is held
            if quantity > held:
                quantity = held
                amount = quantity * fill_price
            balances[QUOTE_CURRENCY] = balances.get(QUOTE_CURRENCY, 0.0) + amount
            balances[coin] = held - quantity

        return Fill(
            pair=order.pair,
            side=order.side,
            amount_eur=amount,
            price=fill_price,
            quantity=quantity,
        )
