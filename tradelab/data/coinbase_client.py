import asyncio
from typing import List, Dict, Any, Optional

from coinbase.rest import RESTClient

from tradelab.core.errors import ExternalFetchError
from tradelab.core.logger import get_logger
from tradelab.data.candle_normalizer import Candle, normalize_coinbase_candles

logger = get_logger(__name__)


class CoinbaseClient:
    """
    Thin wrapper around coinbase-advanced-py RESTClient for market data
    (candles and spot prices) in an async-friendly way.

    IMPORTANT:
    Coinbase Advanced requires UNIX timestamps (in seconds) as *strings* for
    start / end parameters on get_candles(), and returns at most 300 candles
    per request, newest first.

    Every SDK / HTTP failure is re-raised as ExternalFetchError.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        rest_client: Optional[Any] = None,
    ):
        self.client = rest_client or RESTClient(api_key=api_key, api_secret=api_secret)

    # ---------------------------------------------------------------
    # Helper to call sync RESTClient inside async world
    # ---------------------------------------------------------------
    async def _run_sync(self, fn, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, lambda: fn(*args, **kwargs)
        )

    # ---------------------------------------------------------------
    # Raw candles
    # ---------------------------------------------------------------
    async def fetch_candles(
        self,
        product_id: str,
        start: int,
        end: int,
        granularity: str = "FOUR_HOUR",
    ) -> List[Dict[str, Any]]:
        """
        Fetch one window of candles by UNIX timestamps, as plain dicts in
        the order Coinbase returns them (newest first).
        """
        try:
            response = await self._run_sync(
                self.client.get_candles,
                product_id=product_id,
                start=str(start),
                end=str(end),
                granularity=granularity,
            )
        except Exception as exc:
            raise ExternalFetchError(
                f"Coinbase candles request failed for {product_id} "
                f"[{start}, {end}] {granularity}: {exc}",
                pair=product_id,
            ) from exc

        candles = response.candles or []

        return [
            {
                "start": int(c.start),
                "open": float(c.open),
                "high": float(c.high),
                "low": float(c.low),
                "close": float(c.close),
                "volume": float(c.volume),
            }
            for c in candles
        ]

    async def get_candles(
        self,
        pair: str,
        granularity: str,
        start: int,
        end: int,
    ) -> List[Candle]:
        """Single-window candles, normalised to ascending order."""
        return normalize_coinbase_candles(
            await self.fetch_candles(pair, start, end, granularity)
        )

    # ---------------------------------------------------------------
    # Spot price
    # ---------------------------------------------------------------
    async def get_price(self, pair: str) -> float:
        try:
            product = await self._run_sync(self.client.get_product, product_id=pair)
            price = float(product.price)
        except Exception as exc:
            raise ExternalFetchError(
                f"Coinbase price request failed for {pair}: {exc}", pair=pair
            ) from exc

        if price <= 0:
            raise ExternalFetchError(f"Coinbase returned no price for {pair}", pair=pair)
        return price
