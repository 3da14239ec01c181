from types import SimpleNamespace

import pytest

from fakes import FakeCandleSource, WindowedCandleClient, make_candles
from tradelab.core.errors import ExternalFetchError
from tradelab.data.coinbase_client import CoinbaseClient
from tradelab.data.historical_loader import HistoricalLoader, fetch_historical_candles

HOUR = 3600
START = 400_000 * HOUR
END = START + 700 * HOUR


@pytest.fixture
def client() -> WindowedCandleClient:
    return WindowedCandleClient(step=HOUR)


@pytest.fixture
def loader(client, store, clock) -> HistoricalLoader:
    return HistoricalLoader(client, store, request_delay=0, clock=clock)


class TestHistoricalLoader:
    @pytest.mark.asyncio
    async def test_should_page_backwards_in_300_candle_windows(self, loader, client) -> None:
        candles = await loader.get_candles("BTC-EUR", "ONE_HOUR", START, END)

        assert len(candles) == 700
        assert candles[0].start == START
        assert [c.start for c in candles] == sorted({c.start for c in candles})
        assert [(s, e) for _, s, e in client.calls] == [
            (END - 300 * HOUR, END),
            (END - 600 * HOUR, END - 300 * HOUR),
            (START, END - 600 * HOUR),
        ]

    @pytest.mark.asyncio
    async def test_should_serve_fresh_cache(self, loader, client, store) -> None:
        await loader.get_candles("BTC-EUR", "ONE_HOUR", START, END)
        cached = await loader.get_candles("BTC-EUR", "ONE_HOUR", START, END)

        assert len(client.calls) == 3
        assert len(cached) == 700
        assert ("BTC-EUR", "ONE_HOUR", f"{START}-ONE_HOUR") in store.cache

    @pytest.mark.asyncio
    async def test_should_refetch_stale_cache(self, loader, client, clock) -> None:
        await loader.get_candles("BTC-EUR", "ONE_HOUR", START, END)
        clock.advance(hours=7)
        await loader.get_candles("BTC-EUR", "ONE_HOUR", START, END)
        assert len(client.calls) == 6

    @pytest.mark.asyncio
    async def test_should_refetch_short_cache(self, loader, client, store, clock) -> None:
        short = [c.to_raw() for c in make_candles([1.0] * 10, start=START, step=HOUR)]
        await store.cache_candles("BTC-EUR", "ONE_HOUR", f"{START}-ONE_HOUR", short, clock())

        candles = await loader.get_candles("BTC-EUR", "ONE_HOUR", START, END)
        assert len(candles) == 700
        assert len(client.calls) == 3

    @pytest.mark.asyncio
    async def test_should_reject_unknown_granularity(self, loader) -> None:
        with pytest.raises(ValueError):
            await loader.get_candles("BTC-EUR", "ONE_WEEK", START, END)


class TestFetchHistoricalCandles:
    @pytest.mark.asyncio
    async def test_should_fetch_every_pair(self) -> None:
        source = FakeCandleSource({p: make_candles([1, 2]) for p in ("A-EUR", "B-EUR", "C-EUR")})
        result = await fetch_historical_candles(
            source, ("A-EUR", "B-EUR", "C-EUR"), 0, 100, batch_size=2, batch_delay=0
        )
        assert set(result) == {"A-EUR", "B-EUR", "C-EUR"}
        assert len(source.calls) == 3

    @pytest.mark.asyncio
    async def test_should_propagate_first_failure(self) -> None:
        source = FakeCandleSource({"A-EUR": make_candles([1])}, failing=["B-EUR"])
        with pytest.raises(ExternalFetchError):
            await fetch_historical_candles(source, ("A-EUR", "B-EUR"), 0, 100, batch_delay=0)


class FakeRestClient:
    def __init__(self, fail=False):
        self.fail = fail

    def get_candles(self, product_id, start, end, granularity):
        if self.fail:
            raise RuntimeError("429 Too Many Requests")
        assert isinstance(start, str) and isinstance(end, str)
        return SimpleNamespace(
            candles=[
                SimpleNamespace(start="7200", open="2", high="2", low="2", close="2", volume="1"),
                SimpleNamespace(start="3600", open="1", high="1", low="1", close="1", volume="1"),
            ]
        )

    def get_product(self, product_id):
        if self.fail:
            raise RuntimeError("boom")
        return SimpleNamespace(price="123.45")


class TestCoinbaseClient:
    @pytest.mark.asyncio
    async def test_should_return_ascending_candles(self) -> None:
        client = CoinbaseClient(rest_client=FakeRestClient())
        candles = await client.get_candles("BTC-EUR", "ONE_HOUR", 0, 7200)
        assert [c.start for c in candles] == [3600, 7200]
        assert candles[-1].close == 2.0

    @pytest.mark.asyncio
    async def test_should_wrap_sdk_errors(self) -> None:
        client = CoinbaseClient(rest_client=FakeRestClient(fail=True))
        with pytest.raises(ExternalFetchError) as exc_info:
            await client.get_candles("ETH-EUR", "ONE_HOUR", 0, 7200)
        assert exc_info.value.pair == "ETH-EUR"

        with pytest.raises(ExternalFetchError):
            await client.get_price("ETH-EUR")

    @pytest.mark.asyncio
    async def test_should_parse_spot_price(self) -> None:
        client = CoinbaseClient(rest_client=FakeRestClient())
        assert await client.get_price("BTC-EUR") == pytest.approx(123.45)
