from __future__ import annotations

import asyncio
import datetime
import math
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from tradelab.config import GRANULARITY_SECONDS
from tradelab.core.logger import get_logger
from tradelab.data.candle_normalizer import Candle, normalize_candles

logger = get_logger(__name__)

CACHE_TTL = datetime.timedelta(hours=6)


class CandleSource(Protocol):
    async def get_candles(
        self, pair: str, granularity: str, start: int, end: int
    ) -> List[Candle]: ...


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class HistoricalLoader:
    """
    Cache-backed historical candle source.

    Pages the Coinbase API backwards from `end` in windows of at most
    300 candles, pausing between requests, then de-duplicates and sorts
    ascending. Results are cached per (pair, granularity, window start)
    and served from the cache for 6 hours when the cached series covers
    the requested window.

    `cache` is any object with the DB facade's candle-cache methods
    (get_cached_candles / cache_candles); None disables caching.
    """

    MAX_CANDLES_PER_REQUEST = 300  # Coinbase API limit

    def __init__(
        self,
        client: Any,
        cache: Optional[Any] = None,
        *,
        request_delay: float = 0.1,
        clock: Callable[[], datetime.datetime] = _utcnow,
    ):
        self.client = client
        self.cache = cache
        self.request_delay = request_delay
        self.clock = clock

    # ----------------------------------------------------------------------
    async def get_candles(
        self,
        pair: str,
        granularity: str,
        start: int,
        end: int,
    ) -> List[Candle]:
        gran_sec = self._granularity_seconds(granularity)
        candles_needed = math.ceil((end - start) / gran_sec)
        cache_key = f"{start}-{granularity}"

        cached = await self._read_cache(pair, granularity, cache_key)
        if cached is not None and len(cached) >= candles_needed:
            logger.debug("[HISTORICAL LOADER] cache hit %s %s (%d candles)", pair, granularity, len(cached))
            return cached

        logger.info(
            "[HISTORICAL LOADER] Loading %s %s %s -> %s",
            pair,
            granularity,
            start,
            end,
        )

        # FETCH IN REVERSE WINDOWS (Coinbase requirement)
        collected: List[Candle] = []
        cursor_end = end

        while cursor_end > start:
            batch = min(
                self.MAX_CANDLES_PER_REQUEST,
                math.ceil((cursor_end - start) / gran_sec),
            )
            cursor_start = cursor_end - batch * gran_sec

            window = await self.client.get_candles(pair, granularity, cursor_start, cursor_end)
            if not window:
                logger.warning(
                    "[HISTORICAL LOADER] No candles %s %s-%s", pair, cursor_start, cursor_end
                )
            collected.extend(window)

            cursor_end = cursor_start
            if cursor_end > start and self.request_delay > 0:
                await asyncio.sleep(self.request_delay)  # rate limit protection

        candles = normalize_candles(collected)
        await self._write_cache(pair, granularity, cache_key, candles)

        logger.info("[HISTORICAL LOADER] DONE %s: %d candles", pair, len(candles))
        return candles

    # ----------------------------------------------------------------------
    def _granularity_seconds(self, granularity: str) -> int:
        if granularity not in GRANULARITY_SECONDS:
            raise ValueError(f"Unknown granularity: {granularity}")
        return GRANULARITY_SECONDS[granularity]

    async def _read_cache(
        self, pair: str, granularity: str, cache_key: str
    ) -> Optional[List[Candle]]:
        if self.cache is None:
            return None

        entry = await self.cache.get_cached_candles(pair, granularity, cache_key)
        if entry is None:
            return None

        raw, fetched_at = entry
        if self.clock() - fetched_at > CACHE_TTL:
            return None
        return normalize_candles(Candle.from_raw(c) for c in raw)

    async def _write_cache(
        self, pair: str, granularity: str, cache_key: str, candles: Sequence[Candle]
    ) -> None:
        if self.cache is None:
            return
        await self.cache.cache_candles(
            pair,
            granularity,
            cache_key,
            [c.to_raw() for c in candles],
            self.clock(),
        )


# --------------------------------------------------------------------------
# Multi-pair fetch
# --------------------------------------------------------------------------
async def fetch_historical_candles(
    source: CandleSource,
    pairs: Sequence[str],
    start: int,
    end: int,
    granularity: str = "FOUR_HOUR",
    *,
    batch_size: int = 2,
    batch_delay: float = 0.2,
) -> Dict[str, List[Candle]]:
    """
    Fetch every pair's candles, `batch_size` pairs concurrently, pausing
    `batch_delay` seconds between batches. Any failure propagates.
    """
    if batch_size <= 0:
        raise ValueError("batch_size must be positive")

    results: Dict[str, List[Candle]] = {}

    for i in range(0, len(pairs), batch_size):
        batch = pairs[i:i + batch_size]
        fetched = await asyncio.gather(
            *(source.get_candles(pair, granularity, start, end) for pair in batch)
        )
        for pair, candles in zip(batch, fetched):
            results[pair] = normalize_candles(candles)

        if i + batch_size < len(pairs) and batch_delay > 0:
            await asyncio.sleep(batch_delay)

    return results
