from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Sequence


@dataclass(frozen=True)
class Candle:
    start: int          # epoch seconds
    open: float
    high: float
    low: float
    close: float
    volume: float

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> "Candle":
        """Build from a Coinbase-style dict (numeric fields may be strings)."""
        return cls(
            start=int(raw["start"]),
            open=float(raw["open"]),
            high=float(raw["high"]),
            low=float(raw["low"]),
            close=float(raw["close"]),
            volume=float(raw["volume"]),
        )

    def to_raw(self) -> Dict[str, Any]:
        return {
            "start": self.start,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
        }


def normalize_coinbase_candles(raw: Iterable[Mapping[str, Any]]) -> List[Candle]:
    """
    Convert Coinbase OHLCV candle dicts (newest first) into Candle objects
    in ascending chronological order, dropping duplicate start times.
    """
    return normalize_candles(Candle.from_raw(c) for c in raw)


def normalize_candles(candles: Iterable[Candle]) -> List[Candle]:
    """De-duplicate by start time (first occurrence wins) and sort ascending."""
    seen: Dict[int, Candle] = {}
    for c in candles:
        if c.start not in seen:
            seen[c.start] = c
    return sorted(seen.values(), key=lambda c: c.start)


def build_timeline(candles_map: Mapping[str, Sequence[Candle]]) -> List[int]:
    """Union of every candle start across pairs, ascending."""
    timestamps: set[int] = set()
    for candles in candles_map.values():
        for c in candles:
            timestamps.add(c.start)
    return sorted(timestamps)


def recent_candles(
    candles: Sequence[Candle],
    timestamp: int,
    count: int,
) -> List[Candle]:
    """
    Up to `count` candles with start <= timestamp, oldest -> newest.

    `candles` must already be ascending (see normalize_candles). Nothing
    after `timestamp` is ever returned.
    """
    if count <= 0:
        return []
    starts = [c.start for c in candles]
    end = bisect_right(starts, timestamp)
    return list(candles[max(0, end - count):end])
