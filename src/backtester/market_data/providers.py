"""Historical bar providers used to feed the simulator."""

from __future__ import annotations

import csv
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Protocol

from loguru import logger

from backtester.market_data.models import Bar


class BarProvider(Protocol):
    def fetch_bars(self, symbol: str, timeframe: str) -> list[Bar]: ...


def _parse_dt(value: str) -> datetime:
    value = value.strip()
    if value.endswith("Z"):
        value = value.replace("Z", "+00:00")
    return datetime.fromisoformat(value)


class CsvBarProvider:
    """Reads ``<SYMBOL>_<timeframe>.csv`` files from a directory."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def path_for(self, symbol: str, timeframe: str) -> Path:
        safe_symbol = symbol.replace("/", "-").upper()
        return self.directory / f"{safe_symbol}_{timeframe}.csv"

    def fetch_bars(self, symbol: str, timeframe: str) -> list[Bar]:
        path = self.path_for(symbol, timeframe)
        if not path.exists():
            logger.warning("No bar file for {} {} at {}", symbol, timeframe, path)
            return []

        bars: list[Bar] = []
        with path.open("r", encoding="utf-8", newline="") as handle:
            for row in csv.DictReader(handle):
                bars.append(
                    Bar(
                        timestamp=_parse_dt(row["datetime"]),
                        open=float(row["open"]),
                        high=float(row["high"]),
                        low=float(row["low"]),
                        close=float(row["close"]),
                        volume=float(row.get("volume") or 0.0),
                    )
                )
        bars.sort(key=lambda bar: bar.timestamp)
        logger.debug("Loaded {} bars for {} {} from {}", len(bars), symbol, timeframe, path)
        return bars


class CachedBarProvider:
    """Bounded TTL cache in front of another provider.

    The cache is an explicit object owned by whoever builds the service, so
    independent runs only share it when they are handed the same instance.
    """

    def __init__(
        self,
        inner: BarProvider,
        ttl_seconds: float = 300.0,
        max_entries: int = 32,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.inner = inner
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock or time.monotonic
        self._entries: dict[tuple[str, str], tuple[float, tuple[Bar, ...]]] = {}
        self._lock = threading.Lock()

    def fetch_bars(self, symbol: str, timeframe: str) -> list[Bar]:
        key = (symbol, timeframe)
        now = self._clock()
        with self._lock:
            cached = self._entries.get(key)
            if cached is not None and now - cached[0] < self.ttl_seconds:
                return list(cached[1])

        bars = tuple(self.inner.fetch_bars(symbol, timeframe))
        with self._lock:
            self._entries.pop(key, None)
            while len(self._entries) >= self.max_entries:
                oldest = min(self._entries, key=lambda item: self._entries[item][0])
                del self._entries[oldest]
            self._entries[key] = (now, bars)
        return list(bars)

    def invalidate(self, symbol: str, timeframe: str) -> None:
        with self._lock:
            self._entries.pop((symbol, timeframe), None)

    def __len__(self) -> int:
        return len(self._entries)
