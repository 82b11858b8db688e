"""Bar and bar-series data structures."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Iterable, Iterator, Sequence, overload


@dataclass(frozen=True)
class Bar:
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float

    def __post_init__(self) -> None:
        for name in ("open", "high", "low", "close", "volume"):
            value = getattr(self, name)
            if not math.isfinite(value) or value < 0:
                raise ValueError(f"Bar {name} must be finite and non-negative, got {value!r}")


def _as_start(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, time.min)


def _as_end(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, time.max)


def _comparable(value: datetime, reference: datetime) -> datetime:
    # Naive bounds compare against the wall-clock time of aware bars.
    if reference.tzinfo is None and value.tzinfo is not None:
        return value.replace(tzinfo=None)
    if reference.tzinfo is not None and value.tzinfo is None:
        return value.replace(tzinfo=reference.tzinfo)
    return value


class BarSeries(Sequence[Bar]):
    """Chronologically ascending, immutable bars for one symbol and interval.

    Gaps in time are tolerated; duplicated or out-of-order timestamps are not.
    """

    def __init__(self, symbol: str, timeframe: str, bars: Iterable[Bar]) -> None:
        self.symbol = symbol
        self.timeframe = timeframe
        self._bars: tuple[Bar, ...] = tuple(bars)
        for prev, bar in zip(self._bars, self._bars[1:]):
            if bar.timestamp <= prev.timestamp:
                raise ValueError(
                    f"Bar timestamps must be strictly increasing: {bar.timestamp} after {prev.timestamp}"
                )

    @overload
    def __getitem__(self, index: int) -> Bar: ...

    @overload
    def __getitem__(self, index: slice) -> tuple[Bar, ...]: ...

    def __getitem__(self, index):
        return self._bars[index]

    def __len__(self) -> int:
        return len(self._bars)

    def __iter__(self) -> Iterator[Bar]:
        return iter(self._bars)

    def __repr__(self) -> str:
        return f"BarSeries(symbol={self.symbol!r}, timeframe={self.timeframe!r}, bars={len(self._bars)})"

    def between(self, start: date | datetime, end: date | datetime) -> "BarSeries":
        lower = _as_start(start)
        upper = _as_end(end)
        kept = [bar for bar in self._bars if lower <= _comparable(bar.timestamp, lower) <= upper]
        return BarSeries(self.symbol, self.timeframe, kept)
