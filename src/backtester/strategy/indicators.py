"""Indicator snapshots computed from the bars visible at a given index.

Every value at bar ``i`` reads ``bars[0..i]`` only. EMA-family values (EMA,
MACD and its signal line) are seeded with the simple average of their first
``period`` inputs; Wilder-smoothed values (RSI, ATR, ADX) are seeded the same
way before the recursive update starts.
"""

from __future__ import annotations

from enum import Enum
from typing import Iterator, Mapping, Optional, Sequence

from backtester.market_data.models import Bar

WARMUP_BARS = 200


class Indicator(str, Enum):
    OPEN = "open"
    HIGH = "high"
    LOW = "low"
    CLOSE = "close"
    VOLUME = "volume"
    RSI_9 = "RSI_9"
    RSI = "RSI"
    RSI_25 = "RSI_25"
    SMA_10 = "SMA_10"
    SMA_20 = "SMA_20"
    SMA_50 = "SMA_50"
    SMA_100 = "SMA_100"
    SMA_200 = "SMA_200"
    EMA_10 = "EMA_10"
    EMA_20 = "EMA_20"
    EMA_50 = "EMA_50"
    EMA_100 = "EMA_100"
    EMA_200 = "EMA_200"
    MACD = "MACD"
    MACD_SIGNAL = "MACD_signal"
    MACD_HISTOGRAM = "MACD_histogram"
    BB_UPPER = "BB_upper"
    BB_MIDDLE = "BB_middle"
    BB_LOWER = "BB_lower"
    BB_WIDTH = "BB_width"
    ATR = "ATR"
    ATR_20 = "ATR_20"
    STOCH_K = "STOCH_k"
    STOCH_D = "STOCH_d"
    ADX = "ADX"

    @classmethod
    def parse(cls, name: str) -> "Indicator":
        try:
            return cls(name)
        except ValueError as exc:
            raise ValueError(f"Unknown indicator: {name}") from exc


class IndicatorSnapshot(Mapping[str, float]):
    """Read-only indicator values as of one bar.

    Indicators without enough history are absent; ``value`` returns ``None``
    for them instead of raising.
    """

    def __init__(self, values: Mapping[str, float]) -> None:
        self._values = dict(values)

    def __getitem__(self, key: str) -> float:
        return self._values[_key(key)]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __contains__(self, key: object) -> bool:
        if isinstance(key, (str, Indicator)):
            return _key(key) in self._values
        return False

    def __repr__(self) -> str:
        return f"IndicatorSnapshot({self._values!r})"

    def value(self, key: str | Indicator) -> Optional[float]:
        return self._values.get(_key(key))

    def to_dict(self) -> dict[str, float]:
        return dict(self._values)


def _key(key: str | Indicator) -> str:
    return key.value if isinstance(key, Indicator) else key


def _ema_tail(values: Sequence[float], period: int) -> list[float]:
    """EMA values from index ``period - 1`` onward, SMA-seeded."""
    if len(values) < period:
        return []
    alpha = 2.0 / (period + 1.0)
    ema = sum(values[:period]) / period
    out = [ema]
    for value in values[period:]:
        ema = alpha * value + (1.0 - alpha) * ema
        out.append(ema)
    return out


def _wilder_tail(values: Sequence[float], period: int) -> list[float]:
    """Wilder-smoothed values from index ``period - 1`` onward, SMA-seeded."""
    if len(values) < period:
        return []
    smoothed = sum(values[:period]) / period
    out = [smoothed]
    for value in values[period:]:
        smoothed = (smoothed * (period - 1) + value) / period
        out.append(smoothed)
    return out


def _aligned(tail: Sequence[float], first: int, length: int) -> list[Optional[float]]:
    column: list[Optional[float]] = [None] * length
    for offset, value in enumerate(tail):
        column[first + offset] = value
    return column


def _rsi(avg_gain: float, avg_loss: float) -> float:
    if avg_gain == 0 and avg_loss == 0:
        return 50.0
    if avg_loss == 0:
        return 100.0
    return 100.0 - (100.0 / (1.0 + avg_gain / avg_loss))


def _dx(tr_sum: float, plus_sum: float, minus_sum: float) -> float:
    if tr_sum <= 0:
        return 0.0
    plus_di = 100.0 * plus_sum / tr_sum
    minus_di = 100.0 * minus_sum / tr_sum
    denom = plus_di + minus_di
    if denom <= 0:
        return 0.0
    return 100.0 * abs(plus_di - minus_di) / denom


class IndicatorTable:
    """Every indicator column for a run of bars, built in one forward pass.

    The value at position ``i`` is computed from ``bars[0..i]`` only, so a
    table over a whole series gives the same snapshot at ``i`` as a table over
    its first ``i + 1`` bars.
    """

    def __init__(self, bars: Sequence[Bar]) -> None:
        self.bars = tuple(bars)
        self.closes = [bar.close for bar in self.bars]
        self.highs = [bar.high for bar in self.bars]
        self.lows = [bar.low for bar in self.bars]
        self._columns: dict[Indicator, list[Optional[float]]] = {}
        self._build()

    def __len__(self) -> int:
        return len(self.bars)

    def snapshot(self, index: int) -> IndicatorSnapshot:
        if index < 0 or index >= len(self.bars):
            raise IndexError(f"Bar index {index} out of range for {len(self.bars)} bars")
        bar = self.bars[index]
        values: dict[str, float] = {
            Indicator.OPEN.value: bar.open,
            Indicator.HIGH.value: bar.high,
            Indicator.LOW.value: bar.low,
            Indicator.CLOSE.value: bar.close,
            Indicator.VOLUME.value: bar.volume,
        }
        for indicator, column in self._columns.items():
            value = column[index]
            if value is not None:
                values[indicator.value] = value
        return IndicatorSnapshot(values)

    def _build(self) -> None:
        for indicator, period in ((Indicator.RSI_9, 9), (Indicator.RSI, 14), (Indicator.RSI_25, 25)):
            self._columns[indicator] = self._rsi(period)

        for period in (10, 20, 50, 100, 200):
            self._columns[Indicator(f"SMA_{period}")] = self._sma(period)
            self._columns[Indicator(f"EMA_{period}")] = _aligned(
                _ema_tail(self.closes, period), period - 1, len(self.bars)
            )

        self._macd(fast=12, slow=26, signal=9)
        self._bollinger(window=20, stddevs=2.0)

        true_ranges = self._true_ranges()
        self._columns[Indicator.ATR] = _aligned(_wilder_tail(true_ranges, 14), 14, len(self.bars))
        self._columns[Indicator.ATR_20] = _aligned(_wilder_tail(true_ranges, 20), 20, len(self.bars))

        self._stochastic(period=14, smooth=3)
        self._columns[Indicator.ADX] = self._adx(true_ranges, 14)

    def _sma(self, window: int) -> list[Optional[float]]:
        column: list[Optional[float]] = [None] * len(self.closes)
        for index in range(window - 1, len(self.closes)):
            column[index] = sum(self.closes[index - window + 1 : index + 1]) / window
        return column

    def _rsi(self, period: int) -> list[Optional[float]]:
        deltas = [self.closes[i] - self.closes[i - 1] for i in range(1, len(self.closes))]
        gains = _wilder_tail([max(delta, 0.0) for delta in deltas], period)
        losses = _wilder_tail([max(-delta, 0.0) for delta in deltas], period)
        return _aligned([_rsi(gain, loss) for gain, loss in zip(gains, losses)], period, len(self.closes))

    def _macd(self, fast: int, slow: int, signal: int) -> None:
        count = len(self.closes)
        slow_tail = _ema_tail(self.closes, slow)
        fast_tail = _ema_tail(self.closes, fast)
        offset = slow - fast
        line = [fast_tail[offset + i] - slow_value for i, slow_value in enumerate(slow_tail)]
        signal_tail = _ema_tail(line, signal)
        histogram = [line[signal - 1 + i] - value for i, value in enumerate(signal_tail)]

        self._columns[Indicator.MACD] = _aligned(line, slow - 1, count)
        self._columns[Indicator.MACD_SIGNAL] = _aligned(signal_tail, slow + signal - 2, count)
        self._columns[Indicator.MACD_HISTOGRAM] = _aligned(histogram, slow + signal - 2, count)

    def _bollinger(self, window: int, stddevs: float) -> None:
        count = len(self.closes)
        upper: list[Optional[float]] = [None] * count
        middle: list[Optional[float]] = [None] * count
        lower: list[Optional[float]] = [None] * count
        width: list[Optional[float]] = [None] * count
        for index in range(window - 1, count):
            slice_ = self.closes[index - window + 1 : index + 1]
            mean = sum(slice_) / window
            deviation = (sum((value - mean) ** 2 for value in slice_) / window) ** 0.5
            upper[index] = mean + stddevs * deviation
            middle[index] = mean
            lower[index] = mean - stddevs * deviation
            width[index] = upper[index] - lower[index]
        self._columns[Indicator.BB_UPPER] = upper
        self._columns[Indicator.BB_MIDDLE] = middle
        self._columns[Indicator.BB_LOWER] = lower
        self._columns[Indicator.BB_WIDTH] = width

    def _true_ranges(self) -> list[float]:
        ranges = []
        for index in range(1, len(self.closes)):
            high = self.highs[index]
            low = self.lows[index]
            prev_close = self.closes[index - 1]
            ranges.append(max(high - low, abs(high - prev_close), abs(low - prev_close)))
        return ranges

    def _stochastic(self, period: int, smooth: int) -> None:
        count = len(self.closes)
        k_column: list[Optional[float]] = [None] * count
        d_column: list[Optional[float]] = [None] * count
        for end in range(period - 1, count):
            highest = max(self.highs[end - period + 1 : end + 1])
            lowest = min(self.lows[end - period + 1 : end + 1])
            if highest == lowest:
                k_column[end] = 50.0
            else:
                k_column[end] = 100.0 * (self.closes[end] - lowest) / (highest - lowest)
        for end in range(period + smooth - 2, count):
            recent = k_column[end - smooth + 1 : end + 1]
            d_column[end] = sum(recent) / smooth
        self._columns[Indicator.STOCH_K] = k_column
        self._columns[Indicator.STOCH_D] = d_column

    def _adx(self, true_ranges: Sequence[float], period: int) -> list[Optional[float]]:
        count = len(self.closes)
        if len(true_ranges) < period:
            return [None] * count
        plus_dm: list[float] = []
        minus_dm: list[float] = []
        for idx in range(1, count):
            up_move = self.highs[idx] - self.highs[idx - 1]
            down_move = self.lows[idx - 1] - self.lows[idx]
            plus_dm.append(up_move if up_move > down_move and up_move > 0 else 0.0)
            minus_dm.append(down_move if down_move > up_move and down_move > 0 else 0.0)

        tr_sum = sum(true_ranges[:period])
        plus_sum = sum(plus_dm[:period])
        minus_sum = sum(minus_dm[:period])
        dx_values = [_dx(tr_sum, plus_sum, minus_sum)]
        for tr, plus, minus in zip(true_ranges[period:], plus_dm[period:], minus_dm[period:]):
            tr_sum = tr_sum - tr_sum / period + tr
            plus_sum = plus_sum - plus_sum / period + plus
            minus_sum = minus_sum - minus_sum / period + minus
            dx_values.append(_dx(tr_sum, plus_sum, minus_sum))
        # dx_values[0] belongs to bar ``period``; ADX needs ``period`` of them.
        return _aligned(_wilder_tail(dx_values, period), 2 * period - 1, count)


def compute_snapshot(series: Sequence[Bar], index: int) -> IndicatorSnapshot:
    """Snapshot at ``index`` from a table over ``series[0..index]``.

    A simulation should build one :class:`IndicatorTable` for the whole series
    and call ``snapshot`` per bar instead.
    """
    if index < 0 or index >= len(series):
        raise IndexError(f"Bar index {index} out of range for {len(series)} bars")
    return IndicatorTable(series[: index + 1]).snapshot(index)
