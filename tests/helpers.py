from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, Optional, Sequence

from backtester.market_data import Bar, BarSeries
from backtester.simulator import ExitReason, Trade
from backtester.strategy import Condition, SizingMethod, SizingPolicy, StrategyDefinition

START = datetime(2023, 1, 2)


def make_bar(index: int, price: float, spread: float = 1.0, start: datetime = START) -> Bar:
    return Bar(
        timestamp=start + timedelta(days=index),
        open=price,
        high=price + spread,
        low=price - spread,
        close=price,
        volume=1000.0,
    )


def make_series(prices: Sequence[float], symbol: str = "TEST", start: datetime = START) -> BarSeries:
    return BarSeries(symbol, "1day", [make_bar(i, price, start=start) for i, price in enumerate(prices)])


def flat_series(count: int, price: float = 100.0, symbol: str = "TEST") -> BarSeries:
    return make_series([price] * count, symbol=symbol)


def jump_prices(
    count: int,
    base: float = 100.0,
    segments: Iterable[tuple[int, int, float]] = (),
) -> list[float]:
    """``count`` prices at ``base`` with ``(start, stop, price)`` overrides."""
    prices = [base] * count
    for start, stop, price in segments:
        for index in range(start, min(stop, count)):
            prices[index] = price
    return prices


def make_strategy(
    entry_rules: Sequence[tuple[str, str, object]] = (("close", ">", 150),),
    exit_rules: Sequence[tuple[str, str, object]] = (),
    method: SizingMethod = SizingMethod.PERCENT_CAPITAL,
    size_value: float = 50.0,
    **overrides,
) -> StrategyDefinition:
    params = dict(
        name="test strategy",
        entry_conditions=tuple(Condition.build(*rule) for rule in entry_rules),
        exit_conditions=tuple(Condition.build(*rule) for rule in exit_rules),
        sizing=SizingPolicy(method=method, value=size_value),
    )
    params.update(overrides)
    return StrategyDefinition(**params)


def make_trade(pnl: float, bars_held: int = 1, number: int = 1) -> Trade:
    entry_time = START + timedelta(days=number)
    return Trade(
        number=number,
        symbol="TEST",
        direction="LONG",
        entry_time=entry_time,
        entry_price=100.0,
        exit_time=entry_time + timedelta(days=bars_held),
        exit_price=100.0 + pnl / 10.0,
        shares=10,
        position_size=1000.0,
        gross_pnl=pnl,
        pnl=pnl,
        pnl_pct=pnl / 1000.0 * 100.0,
        commission=0.0,
        slippage=0.0,
        exit_reason=ExitReason.SIGNAL,
        mae=0.0,
        mfe=0.0,
        bars_held=bars_held,
    )


class StaticBarProvider:
    def __init__(self, bars: Optional[dict[str, Sequence[Bar]]] = None) -> None:
        self.bars = dict(bars or {})
        self.calls: list[tuple[str, str]] = []

    def fetch_bars(self, symbol: str, timeframe: str) -> list[Bar]:
        self.calls.append((symbol, timeframe))
        return list(self.bars.get(symbol, []))
