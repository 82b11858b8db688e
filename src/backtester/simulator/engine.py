"""Bar-by-bar strategy simulation."""

from __future__ import annotations

from typing import Callable, Optional

from loguru import logger

from backtester.errors import BacktestCancelled, InsufficientDataError
from backtester.market_data.models import Bar, BarSeries
from backtester.simulator.models import EquityPoint, PendingEntry, SimulationResult, Trade
from backtester.simulator.positions import PositionManager
from backtester.strategy.indicators import WARMUP_BARS, Indicator, IndicatorSnapshot, IndicatorTable
from backtester.strategy.models import StrategyDefinition
from backtester.strategy.rules import matches_all
from backtester.strategy.sizer import PositionSizer

CancelCheck = Callable[[], bool]


class BacktestSimulator:
    """Replays one bar series through one strategy.

    The loop starts at the first bar with a full 200-bar history and moves
    strictly forward. Signals seen on a bar are acted on at the next bar:
    entries fill at its open and signal exits settle at its close, both with
    slippage applied against the trader. Nothing opens on the final bar: open
    positions are closed there at the close.
    """

    def __init__(self, strategy: StrategyDefinition) -> None:
        self.strategy = strategy
        self.sizer = PositionSizer(strategy.sizing)

    def run(self, series: BarSeries, cancel: Optional[CancelCheck] = None) -> SimulationResult:
        if len(series) < WARMUP_BARS:
            raise InsufficientDataError(len(series), WARMUP_BARS)

        strategy = self.strategy
        manager = PositionManager(strategy, series.symbol, strategy.initial_capital)
        trades: list[Trade] = []
        equity_curve: list[EquityPoint] = []
        pending: Optional[PendingEntry] = None
        previous: Optional[IndicatorSnapshot] = None
        table = IndicatorTable(series)
        first = WARMUP_BARS - 1
        last = len(series) - 1

        logger.info(
            "Simulating {} on {} bars ({} after warm-up)",
            strategy.name,
            len(series),
            len(series) - first,
        )

        for index in range(first, len(series)):
            if cancel is not None and cancel():
                raise BacktestCancelled(index)

            bar = series[index]
            snapshot = table.snapshot(index)

            if pending is not None:
                if index < last:
                    self._fill(manager, bar, pending)
                else:
                    logger.debug("Entry signal from {} dropped at the final bar", pending.signal_time)
                pending = None

            trades.extend(manager.update(bar, snapshot))

            if index == last:
                trades.extend(manager.close_all(bar, snapshot))
            else:
                manager.flag_exit_signals(strategy.exit_conditions, snapshot, previous)
                if manager.open_count < strategy.max_positions and matches_all(
                    strategy.entry_conditions, snapshot, previous
                ):
                    pending = PendingEntry(
                        signal_time=bar.timestamp,
                        snapshot=snapshot.to_dict(),
                        volatility=snapshot.value(Indicator.ATR),
                    )

            equity_curve.append(EquityPoint(time=bar.timestamp, equity=manager.equity(bar.close)))
            previous = snapshot

        logger.info(
            "Simulation of {} finished: {} trades, final capital {:.2f}",
            strategy.name,
            len(trades),
            manager.cash,
        )
        return SimulationResult(
            symbol=series.symbol,
            initial_capital=strategy.initial_capital,
            final_capital=manager.cash,
            trades=trades,
            equity_curve=equity_curve,
            bars_simulated=len(series) - first,
        )

    def _fill(self, manager: PositionManager, bar: Bar, pending: PendingEntry) -> None:
        fill_price = bar.open * (1.0 + self.strategy.slippage_pct / 100.0)
        sized = self.sizer.plan(manager.cash, fill_price, pending.volatility)
        if not sized.allow:
            logger.debug("Entry signal from {} not filled: {}", pending.signal_time, sized.reason)
            return
        manager.open(bar, sized.shares, sized.dollar_amount, pending.snapshot)
