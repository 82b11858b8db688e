"""Open-position bookkeeping: stops, targets, signal exits and settlement."""

from __future__ import annotations

from typing import Iterable, Optional

from loguru import logger

from backtester.market_data.models import Bar
from backtester.simulator.models import ExitReason, OpenPosition, Trade
from backtester.strategy.indicators import IndicatorSnapshot
from backtester.strategy.models import Condition, StrategyDefinition
from backtester.strategy.rules import matches_all


class PositionManager:
    """Owns the cash ledger and every open position of one run.

    Cash is debited once when a position opens and credited once when it
    closes, so a position is never counted twice against capital.
    """

    def __init__(self, strategy: StrategyDefinition, symbol: str, cash: float) -> None:
        self.strategy = strategy
        self.symbol = symbol
        self.cash = cash
        self.positions: list[OpenPosition] = []
        self._commission_rate = strategy.commission_pct / 100.0
        self._slippage_rate = strategy.slippage_pct / 100.0
        self._next_number = 1

    @property
    def open_count(self) -> int:
        return len(self.positions)

    def market_value(self, price: float) -> float:
        return sum(position.market_value(price) for position in self.positions)

    def equity(self, price: float) -> float:
        return self.cash + self.market_value(price)

    def open(
        self,
        bar: Bar,
        shares: int,
        position_size: float,
        entry_snapshot: dict[str, float],
    ) -> Optional[OpenPosition]:
        fill_price = bar.open * (1.0 + self._slippage_rate)
        notional = shares * fill_price
        commission = notional * self._commission_rate
        total_cost = notional + commission
        if shares <= 0 or total_cost > self.cash:
            logger.debug(
                "Entry skipped at {}: cost {:.2f} exceeds cash {:.2f}", bar.timestamp, total_cost, self.cash
            )
            return None

        self.cash -= total_cost
        stop = self.strategy.stop_loss_pct
        target = self.strategy.take_profit_pct
        position = OpenPosition(
            number=self._next_number,
            symbol=self.symbol,
            entry_time=bar.timestamp,
            entry_price=fill_price,
            shares=shares,
            position_size=position_size,
            entry_commission=commission,
            entry_slippage=shares * bar.open * self._slippage_rate,
            lowest_price=bar.low,
            highest_price=bar.high,
            entry_snapshot=dict(entry_snapshot),
            stop_loss_price=fill_price * (1.0 - stop / 100.0) if stop else None,
            take_profit_price=fill_price * (1.0 + target / 100.0) if target else None,
        )
        self._next_number += 1
        self.positions.append(position)
        logger.debug(
            "Opened #{} {} x{} @ {:.4f} (cash {:.2f})",
            position.number,
            self.symbol,
            shares,
            fill_price,
            self.cash,
        )
        return position

    def update(self, bar: Bar, snapshot: IndicatorSnapshot) -> list[Trade]:
        """Apply this bar to every open position; return the trades it closed.

        Checks run in a fixed order and the first hit wins: stop-loss, then
        take-profit, then an exit signal raised on the previous bar. A signal exit
        records the snapshot that raised it, not this bar's.
        """
        closed: list[Trade] = []
        for position in list(self.positions):
            position.observe(bar.low, bar.high)
            if position.stop_loss_price is not None and bar.low <= position.stop_loss_price:
                closed.append(
                    self._close(position, bar, position.stop_loss_price, ExitReason.STOP_LOSS, snapshot)
                )
            elif position.take_profit_price is not None and bar.high >= position.take_profit_price:
                closed.append(
                    self._close(position, bar, position.take_profit_price, ExitReason.TAKE_PROFIT, snapshot)
                )
            elif position.exit_signalled:
                exit_price = bar.close * (1.0 - self._slippage_rate)
                closed.append(
                    self._close(
                        position,
                        bar,
                        exit_price,
                        ExitReason.SIGNAL,
                        IndicatorSnapshot(position.exit_signal_snapshot),
                        slippage=position.shares * bar.close * self._slippage_rate,
                    )
                )
        return closed

    def flag_exit_signals(
        self,
        conditions: Iterable[Condition],
        current: IndicatorSnapshot,
        previous: Optional[IndicatorSnapshot],
    ) -> int:
        conditions = tuple(conditions)
        if not conditions or not self.positions:
            return 0
        if not matches_all(conditions, current, previous):
            return 0
        signal_values = current.to_dict()
        for position in self.positions:
            if position.exit_signal_snapshot is None:
                position.exit_signal_snapshot = signal_values
        return len(self.positions)

    def close_all(self, bar: Bar, snapshot: IndicatorSnapshot) -> list[Trade]:
        return [
            self._close(position, bar, bar.close, ExitReason.END_OF_DATA, snapshot)
            for position in list(self.positions)
        ]

    def _close(
        self,
        position: OpenPosition,
        bar: Bar,
        exit_price: float,
        reason: ExitReason,
        snapshot: IndicatorSnapshot,
        slippage: float = 0.0,
    ) -> Trade:
        proceeds = position.shares * exit_price
        exit_commission = proceeds * self._commission_rate
        cost_basis = position.cost_basis
        pnl = proceeds - cost_basis - exit_commission
        entry = position.entry_price

        self.cash += proceeds - exit_commission
        self.positions.remove(position)

        trade = Trade(
            number=position.number,
            symbol=position.symbol,
            direction=position.direction,
            entry_time=position.entry_time,
            entry_price=entry,
            exit_time=bar.timestamp,
            exit_price=exit_price,
            shares=position.shares,
            position_size=position.position_size,
            gross_pnl=(exit_price - entry) * position.shares,
            pnl=pnl,
            pnl_pct=(pnl / cost_basis) * 100.0 if cost_basis > 0 else 0.0,
            commission=position.entry_commission + exit_commission,
            slippage=position.entry_slippage + slippage,
            exit_reason=reason,
            mae=((position.lowest_price - entry) / entry) * 100.0,
            mfe=((position.highest_price - entry) / entry) * 100.0,
            bars_held=position.bars_held,
            stop_loss_price=position.stop_loss_price,
            take_profit_price=position.take_profit_price,
            entry_snapshot=dict(position.entry_snapshot),
            exit_snapshot=snapshot.to_dict(),
        )
        logger.debug(
            "Closed #{} {} @ {:.4f} reason={} pnl={:.2f}",
            trade.number,
            trade.symbol,
            exit_price,
            reason.value,
            pnl,
        )
        return trade
