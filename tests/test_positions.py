from dataclasses import replace

import pytest

from backtester.simulator import ExitReason, PositionManager
from backtester.strategy import IndicatorSnapshot

from helpers import make_bar, make_strategy

EMPTY = IndicatorSnapshot({})


def _bar(index, price, low=None, high=None):
    bar = make_bar(index, price)
    return replace(
        bar,
        low=bar.low if low is None else low,
        high=bar.high if high is None else high,
    )


def test_open_applies_slippage_and_commission():
    strategy = make_strategy(commission_pct=0.1, slippage_pct=0.5)
    manager = PositionManager(strategy, "TEST", 10_000.0)

    position = manager.open(_bar(0, 100.0), 10, 1000.0, {"RSI": 25.0})

    assert position.entry_price == pytest.approx(100.5)
    assert position.entry_commission == pytest.approx(10 * 100.5 * 0.001)
    assert position.entry_slippage == pytest.approx(10 * 100.0 * 0.005)
    assert manager.cash == pytest.approx(10_000.0 - 1005.0 - 1.005)
    assert position.number == 1


def test_open_refuses_when_cash_is_short():
    manager = PositionManager(make_strategy(), "TEST", 500.0)
    assert manager.open(_bar(0, 100.0), 10, 1000.0, {}) is None
    assert manager.cash == 500.0
    assert manager.open_count == 0


def test_stop_loss_wins_over_take_profit_in_same_bar():
    strategy = make_strategy(stop_loss_pct=5.0, take_profit_pct=5.0)
    manager = PositionManager(strategy, "TEST", 10_000.0)
    entry = _bar(0, 100.0)
    manager.open(entry, 10, 1000.0, {})
    assert manager.update(entry, EMPTY) == []

    closed = manager.update(_bar(1, 100.0, low=90.0, high=110.0), EMPTY)

    assert len(closed) == 1
    trade = closed[0]
    assert trade.exit_reason == ExitReason.STOP_LOSS
    assert trade.exit_price == pytest.approx(95.0)
    assert trade.pnl == pytest.approx(-50.0)
    assert trade.bars_held == 2


def test_take_profit_fills_at_target():
    strategy = make_strategy(take_profit_pct=10.0)
    manager = PositionManager(strategy, "TEST", 10_000.0)
    manager.open(_bar(0, 100.0), 10, 1000.0, {})

    closed = manager.update(_bar(1, 108.0, high=112.0), EMPTY)

    assert closed[0].exit_reason == ExitReason.TAKE_PROFIT
    assert closed[0].exit_price == pytest.approx(110.0)


def test_signal_exit_settles_at_close_with_slippage():
    strategy = make_strategy(exit_rules=(("RSI", ">", 70),), slippage_pct=1.0)
    manager = PositionManager(strategy, "TEST", 10_000.0)
    manager.open(_bar(0, 100.0), 10, 1000.0, {})

    assert manager.flag_exit_signals(strategy.exit_conditions, IndicatorSnapshot({"RSI": 60.0}), None) == 0
    assert manager.flag_exit_signals(strategy.exit_conditions, IndicatorSnapshot({"RSI": 75.0}), None) == 1

    closed = manager.update(_bar(1, 120.0), IndicatorSnapshot({"RSI": 72.0}))

    trade = closed[0]
    assert trade.exit_reason == ExitReason.SIGNAL
    assert trade.exit_price == pytest.approx(120.0 * 0.99)
    assert trade.slippage == pytest.approx(10 * 100.0 * 0.01 + 10 * 120.0 * 0.01)
    assert trade.exit_snapshot == {"RSI": 75.0}


def test_empty_exit_rules_never_signal():
    strategy = make_strategy()
    manager = PositionManager(strategy, "TEST", 10_000.0)
    manager.open(_bar(0, 100.0), 10, 1000.0, {})
    assert manager.flag_exit_signals(strategy.exit_conditions, IndicatorSnapshot({"RSI": 99.0}), None) == 0


def test_mae_and_mfe_are_percent_of_entry():
    manager = PositionManager(make_strategy(), "TEST", 10_000.0)
    entry = _bar(0, 100.0)
    manager.open(entry, 10, 1000.0, {})
    manager.update(entry, EMPTY)
    manager.update(_bar(1, 100.0, low=92.0, high=103.0), EMPTY)
    manager.update(_bar(2, 100.0, low=96.0, high=106.0), EMPTY)

    trade = manager.close_all(_bar(3, 101.0), EMPTY)[0]

    assert trade.exit_reason == ExitReason.END_OF_DATA
    assert trade.exit_price == 101.0
    assert trade.mae == pytest.approx(-8.0)
    assert trade.mfe == pytest.approx(6.0)
    assert manager.open_count == 0


def test_round_trip_conserves_cash():
    strategy = make_strategy(commission_pct=0.1, slippage_pct=0.2, exit_rules=(("close", ">", 0),))
    manager = PositionManager(strategy, "TEST", 10_000.0)
    manager.open(_bar(0, 100.0), 20, 2000.0, {})
    assert manager.equity(100.0) < 10_000.0

    manager.flag_exit_signals(strategy.exit_conditions, IndicatorSnapshot({"close": 100.0}), None)
    trade = manager.update(_bar(1, 104.0), EMPTY)[0]

    assert manager.cash == pytest.approx(10_000.0 + trade.pnl)
    assert trade.commission == pytest.approx(20 * 100.2 * 0.001 + 20 * 104.0 * 0.998 * 0.001)
    assert trade.gross_pnl == pytest.approx((104.0 * 0.998 - 100.2) * 20)


def test_positions_are_numbered_in_open_order():
    manager = PositionManager(make_strategy(max_positions=3), "TEST", 10_000.0)
    first = manager.open(_bar(0, 100.0), 5, 500.0, {})
    second = manager.open(_bar(1, 100.0), 5, 500.0, {})
    assert (first.number, second.number) == (1, 2)
    assert manager.market_value(110.0) == pytest.approx(1100.0)


def test_first_exit_signal_snapshot_is_kept():
    strategy = make_strategy(exit_rules=(("RSI", ">", 70),))
    manager = PositionManager(strategy, "TEST", 10_000.0)
    position = manager.open(_bar(0, 100.0), 10, 1000.0, {})

    manager.flag_exit_signals(strategy.exit_conditions, IndicatorSnapshot({"RSI": 75.0}), None)
    manager.flag_exit_signals(strategy.exit_conditions, IndicatorSnapshot({"RSI": 80.0}), None)

    assert position.exit_signalled is True
    assert position.exit_signal_snapshot == {"RSI": 75.0}


def test_stop_exit_records_current_snapshot():
    strategy = make_strategy(exit_rules=(("RSI", ">", 70),), stop_loss_pct=5.0)
    manager = PositionManager(strategy, "TEST", 10_000.0)
    manager.open(_bar(0, 100.0), 10, 1000.0, {})
    manager.flag_exit_signals(strategy.exit_conditions, IndicatorSnapshot({"RSI": 75.0}), None)

    trade = manager.update(_bar(1, 94.0), IndicatorSnapshot({"RSI": 40.0}))[0]

    assert trade.exit_reason == ExitReason.STOP_LOSS
    assert trade.exit_snapshot == {"RSI": 40.0}
