import pytest

from backtester.errors import BacktestCancelled, InsufficientDataError
from backtester.simulator import BacktestSimulator, ExitReason, compute_performance
from backtester.strategy import IndicatorSnapshot, compute_snapshot, matches_all

from helpers import flat_series, jump_prices, make_series, make_strategy


def _signal_exit_prices():
    # close > 150 first holds at bar 210; close < 120 first holds at bar 230.
    return jump_prices(240, segments=[(210, 211, 160.0), (211, 230, 155.0), (230, 240, 110.0)])


def test_fewer_than_200_bars_is_rejected():
    simulator = BacktestSimulator(make_strategy())
    with pytest.raises(InsufficientDataError, match=r"Insufficient data for backtest \(minimum 200 bars required\)"):
        simulator.run(flat_series(199))


def test_exactly_200_bars_simulates_one_bar():
    result = BacktestSimulator(make_strategy()).run(flat_series(200))
    assert result.bars_simulated == 1
    assert len(result.equity_curve) == 1
    assert result.trades == []
    assert result.final_capital == result.initial_capital


def test_entry_fills_next_open_and_signal_exit_settles_next_close():
    strategy = make_strategy(exit_rules=(("close", "<", 120),), slippage_pct=0.1)
    series = make_series(_signal_exit_prices())

    result = BacktestSimulator(strategy).run(series)

    assert len(result.trades) == 1
    trade = result.trades[0]
    assert trade.entry_time == series[211].timestamp
    assert trade.entry_price == pytest.approx(155.0 * 1.001)
    assert trade.exit_time == series[231].timestamp
    assert trade.exit_price == pytest.approx(110.0 * 0.999)
    assert trade.exit_reason == ExitReason.SIGNAL
    assert trade.shares == int(5000.0 // (155.0 * 1.001))
    assert trade.bars_held == 21
    assert trade.mae == pytest.approx((109.0 - trade.entry_price) / trade.entry_price * 100.0)
    assert trade.mfe == pytest.approx((156.0 - trade.entry_price) / trade.entry_price * 100.0)
    assert trade.entry_snapshot["close"] == 160.0


def test_open_position_is_closed_at_end_of_data():
    series = make_series(jump_prices(230, segments=[(205, 230, 160.0)]))
    result = BacktestSimulator(make_strategy(slippage_pct=0.5)).run(series)

    assert len(result.trades) == 1
    trade = result.trades[0]
    assert trade.exit_reason == ExitReason.END_OF_DATA
    assert trade.exit_time == series[-1].timestamp
    assert trade.exit_price == 160.0


def test_signal_on_last_bar_is_dropped():
    series = make_series(jump_prices(220, segments=[(219, 220, 160.0)]))
    result = BacktestSimulator(make_strategy()).run(series)
    assert result.trades == []


def test_equity_curve_covers_every_simulated_bar():
    series = make_series(_signal_exit_prices())
    result = BacktestSimulator(make_strategy(exit_rules=(("close", "<", 120),))).run(series)

    assert len(result.equity_curve) == len(series) - 199
    assert result.equity_curve[0].time == series[199].timestamp
    assert result.equity_curve[-1].equity == pytest.approx(result.final_capital)


def test_capital_is_conserved_across_trades():
    strategy = make_strategy(
        exit_rules=(("close", "<", 120),),
        commission_pct=0.2,
        slippage_pct=0.1,
        stop_loss_pct=20.0,
    )
    result = BacktestSimulator(strategy).run(make_series(_signal_exit_prices()))

    assert result.final_capital == pytest.approx(result.initial_capital + sum(t.pnl for t in result.trades))


def test_stop_loss_through_engine():
    prices = jump_prices(240, segments=[(205, 215, 160.0), (215, 240, 140.0)])
    strategy = make_strategy(stop_loss_pct=5.0)
    result = BacktestSimulator(strategy).run(make_series(prices))

    trade = result.trades[0]
    assert trade.exit_reason == ExitReason.STOP_LOSS
    assert trade.exit_price == pytest.approx(160.0 * 0.95)
    assert trade.exit_time == make_series(prices)[215].timestamp


def test_runs_are_deterministic():
    strategy = make_strategy(exit_rules=(("close", "<", 120),), commission_pct=0.1)
    series = make_series(_signal_exit_prices())

    first = BacktestSimulator(strategy).run(series)
    second = BacktestSimulator(strategy).run(series)

    assert [t.to_dict() for t in first.trades] == [t.to_dict() for t in second.trades]
    assert first.equity_curve == second.equity_curve


def test_max_positions_limits_concurrent_entries():
    series = make_series(jump_prices(215, segments=[(205, 215, 160.0)]))
    strategy = make_strategy(max_positions=3, size_value=10.0)
    result = BacktestSimulator(strategy).run(series)

    assert len(result.trades) == 3
    assert [t.number for t in result.trades] == [1, 2, 3]
    assert {t.exit_reason for t in result.trades} == {ExitReason.END_OF_DATA}


def test_cancellation_is_checked_every_bar():
    calls = []

    def cancel():
        calls.append(1)
        return len(calls) > 3

    with pytest.raises(BacktestCancelled) as excinfo:
        BacktestSimulator(make_strategy()).run(flat_series(210), cancel=cancel)
    assert excinfo.value.bar_index == 202


def test_signal_on_second_to_last_bar_does_not_fill():
    series = make_series(jump_prices(220, segments=[(218, 219, 160.0)]))
    result = BacktestSimulator(make_strategy()).run(series)
    assert result.trades == []
    assert result.final_capital == result.initial_capital


def test_signal_exit_snapshot_satisfies_exit_rules():
    # close < 120 holds only at bar 230; bar 231 bounces back up.
    prices = jump_prices(240, segments=[(210, 211, 160.0), (211, 230, 155.0), (230, 231, 110.0), (231, 240, 155.0)])
    strategy = make_strategy(exit_rules=(("close", "<", 120),))
    series = make_series(prices)

    trade = BacktestSimulator(strategy).run(series).trades[0]

    assert trade.exit_reason == ExitReason.SIGNAL
    assert trade.exit_time == series[231].timestamp
    assert trade.exit_price == 155.0
    assert trade.exit_snapshot["close"] == 110.0
    assert matches_all(strategy.exit_conditions, IndicatorSnapshot(trade.exit_snapshot), None)


def test_equity_matches_ledger_at_every_bar():
    rate = 0.002
    strategy = make_strategy(
        exit_rules=(("close", "<", 120),),
        commission_pct=0.2,
        slippage_pct=0.1,
        max_positions=3,
        size_value=20.0,
    )
    series = make_series(jump_prices(240, segments=[(205, 216, 160.0), (216, 225, 170.0), (225, 240, 110.0)]))
    closes = {bar.timestamp: bar.close for bar in series}

    result = BacktestSimulator(strategy).run(series)

    assert len(result.trades) == 3
    assert result.trades[0].exit_time == result.trades[2].exit_time
    for point in result.equity_curve:
        cash = result.initial_capital
        held = 0.0
        for trade in result.trades:
            if trade.entry_time <= point.time:
                cash -= trade.shares * trade.entry_price * (1 + rate)
            if trade.exit_time <= point.time:
                cash += trade.shares * trade.exit_price * (1 - rate)
            elif trade.entry_time <= point.time:
                held += trade.shares * closes[point.time]
        assert point.equity == pytest.approx(cash + held)


def test_rsi_reversion_round_trip():
    # Flat prices hold RSI at 50; one down bar at 210 drops it to 0 and one
    # up bar at 230 lifts it above 70.
    prices = jump_prices(240, segments=[(210, 230, 99.0), (230, 240, 110.0)])
    strategy = make_strategy(
        entry_rules=(("RSI", "<", 30),),
        exit_rules=(("RSI", ">", 70),),
        size_value=10.0,
        slippage_pct=0.1,
    )
    series = make_series(prices)
    assert compute_snapshot(series, 209)["RSI"] == 50.0
    assert compute_snapshot(series, 210)["RSI"] < 30.0
    assert compute_snapshot(series, 229)["RSI"] <= 70.0
    assert compute_snapshot(series, 230)["RSI"] > 70.0

    result = BacktestSimulator(strategy).run(series)

    assert len(result.trades) == 1
    trade = result.trades[0]
    assert trade.entry_time == series[211].timestamp
    assert trade.entry_price == pytest.approx(99.0 * 1.001)
    assert trade.shares == 10
    assert trade.exit_time == series[231].timestamp
    assert trade.exit_price == pytest.approx(110.0 * 0.999)
    assert trade.exit_reason == ExitReason.SIGNAL
    assert trade.entry_snapshot["RSI"] < 30.0
    assert trade.exit_snapshot["RSI"] > 70.0

    summary = compute_performance(result.trades, result.equity_curve, result.initial_capital, result.final_capital)
    assert summary.winning_trades == 1
    assert summary.total_return == pytest.approx(trade.pnl)
