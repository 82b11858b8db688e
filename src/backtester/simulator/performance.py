"""Summary statistics for a finished simulation.

Every statistic has a defined, finite value for every trade list, including
the empty one:

- win rate is ``wins / total`` as a fraction, 0 without trades;
- profit factor is ``|gross wins / gross losses|`` and is 0 when there are no
  losing trades, rather than infinity;
- the Sharpe ratio is 0 when per-bar returns have zero variance.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from typing import Sequence

from backtester.simulator.models import EquityPoint, Trade

TRADING_DAYS = 252


@dataclass(frozen=True)
class PerformanceSummary:
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    avg_win: float = 0.0
    avg_loss: float = 0.0
    profit_factor: float = 0.0
    largest_win: float = 0.0
    largest_loss: float = 0.0
    avg_bars_held: float = 0.0
    total_return: float = 0.0
    total_return_pct: float = 0.0
    max_drawdown: float = 0.0
    max_drawdown_pct: float = 0.0
    sharpe_ratio: float = 0.0
    final_capital: float = 0.0
    monthly_returns: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def bar_returns(equity_curve: Sequence[EquityPoint]) -> list[float]:
    """Percent change between consecutive equity points."""
    returns = []
    for prev, point in zip(equity_curve, equity_curve[1:]):
        if prev.equity == 0:
            returns.append(0.0)
        else:
            returns.append((point.equity - prev.equity) / prev.equity * 100.0)
    return returns


def sharpe_ratio(equity_curve: Sequence[EquityPoint], periods_per_year: int = TRADING_DAYS) -> float:
    returns = bar_returns(equity_curve)
    if len(returns) < 2:
        return 0.0
    mean = _mean(returns)
    variance = sum((value - mean) ** 2 for value in returns) / len(returns)
    stddev = math.sqrt(variance)
    if stddev == 0:
        return 0.0
    return mean / stddev * math.sqrt(periods_per_year)


def max_drawdown(equity_curve: Sequence[EquityPoint], initial_capital: float) -> tuple[float, float]:
    """Largest peak-to-trough fall as (dollars, percent of the peak)."""
    peak = initial_capital
    worst = 0.0
    worst_pct = 0.0
    for point in equity_curve:
        peak = max(peak, point.equity)
        drawdown = peak - point.equity
        worst = max(worst, drawdown)
        if peak > 0:
            worst_pct = max(worst_pct, drawdown / peak * 100.0)
    return worst, worst_pct


def monthly_returns(equity_curve: Sequence[EquityPoint]) -> dict[str, float]:
    buckets: dict[str, float] = {}
    for point, value in zip(equity_curve[1:], bar_returns(equity_curve)):
        month = point.time.strftime("%Y-%m")
        buckets[month] = buckets.get(month, 0.0) + value
    return buckets


def compute_performance(
    trades: Sequence[Trade],
    equity_curve: Sequence[EquityPoint],
    initial_capital: float,
    final_capital: float,
) -> PerformanceSummary:
    wins = [trade.pnl for trade in trades if trade.won]
    losses = [trade.pnl for trade in trades if trade.lost]
    total = len(trades)

    gross_loss = sum(losses)
    profit_factor = abs(sum(wins) / gross_loss) if losses and gross_loss != 0 else 0.0

    total_return = final_capital - initial_capital
    drawdown, drawdown_pct = max_drawdown(equity_curve, initial_capital)

    return PerformanceSummary(
        total_trades=total,
        winning_trades=len(wins),
        losing_trades=len(losses),
        win_rate=len(wins) / total if total else 0.0,
        avg_win=_mean(wins),
        avg_loss=_mean(losses),
        profit_factor=profit_factor,
        largest_win=max(wins, default=0.0),
        largest_loss=min(losses, default=0.0),
        avg_bars_held=_mean([trade.bars_held for trade in trades]),
        total_return=total_return,
        total_return_pct=total_return / initial_capital * 100.0 if initial_capital else 0.0,
        max_drawdown=drawdown,
        max_drawdown_pct=drawdown_pct,
        sharpe_ratio=sharpe_ratio(equity_curve),
        final_capital=final_capital,
        monthly_returns=monthly_returns(equity_curve),
    )
