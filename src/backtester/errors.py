"""Errors surfaced to callers of the backtest engine."""

from __future__ import annotations


class BacktestError(Exception):
    """Base class for errors that end a run as FAILED."""


class StrategyNotFoundError(BacktestError):
    def __init__(self, strategy_id: str) -> None:
        super().__init__("Strategy not found")
        self.strategy_id = strategy_id


class NoHistoricalDataError(BacktestError):
    def __init__(self, symbol: str) -> None:
        super().__init__(f"No historical data available for symbol {symbol}")
        self.symbol = symbol


class InsufficientDataError(BacktestError):
    def __init__(self, available: int, required: int) -> None:
        super().__init__(f"Insufficient data for backtest (minimum {required} bars required)")
        self.available = available
        self.required = required


class BacktestCancelled(BacktestError):
    def __init__(self, bar_index: int) -> None:
        super().__init__(f"Backtest cancelled at bar {bar_index}")
        self.bar_index = bar_index


class RunStateError(RuntimeError):
    """Raised when a run is moved out of a terminal state."""
