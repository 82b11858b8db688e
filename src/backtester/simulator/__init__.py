"""Simulation engine, position lifecycle and performance statistics."""

from backtester.simulator.engine import BacktestSimulator
from backtester.simulator.models import (
    EquityPoint,
    ExitReason,
    OpenPosition,
    PendingEntry,
    SimulationResult,
    Trade,
)
from backtester.simulator.performance import PerformanceSummary, compute_performance
from backtester.simulator.positions import PositionManager

__all__ = [
    "BacktestSimulator",
    "EquityPoint",
    "ExitReason",
    "OpenPosition",
    "PendingEntry",
    "PerformanceSummary",
    "PositionManager",
    "SimulationResult",
    "Trade",
    "compute_performance",
]
