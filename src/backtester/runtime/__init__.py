"""Run persistence and orchestration."""

from backtester.runtime.run_store import BacktestRun, RunStatus, RunStore
from backtester.runtime.service import BacktestService, RunRequest

__all__ = [
    "BacktestRun",
    "BacktestService",
    "RunRequest",
    "RunStatus",
    "RunStore",
]
