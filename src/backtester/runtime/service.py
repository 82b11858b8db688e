"""Backtest run orchestration on top of the run store."""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as futures_wait
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from loguru import logger

from backtester.errors import NoHistoricalDataError, StrategyNotFoundError
from backtester.market_data.models import BarSeries
from backtester.market_data.providers import BarProvider
from backtester.monitoring.audit import AuditLog
from backtester.runtime.run_store import BacktestRun, RunStore
from backtester.simulator.engine import BacktestSimulator
from backtester.simulator.performance import PerformanceSummary, compute_performance


@dataclass(frozen=True)
class RunRequest:
    strategy_id: str
    symbol: str
    start_date: date | datetime
    end_date: date | datetime
    timeframe: str = "1day"


class BacktestService:
    """Starts runs, executes them and records exactly one terminal state.

    ``run_backtest`` executes on the calling thread. ``submit_backtest``
    returns once the RUNNING record exists and executes on a worker pool.
    """

    def __init__(
        self,
        store: RunStore,
        provider: BarProvider,
        audit_log: Optional[AuditLog] = None,
        max_workers: int = 4,
    ) -> None:
        self.store = store
        self.provider = provider
        self.audit_log = audit_log
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="backtest")
        self._futures: dict[str, Future] = {}
        self._cancel_events: dict[str, threading.Event] = {}
        self._lock = threading.Lock()

    def run_backtest(
        self,
        strategy_id: str,
        symbol: str,
        start_date: date | datetime,
        end_date: date | datetime,
        timeframe: str = "1day",
    ) -> str:
        request = RunRequest(strategy_id, symbol, start_date, end_date, timeframe)
        run_id = self._start(request)
        self._execute(run_id, request, threading.Event())
        return run_id

    def submit_backtest(
        self,
        strategy_id: str,
        symbol: str,
        start_date: date | datetime,
        end_date: date | datetime,
        timeframe: str = "1day",
    ) -> str:
        request = RunRequest(strategy_id, symbol, start_date, end_date, timeframe)
        run_id = self._start(request)
        cancel_event = threading.Event()
        with self._lock:
            self._cancel_events[run_id] = cancel_event
            future = self._executor.submit(self._execute, run_id, request, cancel_event)
            self._futures[run_id] = future
        # Registered outside the lock: an already finished future calls back here.
        future.add_done_callback(lambda _: self._forget(run_id))
        return run_id

    def wait(self, run_id: str, timeout: Optional[float] = None) -> Optional[BacktestRun]:
        """Block until a submitted run finishes and return its stored record."""
        with self._lock:
            future = self._futures.get(run_id)
        if future is not None:
            futures_wait([future], timeout=timeout)
        return self.store.get_run(run_id)

    def active_runs(self) -> list[str]:
        """Ids of submitted runs that have not finished yet."""
        with self._lock:
            return list(self._futures)

    def cancel(self, run_id: str) -> bool:
        with self._lock:
            event = self._cancel_events.get(run_id)
        if event is None:
            return False
        event.set()
        logger.info("Cancellation requested for run {}", run_id)
        return True

    def recover_abandoned_runs(self) -> list[str]:
        run_ids = self.store.abandon_running()
        for run_id in run_ids:
            logger.warning("Run {} was left RUNNING and is now FAILED", run_id)
            self._audit("run_abandoned", run_id, {})
        return run_ids

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _forget(self, run_id: str) -> None:
        with self._lock:
            self._futures.pop(run_id, None)
            self._cancel_events.pop(run_id, None)

    def _start(self, request: RunRequest) -> str:
        run_id = self.store.create_run(
            request.strategy_id,
            request.symbol,
            request.start_date,
            request.end_date,
            request.timeframe,
        )
        logger.info(
            "Run {} started: strategy={} symbol={} {}..{} {}",
            run_id,
            request.strategy_id,
            request.symbol,
            request.start_date,
            request.end_date,
            request.timeframe,
        )
        self._audit(
            "run_started",
            run_id,
            {
                "strategy_id": request.strategy_id,
                "symbol": request.symbol,
                "start_date": request.start_date,
                "end_date": request.end_date,
                "timeframe": request.timeframe,
            },
        )
        return run_id

    def _execute(self, run_id: str, request: RunRequest, cancel_event: threading.Event) -> PerformanceSummary:
        try:
            strategy = self.store.get_strategy(request.strategy_id)
            if strategy is None:
                raise StrategyNotFoundError(request.strategy_id)

            bars = self.provider.fetch_bars(request.symbol, request.timeframe)
            if not bars:
                raise NoHistoricalDataError(request.symbol)

            series = BarSeries(request.symbol, request.timeframe, bars).between(
                request.start_date, request.end_date
            )
            result = BacktestSimulator(strategy).run(series, cancel=cancel_event.is_set)
            summary = compute_performance(
                result.trades,
                result.equity_curve,
                result.initial_capital,
                result.final_capital,
            )
            self.store.complete_run(run_id, summary, result.equity_curve, result.trades)
        except Exception as exc:
            message = str(exc)
            logger.error("Run {} failed: {}", run_id, message)
            self.store.fail_run(run_id, message)
            self._audit("run_failed", run_id, {"error": message, "type": type(exc).__name__})
            raise

        logger.info(
            "Run {} completed: {} trades, return {:.2f}%",
            run_id,
            summary.total_trades,
            summary.total_return_pct,
        )
        self._audit(
            "run_completed",
            run_id,
            {
                "total_trades": summary.total_trades,
                "final_capital": summary.final_capital,
                "total_return_pct": summary.total_return_pct,
            },
        )
        return summary

    def _audit(self, event: str, run_id: str, payload: dict) -> None:
        if self.audit_log is None:
            return
        self.audit_log.log(event, run_id, payload)
