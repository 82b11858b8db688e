"""SQLite persistence for strategies, backtest runs and their trades."""

from __future__ import annotations

import json
import sqlite3
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Sequence

from backtester.config.loader import parse_strategy, strategy_to_dict
from backtester.errors import RunStateError
from backtester.simulator.models import EquityPoint, Trade
from backtester.simulator.performance import PerformanceSummary
from backtester.strategy.models import StrategyDefinition

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS strategies (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        definition TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS runs (
        id TEXT PRIMARY KEY,
        strategy_id TEXT NOT NULL,
        symbol TEXT NOT NULL,
        start_date TEXT NOT NULL,
        end_date TEXT NOT NULL,
        timeframe TEXT NOT NULL,
        status TEXT NOT NULL,
        summary TEXT,
        equity_curve TEXT,
        monthly_returns TEXT,
        error_message TEXT,
        created_at TEXT NOT NULL,
        completed_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS trades (
        id TEXT PRIMARY KEY,
        run_id TEXT NOT NULL,
        number INTEGER NOT NULL,
        symbol TEXT NOT NULL,
        direction TEXT NOT NULL,
        entry_date TEXT NOT NULL,
        entry_price REAL NOT NULL,
        exit_date TEXT NOT NULL,
        exit_price REAL NOT NULL,
        shares INTEGER NOT NULL,
        position_size REAL NOT NULL,
        commission REAL NOT NULL,
        slippage REAL NOT NULL,
        stop_loss_price REAL,
        take_profit_price REAL,
        exit_reason TEXT NOT NULL,
        gross_profit_loss REAL NOT NULL,
        profit_loss REAL NOT NULL,
        profit_loss_percent REAL NOT NULL,
        mae REAL NOT NULL,
        mfe REAL NOT NULL,
        bars_in_trade INTEGER NOT NULL,
        entry_signal TEXT NOT NULL,
        exit_signal TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_trades_run ON trades (run_id, number)",
)


class RunStatus(str, Enum):
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class BacktestRun:
    id: str
    status: RunStatus
    strategy_id: str
    symbol: str
    start_date: str
    end_date: str
    timeframe: str
    created_at: str
    summary: Optional[dict[str, Any]] = None
    equity_curve: list[dict[str, Any]] = field(default_factory=list)
    monthly_returns: dict[str, float] = field(default_factory=dict)
    error_message: Optional[str] = None
    completed_at: Optional[str] = None


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def _iso(value: Any) -> str:
    return value.isoformat() if hasattr(value, "isoformat") else str(value)


def serialize_equity_curve(points: Sequence[EquityPoint]) -> list[dict[str, Any]]:
    return [{"date": point.time.isoformat(), "equity": point.equity} for point in points]


class RunStore:
    """Run records move RUNNING -> COMPLETED or RUNNING -> FAILED exactly once.

    Each thread gets its own connection; use a file path rather than
    ``:memory:`` when runs execute on worker threads.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._local = threading.local()
        self._connections: list[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()
        self._conn()

    def _conn(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = sqlite3.connect(self.path, timeout=30.0, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            for statement in _SCHEMA:
                conn.execute(statement)
            conn.commit()
            self._local.conn = conn
            with self._connections_lock:
                self._connections.append(conn)
        return conn

    # strategies

    def save_strategy(self, strategy: StrategyDefinition) -> str:
        strategy_id = strategy.id or str(uuid.uuid4())
        payload = strategy_to_dict(strategy)
        payload["id"] = strategy_id
        now = _utcnow()
        conn = self._conn()
        with conn:
            conn.execute(
                "INSERT INTO strategies (id, name, definition, created_at, updated_at) VALUES (?, ?, ?, ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET name = excluded.name, definition = excluded.definition, "
                "updated_at = excluded.updated_at",
                (strategy_id, strategy.name, json.dumps(payload), now, now),
            )
        return strategy_id

    def get_strategy(self, strategy_id: str) -> Optional[StrategyDefinition]:
        row = self._conn().execute(
            "SELECT id, definition FROM strategies WHERE id = ?",
            (strategy_id,),
        ).fetchone()
        if row is None:
            return None
        return parse_strategy(json.loads(row["definition"]), strategy_id=row["id"])

    def list_strategies(self) -> list[StrategyDefinition]:
        rows = self._conn().execute(
            "SELECT id, definition FROM strategies ORDER BY updated_at DESC, id"
        ).fetchall()
        return [parse_strategy(json.loads(row["definition"]), strategy_id=row["id"]) for row in rows]

    def delete_strategy(self, strategy_id: str) -> bool:
        conn = self._conn()
        with conn:
            cursor = conn.execute("DELETE FROM strategies WHERE id = ?", (strategy_id,))
        return cursor.rowcount > 0

    # runs

    def create_run(
        self,
        strategy_id: str,
        symbol: str,
        start_date: Any,
        end_date: Any,
        timeframe: str,
        run_id: Optional[str] = None,
    ) -> str:
        run_id = run_id or str(uuid.uuid4())
        conn = self._conn()
        with conn:
            conn.execute(
                "INSERT INTO runs (id, strategy_id, symbol, start_date, end_date, timeframe, status, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    run_id,
                    strategy_id,
                    symbol,
                    _iso(start_date),
                    _iso(end_date),
                    timeframe,
                    RunStatus.RUNNING.value,
                    _utcnow(),
                ),
            )
        return run_id

    def complete_run(
        self,
        run_id: str,
        summary: PerformanceSummary,
        equity_curve: Sequence[EquityPoint],
        trades: Sequence[Trade],
    ) -> None:
        summary_payload = summary.to_dict()
        monthly = summary_payload.pop("monthly_returns")
        conn = self._conn()
        with conn:
            cursor = conn.execute(
                "UPDATE runs SET status = ?, summary = ?, equity_curve = ?, monthly_returns = ?, completed_at = ? "
                "WHERE id = ? AND status = ?",
                (
                    RunStatus.COMPLETED.value,
                    json.dumps(summary_payload),
                    json.dumps(serialize_equity_curve(equity_curve)),
                    json.dumps(monthly),
                    _utcnow(),
                    run_id,
                    RunStatus.RUNNING.value,
                ),
            )
            if cursor.rowcount == 0:
                raise RunStateError(f"Run {run_id} is not RUNNING")
            conn.executemany(
                "INSERT INTO trades (id, run_id, number, symbol, direction, entry_date, entry_price, exit_date, "
                "exit_price, shares, position_size, commission, slippage, stop_loss_price, take_profit_price, "
                "exit_reason, gross_profit_loss, profit_loss, profit_loss_percent, mae, mfe, bars_in_trade, "
                "entry_signal, exit_signal) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [self._trade_row(run_id, trade) for trade in trades],
            )

    def fail_run(self, run_id: str, message: str) -> None:
        conn = self._conn()
        with conn:
            cursor = conn.execute(
                "UPDATE runs SET status = ?, error_message = ?, completed_at = ? WHERE id = ? AND status = ?",
                (RunStatus.FAILED.value, message, _utcnow(), run_id, RunStatus.RUNNING.value),
            )
        if cursor.rowcount == 0:
            raise RunStateError(f"Run {run_id} is not RUNNING")

    def abandon_running(self, message: str = "Run abandoned") -> list[str]:
        conn = self._conn()
        with conn:
            rows = conn.execute("SELECT id FROM runs WHERE status = ?", (RunStatus.RUNNING.value,)).fetchall()
            run_ids = [row["id"] for row in rows]
            conn.execute(
                "UPDATE runs SET status = ?, error_message = ?, completed_at = ? WHERE status = ?",
                (RunStatus.FAILED.value, message, _utcnow(), RunStatus.RUNNING.value),
            )
        return run_ids

    def get_run(self, run_id: str) -> Optional[BacktestRun]:
        row = self._conn().execute("SELECT * FROM runs WHERE id = ?", (run_id,)).fetchone()
        if row is None:
            return None
        return self._run_from_row(row)

    def list_runs(self, status: Optional[RunStatus] = None) -> list[BacktestRun]:
        if status is None:
            rows = self._conn().execute("SELECT * FROM runs ORDER BY created_at DESC, id").fetchall()
        else:
            rows = self._conn().execute(
                "SELECT * FROM runs WHERE status = ? ORDER BY created_at DESC, id",
                (RunStatus(status).value,),
            ).fetchall()
        return [self._run_from_row(row) for row in rows]

    def list_trades(self, run_id: str) -> list[dict[str, Any]]:
        rows = self._conn().execute(
            "SELECT * FROM trades WHERE run_id = ? ORDER BY number",
            (run_id,),
        ).fetchall()
        trades = []
        for row in rows:
            payload = dict(row)
            payload["entry_signal"] = json.loads(payload["entry_signal"])
            payload["exit_signal"] = json.loads(payload["exit_signal"])
            trades.append(payload)
        return trades

    def delete_run(self, run_id: str) -> bool:
        conn = self._conn()
        with conn:
            conn.execute("DELETE FROM trades WHERE run_id = ?", (run_id,))
            cursor = conn.execute("DELETE FROM runs WHERE id = ?", (run_id,))
        return cursor.rowcount > 0

    def close(self) -> None:
        with self._connections_lock:
            for conn in self._connections:
                conn.close()
            self._connections.clear()
        self._local = threading.local()

    @staticmethod
    def _trade_row(run_id: str, trade: Trade) -> tuple:
        return (
            f"{run_id}:{trade.number}",
            run_id,
            trade.number,
            trade.symbol,
            trade.direction,
            trade.entry_time.isoformat(),
            trade.entry_price,
            trade.exit_time.isoformat(),
            trade.exit_price,
            trade.shares,
            trade.position_size,
            trade.commission,
            trade.slippage,
            trade.stop_loss_price,
            trade.take_profit_price,
            trade.exit_reason.value,
            trade.gross_pnl,
            trade.pnl,
            trade.pnl_pct,
            trade.mae,
            trade.mfe,
            trade.bars_held,
            json.dumps(trade.entry_snapshot),
            json.dumps(trade.exit_snapshot),
        )

    @staticmethod
    def _run_from_row(row: sqlite3.Row) -> BacktestRun:
        return BacktestRun(
            id=row["id"],
            status=RunStatus(row["status"]),
            strategy_id=row["strategy_id"],
            symbol=row["symbol"],
            start_date=row["start_date"],
            end_date=row["end_date"],
            timeframe=row["timeframe"],
            created_at=row["created_at"],
            summary=json.loads(row["summary"]) if row["summary"] else None,
            equity_curve=json.loads(row["equity_curve"]) if row["equity_curve"] else [],
            monthly_returns=json.loads(row["monthly_returns"]) if row["monthly_returns"] else {},
            error_message=row["error_message"],
            completed_at=row["completed_at"],
        )
