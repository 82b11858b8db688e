"""Simulation data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class ExitReason(str, Enum):
    STOP_LOSS = "STOP_LOSS"
    TAKE_PROFIT = "TAKE_PROFIT"
    SIGNAL = "SIGNAL"
    END_OF_DATA = "END_OF_DATA"


LONG = "LONG"


@dataclass
class OpenPosition:
    """A position while it is open. Closing it produces a :class:`Trade`."""

    number: int
    symbol: str
    entry_time: datetime
    entry_price: float
    shares: int
    position_size: float
    entry_commission: float
    entry_slippage: float
    lowest_price: float
    highest_price: float
    entry_snapshot: dict[str, float] = field(default_factory=dict)
    stop_loss_price: Optional[float] = None
    take_profit_price: Optional[float] = None
    bars_held: int = 0
    exit_signal_snapshot: Optional[dict[str, float]] = None
    direction: str = LONG

    @property
    def exit_signalled(self) -> bool:
        return self.exit_signal_snapshot is not None

    @property
    def cost_basis(self) -> float:
        return self.shares * self.entry_price + self.entry_commission

    def market_value(self, price: float) -> float:
        return self.shares * price

    def observe(self, low: float, high: float) -> None:
        self.bars_held += 1
        self.lowest_price = min(self.lowest_price, low)
        self.highest_price = max(self.highest_price, high)


@dataclass(frozen=True)
class Trade:
    number: int
    symbol: str
    direction: str
    entry_time: datetime
    entry_price: float
    exit_time: datetime
    exit_price: float
    shares: int
    position_size: float
    gross_pnl: float
    pnl: float
    pnl_pct: float
    commission: float
    slippage: float
    exit_reason: ExitReason
    mae: float
    mfe: float
    bars_held: int
    stop_loss_price: Optional[float] = None
    take_profit_price: Optional[float] = None
    entry_snapshot: dict[str, float] = field(default_factory=dict)
    exit_snapshot: dict[str, float] = field(default_factory=dict)

    @property
    def won(self) -> bool:
        return self.pnl > 0

    @property
    def lost(self) -> bool:
        return self.pnl < 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "number": self.number,
            "symbol": self.symbol,
            "direction": self.direction,
            "entry_time": self.entry_time.isoformat(),
            "entry_price": self.entry_price,
            "exit_time": self.exit_time.isoformat(),
            "exit_price": self.exit_price,
            "shares": self.shares,
            "position_size": self.position_size,
            "gross_pnl": self.gross_pnl,
            "pnl": self.pnl,
            "pnl_pct": self.pnl_pct,
            "commission": self.commission,
            "slippage": self.slippage,
            "exit_reason": self.exit_reason.value,
            "mae": self.mae,
            "mfe": self.mfe,
            "bars_held": self.bars_held,
            "stop_loss_price": self.stop_loss_price,
            "take_profit_price": self.take_profit_price,
            "entry_snapshot": dict(self.entry_snapshot),
            "exit_snapshot": dict(self.exit_snapshot),
        }


@dataclass(frozen=True)
class EquityPoint:
    time: datetime
    equity: float


@dataclass(frozen=True)
class PendingEntry:
    signal_time: datetime
    snapshot: dict[str, float]
    volatility: Optional[float]


@dataclass(frozen=True)
class SimulationResult:
    symbol: str
    initial_capital: float
    final_capital: float
    trades: list[Trade]
    equity_curve: list[EquityPoint]
    bars_simulated: int
