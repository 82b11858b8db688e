"""Strategy definition models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

from backtester.strategy.indicators import Indicator


class Operator(str, Enum):
    GT = ">"
    LT = "<"
    GE = ">="
    LE = "<="
    EQ = "=="
    CROSS_ABOVE = "CROSS_ABOVE"
    CROSS_BELOW = "CROSS_BELOW"

    @property
    def needs_previous(self) -> bool:
        return self in {Operator.CROSS_ABOVE, Operator.CROSS_BELOW}


class SizingMethod(str, Enum):
    FIXED = "FIXED"
    PERCENT_CAPITAL = "PERCENT_CAPITAL"
    KELLY = "KELLY"
    VOLATILITY = "VOLATILITY"


Comparand = Union[float, Indicator]


@dataclass(frozen=True)
class Condition:
    """``indicator <operator> comparand``.

    The comparand is either a literal number or another indicator, for
    indicator-versus-indicator rules such as ``close CROSS_ABOVE SMA_50``.
    """

    indicator: Indicator
    operator: Operator
    comparand: Comparand

    @classmethod
    def build(cls, indicator: str, operator: str, comparand: float | str) -> "Condition":
        try:
            op = Operator(operator)
        except ValueError as exc:
            raise ValueError(f"Unknown operator: {operator}") from exc
        if isinstance(comparand, bool):
            raise ValueError(f"Invalid comparand: {comparand!r}")
        if isinstance(comparand, (int, float)):
            value: Comparand = float(comparand)
        else:
            value = Indicator.parse(str(comparand))
        return cls(indicator=Indicator.parse(indicator), operator=op, comparand=value)

    def describe(self) -> str:
        comparand = self.comparand.value if isinstance(self.comparand, Indicator) else self.comparand
        return f"{self.indicator.value} {self.operator.value} {comparand}"


@dataclass(frozen=True)
class SizingPolicy:
    method: SizingMethod = SizingMethod.PERCENT_CAPITAL
    value: float = 10.0


@dataclass(frozen=True)
class StrategyDefinition:
    name: str
    entry_conditions: tuple[Condition, ...]
    exit_conditions: tuple[Condition, ...]
    sizing: SizingPolicy = field(default_factory=SizingPolicy)
    stop_loss_pct: Optional[float] = None
    take_profit_pct: Optional[float] = None
    max_positions: int = 1
    commission_pct: float = 0.0
    slippage_pct: float = 0.0
    initial_capital: float = 10_000.0
    id: Optional[str] = None
    description: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.entry_conditions:
            raise ValueError("At least one entry condition is required")
        if self.max_positions < 1:
            raise ValueError("max_positions must be at least 1")
        if self.initial_capital <= 0:
            raise ValueError("initial_capital must be positive")
        for name in ("commission_pct", "slippage_pct"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative")
        for name in ("stop_loss_pct", "take_profit_pct"):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise ValueError(f"{name} must be positive when set")
