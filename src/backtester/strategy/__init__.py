"""Strategy rules, indicators and sizing."""

from backtester.strategy.indicators import (
    WARMUP_BARS,
    Indicator,
    IndicatorSnapshot,
    IndicatorTable,
    compute_snapshot,
)
from backtester.strategy.models import Condition, Operator, SizingMethod, SizingPolicy, StrategyDefinition
from backtester.strategy.rules import evaluate, matches_all
from backtester.strategy.sizer import PositionSizer, SizeResult

__all__ = [
    "WARMUP_BARS",
    "Condition",
    "Indicator",
    "IndicatorSnapshot",
    "IndicatorTable",
    "Operator",
    "PositionSizer",
    "SizeResult",
    "SizingMethod",
    "SizingPolicy",
    "StrategyDefinition",
    "compute_snapshot",
    "evaluate",
    "matches_all",
]
