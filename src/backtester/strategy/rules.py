"""Entry/exit rule evaluation against indicator snapshots."""

from __future__ import annotations

from typing import Iterable, Optional

from backtester.strategy.indicators import Indicator, IndicatorSnapshot
from backtester.strategy.models import Comparand, Condition, Operator

EQUALITY_EPSILON = 1e-4


def _operand(snapshot: IndicatorSnapshot, comparand: Comparand) -> Optional[float]:
    if isinstance(comparand, Indicator):
        return snapshot.value(comparand)
    return comparand


def evaluate(
    condition: Condition,
    current: IndicatorSnapshot,
    previous: Optional[IndicatorSnapshot],
) -> bool:
    left = current.value(condition.indicator)
    right = _operand(current, condition.comparand)
    if left is None or right is None:
        return False

    op = condition.operator
    if op == Operator.GT:
        return left > right
    if op == Operator.LT:
        return left < right
    if op == Operator.GE:
        return left >= right
    if op == Operator.LE:
        return left <= right
    if op == Operator.EQ:
        return abs(left - right) < EQUALITY_EPSILON

    if previous is None:
        return False
    prev_left = previous.value(condition.indicator)
    prev_right = _operand(previous, condition.comparand)
    if prev_left is None or prev_right is None:
        return False
    if op == Operator.CROSS_ABOVE:
        return prev_left <= prev_right and left > right
    if op == Operator.CROSS_BELOW:
        return prev_left >= prev_right and left < right
    return False


def matches_all(
    conditions: Iterable[Condition],
    current: IndicatorSnapshot,
    previous: Optional[IndicatorSnapshot],
) -> bool:
    return all(evaluate(condition, current, previous) for condition in conditions)
