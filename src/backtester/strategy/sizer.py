"""Position sizing policies."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

from backtester.strategy.models import SizingMethod, SizingPolicy

MAX_CAPITAL_FRACTION = 0.95
RISK_FRACTION = 0.02
ATR_RISK_MULTIPLE = 2.0


@dataclass(frozen=True)
class SizeResult:
    allow: bool
    shares: int
    dollar_amount: float
    reason: str


class PositionSizer:
    """Turns a sizing policy into a dollar amount and a whole-share count.

    ``KELLY`` is a flat 2% of capital: a real Kelly fraction needs the win/loss
    distribution of past trades, which a run does not have while it is still
    simulating.
    """

    def __init__(self, policy: SizingPolicy) -> None:
        self.policy = policy

    def size(self, available_capital: float, price: float, volatility: Optional[float] = None) -> float:
        if available_capital <= 0 or price <= 0:
            return 0.0

        method = self.policy.method
        if method == SizingMethod.FIXED:
            amount = self.policy.value
        elif method == SizingMethod.PERCENT_CAPITAL:
            amount = available_capital * (self.policy.value / 100.0)
        elif method == SizingMethod.KELLY:
            amount = available_capital * RISK_FRACTION
        elif method == SizingMethod.VOLATILITY:
            if volatility is not None and volatility > 0:
                risk_per_share = ATR_RISK_MULTIPLE * volatility
                shares = math.floor((available_capital * RISK_FRACTION) / risk_per_share)
                amount = shares * price
            else:
                amount = available_capital * RISK_FRACTION
        else:  # pragma: no cover - exhaustive enum
            raise ValueError(f"Unsupported sizing method: {method}")

        return max(0.0, min(amount, available_capital * MAX_CAPITAL_FRACTION))

    @staticmethod
    def shares_for(dollar_amount: float, price: float) -> int:
        if price <= 0 or dollar_amount <= 0:
            return 0
        return math.floor(dollar_amount / price)

    def plan(self, available_capital: float, price: float, volatility: Optional[float] = None) -> SizeResult:
        amount = self.size(available_capital, price, volatility)
        shares = self.shares_for(amount, price)
        if shares <= 0:
            return SizeResult(False, 0, amount, "Size below one share")
        return SizeResult(True, shares, amount, "Sized")
