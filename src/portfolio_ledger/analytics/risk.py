"""Risk analytics derived from a snapshot of ledger positions."""

from __future__ import annotations

import math
from typing import Iterable, Sequence

import pandas as pd

from portfolio_ledger.core.models import Position, PositionStatus, RiskMetrics


class RiskCalculator:
    """Exposure, drawdown, volatility and VaR.

    Every metric degrades to 0 on empty or insufficient data; nothing here
    raises for sparse portfolios.
    """

    def __init__(self, var_confidence: float = 0.95) -> None:
        self._var_confidence = var_confidence

    def calculate_portfolio_risk(self, positions: Iterable[Position]) -> RiskMetrics:
        positions = list(positions)
        return RiskMetrics(
            total_exposure=self.total_exposure(positions),
            max_drawdown=self.max_drawdown(positions),
            volatility=self.volatility(positions),
            var95=self.var_at_confidence(positions, self._var_confidence),
        )

    @staticmethod
    def total_exposure(positions: Iterable[Position]) -> float:
        return sum(
            (p.quantity * p.current_price for p in positions if p.status is PositionStatus.OPEN),
            0.0,
        )

    @staticmethod
    def max_drawdown(positions: Iterable[Position]) -> float:
        """Running-peak drawdown (percent) over cumulative P&L in insertion order.

        Open positions contribute their unrealized P&L, closed ones their
        realized P&L. This is a path over the position list, not a time series.
        """
        peak = 0.0
        current = 0.0
        worst = 0.0
        for position in positions:
            if position.status is PositionStatus.OPEN:
                current += position.unrealized_pnl
            else:
                current += position.realized_pnl or 0.0
            if current > peak:
                peak = current
            if peak > 0:
                worst = max(worst, (peak - current) / peak)
        return worst * 100

    @staticmethod
    def volatility(positions: Iterable[Position]) -> float:
        """Population standard deviation of per-position returns, in percent."""
        returns = [
            (p.current_price - p.entry_price) / p.entry_price
            for p in positions
            if p.entry_price and p.current_price
        ]
        if len(returns) < 2:
            return 0.0
        return float(pd.Series(returns, dtype="float64").std(ddof=0)) * 100

    def var_at_confidence(self, positions: Iterable[Position], confidence: float) -> float:
        """VaR over every position's last marked P&L; closed positions keep their final mark."""
        values = [p.unrealized_pnl for p in positions]
        return self.value_at_risk(values, confidence)

    @staticmethod
    def value_at_risk(values: Sequence[float], confidence: float) -> float:
        """Historical VaR: absolute value at index floor((1 - c) * n) of the sorted P&L."""
        if not values or not math.isfinite(confidence):
            return 0.0
        ordered = sorted(values)
        index = math.floor((1 - confidence) * len(ordered))
        if index < 0 or index >= len(ordered):
            return 0.0
        return abs(ordered[index])


def position_size(account_value: float, price: float, risk_percent: float = 2.0) -> int:
    """Units affordable when risking ``risk_percent`` of the account at ``price``."""
    if not price or price <= 0 or account_value <= 0:
        return 0
    return math.floor(account_value * (risk_percent / 100) / price)
