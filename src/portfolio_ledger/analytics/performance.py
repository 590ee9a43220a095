"""Read-only performance aggregation over ledger positions and transactions."""

from __future__ import annotations

import logging
from datetime import timezone
from typing import Dict, Iterable, List

import pandas as pd

from portfolio_ledger.analytics.risk import RiskCalculator
from portfolio_ledger.core.models import (
    PerformanceReport,
    Position,
    PositionStatus,
    TradingStats,
    Transaction,
    TransactionType,
)
from portfolio_ledger.ledger.position_ledger import PositionLedger

logger = logging.getLogger(__name__)


def _closed(positions: Iterable[Position]) -> List[Position]:
    return [p for p in positions if p.status is PositionStatus.CLOSED]


class PerformanceAnalyzer:
    def __init__(self, performer_limit: int = 5) -> None:
        self._limit = performer_limit

    def top_performers(self, positions: Iterable[Position], n: int | None = None) -> List[Position]:
        limit = self._limit if n is None else n
        ranked = sorted(_closed(positions), key=lambda p: p.realized_pnl or 0.0, reverse=True)
        return ranked[: max(limit, 0)]

    def worst_performers(self, positions: Iterable[Position], n: int | None = None) -> List[Position]:
        limit = self._limit if n is None else n
        ranked = sorted(_closed(positions), key=lambda p: p.realized_pnl or 0.0)
        return ranked[: max(limit, 0)]

    @staticmethod
    def monthly_returns(transactions: Iterable[Transaction]) -> Dict[str, float]:
        """Summed close P&L keyed by UTC ``YYYY-MM``."""
        rows = [
            {"month": txn.timestamp.astimezone(timezone.utc).strftime("%Y-%m"), "pnl": txn.pnl}
            for txn in transactions
            if txn.type is TransactionType.CLOSE and txn.pnl
        ]
        if not rows:
            return {}
        grouped = pd.DataFrame(rows).groupby("month", sort=True)["pnl"].sum()
        return {str(month): float(total) for month, total in grouped.items()}

    @staticmethod
    def trading_stats(positions: Iterable[Position]) -> TradingStats:
        closed = _closed(positions)
        total = len(closed)
        if total == 0:
            return TradingStats()
        wins = [p.realized_pnl or 0.0 for p in closed if (p.realized_pnl or 0.0) > 0]
        losses = [p.realized_pnl or 0.0 for p in closed if (p.realized_pnl or 0.0) < 0]
        gross_loss = abs(sum(losses))
        return TradingStats(
            total_trades=total,
            winning_trades=len(wins),
            losing_trades=len(losses),
            win_rate=len(wins) / total * 100,
            avg_win=sum(wins) / len(wins) if wins else 0.0,
            avg_loss=sum(losses) / len(losses) if losses else 0.0,
            profit_factor=sum(wins) / gross_loss if gross_loss > 0 else 0.0,
        )

    @staticmethod
    def asset_allocation(positions: Iterable[Position]) -> Dict[str, float]:
        """Percent of open notional per symbol."""
        exposure: Dict[str, float] = {}
        for position in positions:
            if position.status is not PositionStatus.OPEN:
                continue
            value = position.quantity * position.current_price
            exposure[position.symbol] = exposure.get(position.symbol, 0.0) + value
        total = sum(exposure.values())
        if total <= 0:
            return {}
        return {symbol: value / total * 100 for symbol, value in exposure.items()}

    def generate_report(self, ledger: PositionLedger, risk: RiskCalculator) -> PerformanceReport:
        positions = ledger.positions()
        transactions = ledger.transactions()
        report = PerformanceReport(
            summary=ledger.summary(),
            allocation=self.asset_allocation(positions),
            risk=risk.calculate_portfolio_risk(positions),
            top_performers=self.top_performers(positions),
            worst_performers=self.worst_performers(positions),
            monthly_returns=self.monthly_returns(transactions),
            trading_stats=self.trading_stats(positions),
        )
        logger.debug(
            "Generated report: %d positions, %d transactions",
            len(positions),
            len(transactions),
        )
        return report
