"""Pure P&L computations over ledger positions and transactions."""

from __future__ import annotations

from datetime import date, tzinfo
from typing import Iterable

from portfolio_ledger.core.models import (
    PortfolioSummary,
    Position,
    PositionStatus,
    PositionType,
    Transaction,
)


def position_pnl(
    entry_price: float,
    price: float,
    quantity: float,
    position_type: PositionType,
    contract_size: float = 1.0,
) -> float:
    """Signed price difference times size: positive when the trade is in profit."""
    return (price - entry_price) * quantity * position_type.sign * contract_size


def total_unrealized_pnl(positions: Iterable[Position]) -> float:
    return sum((p.unrealized_pnl for p in positions if p.status is PositionStatus.OPEN), 0.0)


def total_realized_pnl(positions: Iterable[Position]) -> float:
    return sum((p.realized_pnl or 0.0 for p in positions if p.status is PositionStatus.CLOSED), 0.0)


def total_return(positions: Iterable[Position]) -> float:
    positions = list(positions)
    return total_realized_pnl(positions) + total_unrealized_pnl(positions)


def total_return_percent(positions: Iterable[Position], initial_capital: float) -> float:
    if not initial_capital:
        return 0.0
    return total_return(positions) / initial_capital * 100


def day_change(transactions: Iterable[Transaction], today: date, tz: tzinfo) -> float:
    """Sum of transaction P&L booked on ``today`` as seen in ``tz``."""
    return sum((txn.pnl for txn in transactions if txn.timestamp.astimezone(tz).date() == today), 0.0)


def day_change_percent(change: float, total_value: float) -> float:
    previous_value = total_value - change
    if previous_value == 0:
        return 0.0
    return change / previous_value * 100


def build_summary(
    positions: Iterable[Position],
    transactions: Iterable[Transaction],
    *,
    initial_capital: float,
    total_value: float,
    today: date,
    tz: tzinfo,
) -> PortfolioSummary:
    positions = list(positions)
    change = day_change(transactions, today, tz)
    return PortfolioSummary(
        total_value=total_value,
        total_unrealized_pnl=total_unrealized_pnl(positions),
        total_realized_pnl=total_realized_pnl(positions),
        open_positions=sum(1 for p in positions if p.status is PositionStatus.OPEN),
        closed_positions=sum(1 for p in positions if p.status is PositionStatus.CLOSED),
        total_return=total_return(positions),
        total_return_percent=total_return_percent(positions, initial_capital),
        day_change=change,
        day_change_percent=day_change_percent(change, total_value),
    )
