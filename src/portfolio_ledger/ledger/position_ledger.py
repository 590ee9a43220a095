"""Authoritative store of positions and the transaction log."""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import replace
from typing import Dict, List, Optional
from uuid import uuid4
from zoneinfo import ZoneInfo

from portfolio_ledger.core.errors import InvalidStateError, NotFoundError, ValidationError
from portfolio_ledger.core.models import (
    LedgerState,
    PortfolioSummary,
    Position,
    PositionStatus,
    PositionType,
    Transaction,
    TransactionType,
)
from portfolio_ledger.data.provider_base import TimeProvider
from portfolio_ledger.data.providers import SystemTimeProvider
from portfolio_ledger.events.bus import EventBus, LedgerEvent
from portfolio_ledger.ledger import pnl

logger = logging.getLogger(__name__)


def _require_price(value: float, label: str = "price") -> float:
    try:
        price = float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{label} must be a number, got {value!r}") from exc
    if not math.isfinite(price) or price <= 0:
        raise ValidationError(f"{label} must be finite and positive, got {value!r}")
    return price


def _require_type(value: PositionType | str) -> PositionType:
    try:
        return PositionType(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown position type: {value!r}") from exc


class PositionLedger:
    """Own the position map and transaction log; enforce the open -> closed lifecycle.

    Each mutation validates first, then recomputes every derived field and the
    portfolio value, and only then notifies subscribers. A rejected call
    leaves the ledger untouched.
    """

    def __init__(
        self,
        *,
        initial_capital: float = 10_000.0,
        events: EventBus | None = None,
        time_provider: TimeProvider | None = None,
        contract_size: float = 1.0,
        day_boundary_tz: str = "UTC",
        state: LedgerState | None = None,
    ) -> None:
        self._events = events or EventBus()
        self._time = time_provider or SystemTimeProvider()
        self._contract_size = contract_size
        self._tz = ZoneInfo(day_boundary_tz)
        self._lock = threading.RLock()
        self._positions: Dict[str, Position] = {}
        self._transactions: List[Transaction] = []
        if state is not None:
            self._initial_capital = state.initial_capital
            self._positions = {position.id: replace(position) for position in state.positions}
            self._transactions = list(state.transactions)
            self._portfolio_value = state.portfolio_value
        else:
            self._initial_capital = float(initial_capital)
            self._portfolio_value = self._initial_capital

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def initial_capital(self) -> float:
        return self._initial_capital

    @property
    def portfolio_value(self) -> float:
        return self._portfolio_value

    @property
    def contract_size(self) -> float:
        return self._contract_size

    def open_position(
        self,
        symbol: str,
        quantity: float,
        price: float,
        type: PositionType | str = PositionType.LONG,
    ) -> str:
        if not isinstance(symbol, str) or not symbol.strip():
            raise ValidationError("symbol is required")
        try:
            size = float(quantity)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"quantity must be a number, got {quantity!r}") from exc
        if not math.isfinite(size) or size <= 0:
            raise ValidationError(f"quantity must be positive, got {quantity!r}")
        entry = _require_price(price)
        position_type = _require_type(type)

        with self._lock:
            position = Position(
                id=f"pos_{uuid4().hex}",
                symbol=symbol,
                quantity=size,
                entry_price=entry,
                current_price=entry,
                type=position_type,
                open_time=self._time.now(),
            )
            self._positions[position.id] = position
            transaction = self._record_transaction(TransactionType.OPEN, position)
            self._update_portfolio_metrics()
            self._notify_recorded(transaction)
            logger.info(
                "Opened %s %s x%s @ %s (%s)",
                position_type.value,
                symbol,
                size,
                entry,
                position.id,
            )
            self._events.emit(LedgerEvent.POSITION_ADDED, replace(position))
            return position.id

    def close_position(self, position_id: str, price: float) -> Position:
        with self._lock:
            position = self._positions.get(position_id)
            if position is None:
                raise NotFoundError(f"Position not found: {position_id}")
            if position.status is PositionStatus.CLOSED:
                raise InvalidStateError(f"Position already closed: {position_id}")
            close_price = _require_price(price)

            realized = pnl.position_pnl(
                position.entry_price,
                close_price,
                position.quantity,
                position.type,
                self._contract_size,
            )
            position.close_price = close_price
            position.close_time = self._time.now()
            position.realized_pnl = realized
            position.status = PositionStatus.CLOSED

            transaction = self._record_transaction(TransactionType.CLOSE, position)
            self._update_portfolio_metrics()
            self._notify_recorded(transaction)
            logger.info("Closed %s @ %s realized=%.4f", position_id, close_price, realized)
            closed = replace(position)
            self._events.emit(LedgerEvent.POSITION_CLOSED, closed)
            return closed

    def update_position_price(self, position_id: str, new_price: float) -> None:
        with self._lock:
            position = self._positions.get(position_id)
            if position is None or position.status is not PositionStatus.OPEN:
                return
            price = _require_price(new_price)
            position.current_price = price
            position.unrealized_pnl = pnl.position_pnl(
                position.entry_price,
                price,
                position.quantity,
                position.type,
                self._contract_size,
            )
            self._update_portfolio_metrics()
            self._events.emit(LedgerEvent.PORTFOLIO_UPDATED, self.summary())
            self._events.emit(LedgerEvent.POSITION_UPDATED, replace(position))

    def get_position(self, position_id: str) -> Optional[Position]:
        with self._lock:
            position = self._positions.get(position_id)
            return replace(position) if position else None

    def positions(self) -> List[Position]:
        """Copies of every position in insertion order."""
        with self._lock:
            return [replace(p) for p in self._positions.values()]

    def open_positions(self) -> List[Position]:
        return [p for p in self.positions() if p.status is PositionStatus.OPEN]

    def closed_positions(self) -> List[Position]:
        return [p for p in self.positions() if p.status is PositionStatus.CLOSED]

    def transactions(self) -> List[Transaction]:
        with self._lock:
            return list(self._transactions)

    def total_unrealized_pnl(self) -> float:
        with self._lock:
            return pnl.total_unrealized_pnl(self._positions.values())

    def total_realized_pnl(self) -> float:
        with self._lock:
            return pnl.total_realized_pnl(self._positions.values())

    def summary(self) -> PortfolioSummary:
        with self._lock:
            return pnl.build_summary(
                self._positions.values(),
                self._transactions,
                initial_capital=self._initial_capital,
                total_value=self._portfolio_value,
                today=self._time.now().astimezone(self._tz).date(),
                tz=self._tz,
            )

    def snapshot(self) -> LedgerState:
        with self._lock:
            return LedgerState(
                positions=[replace(p) for p in self._positions.values()],
                transactions=list(self._transactions),
                portfolio_value=self._portfolio_value,
                initial_capital=self._initial_capital,
            )

    def reset(self) -> None:
        """Drop every position and transaction and return to the initial capital."""
        with self._lock:
            self._positions.clear()
            self._transactions.clear()
            self._portfolio_value = self._initial_capital
            logger.info("Ledger reset to %.2f", self._initial_capital)
            self._events.emit(LedgerEvent.PORTFOLIO_UPDATED, self.summary())

    def _record_transaction(self, txn_type: TransactionType, position: Position) -> Transaction:
        is_open = txn_type is TransactionType.OPEN
        transaction = Transaction(
            id=f"txn_{uuid4().hex}",
            type=txn_type,
            position_id=position.id,
            symbol=position.symbol,
            quantity=position.quantity,
            price=position.entry_price if is_open else float(position.close_price or 0.0),
            pnl=0.0 if is_open else float(position.realized_pnl or 0.0),
            timestamp=self._time.now(),
        )
        self._transactions.append(transaction)
        return transaction

    def _update_portfolio_metrics(self) -> None:
        values = self._positions.values()
        self._portfolio_value = (
            self._initial_capital + pnl.total_realized_pnl(values) + pnl.total_unrealized_pnl(values)
        )

    def _notify_recorded(self, transaction: Transaction) -> None:
        self._events.emit(LedgerEvent.TRANSACTION_RECORDED, transaction)
        self._events.emit(LedgerEvent.PORTFOLIO_UPDATED, self.summary())
