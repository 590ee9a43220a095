"""Simulated order handling in front of the position ledger."""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass, field, replace
from typing import Dict, List, Mapping, Optional
from uuid import uuid4

from portfolio_ledger.core.config import OrderConfig
from portfolio_ledger.core.errors import InvalidStateError, NotFoundError, ValidationError
from portfolio_ledger.core.models import (
    AccountInfo,
    Order,
    OrderBookState,
    OrderSide,
    OrderStatus,
    OrderType,
    Position,
    PositionType,
    Protection,
)
from portfolio_ledger.data.provider_base import TimeProvider
from portfolio_ledger.data.providers import SystemTimeProvider
from portfolio_ledger.events.bus import LedgerEvent
from portfolio_ledger.ledger.position_ledger import PositionLedger

logger = logging.getLogger(__name__)


@dataclass
class PriceReaction:
    filled: List[Order] = field(default_factory=list)
    closed: List[Position] = field(default_factory=list)


def _optional_level(value: Optional[float], label: str) -> Optional[float]:
    if value is None:
        return None
    try:
        level = float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{label} must be a number, got {value!r}") from exc
    if not math.isfinite(level) or level <= 0:
        raise ValidationError(f"{label} must be finite and positive, got {value!r}")
    return level


class OrderSimulator:
    """Market orders fill at once; limit/stop orders wait for ``on_price``.

    Filled orders open ledger positions (buy -> long, sell -> short). Stop
    loss and take profit levels are watched per position and close it at the
    triggering price.
    """

    def __init__(
        self,
        ledger: PositionLedger,
        config: OrderConfig | None = None,
        time_provider: TimeProvider | None = None,
        state: OrderBookState | None = None,
    ) -> None:
        self._ledger = ledger
        self._cfg = config or OrderConfig()
        self._time = time_provider or SystemTimeProvider()
        self._lock = threading.RLock()
        self._orders: Dict[str, Order] = {}
        self._protection: Dict[str, Protection] = {}
        if state is not None:
            self._orders = {order.id: replace(order) for order in state.orders}
            open_ids = {position.id for position in ledger.open_positions()}
            self._protection = {
                position_id: levels
                for position_id, levels in state.protection.items()
                if position_id in open_ids
            }
        # positions closed straight through the ledger drop their levels too
        ledger.events.on(LedgerEvent.POSITION_CLOSED, lambda position: self._protection.pop(position.id, None))

    def place_order(
        self,
        symbol: str,
        side: OrderSide | str,
        quantity: float,
        order_type: OrderType | str = OrderType.MARKET,
        *,
        price: Optional[float] = None,
        stop_loss: Optional[float] = None,
        take_profit: Optional[float] = None,
        market_price: Optional[float] = None,
    ) -> Order:
        order = self._build_order(symbol, side, quantity, order_type, price, stop_loss, take_profit)
        with self._lock:
            fill_price: Optional[float] = None
            if order.order_type is OrderType.MARKET:
                fill_price = _optional_level(market_price if market_price is not None else price, "price")
                if fill_price is None:
                    raise ValidationError("Market orders need a price")
            self._check_margin(order, fill_price if fill_price is not None else float(order.price or 0.0))
            self._orders[order.id] = order
            self._ledger.events.emit(LedgerEvent.ORDER_PLACED, replace(order))
            if fill_price is not None:
                self._fill(order, fill_price)
            logger.info(
                "%s %s order %s for %s %s",
                order.order_type.value,
                order.side.value,
                order.id,
                order.quantity,
                order.symbol,
            )
            return replace(order)

    def cancel_order(self, order_id: str) -> Order:
        with self._lock:
            order = self._orders.get(order_id)
            if order is None:
                raise NotFoundError(f"Order not found: {order_id}")
            if order.status is not OrderStatus.PENDING:
                raise InvalidStateError(f"Order cannot be cancelled in state {order.status.value}")
            order.status = OrderStatus.CANCELLED
            order.cancelled_at = self._time.now()
            self._ledger.events.emit(LedgerEvent.ORDER_CANCELLED, replace(order))
            return replace(order)

    def cancel_all_orders(self) -> int:
        with self._lock:
            pending = [o.id for o in self._orders.values() if o.status is OrderStatus.PENDING]
            for order_id in pending:
                self.cancel_order(order_id)
            return len(pending)

    def modify_position(
        self,
        position_id: str,
        *,
        stop_loss: Optional[float] = None,
        take_profit: Optional[float] = None,
    ) -> Position:
        with self._lock:
            position = self._ledger.get_position(position_id)
            if position is None:
                raise NotFoundError(f"Position not found: {position_id}")
            if not position.is_open:
                raise InvalidStateError(f"Position is not open: {position_id}")
            current_sl, current_tp = self._protection.get(position_id, (None, None))
            levels = (
                _optional_level(stop_loss, "stop_loss") if stop_loss is not None else current_sl,
                _optional_level(take_profit, "take_profit") if take_profit is not None else current_tp,
            )
            self._protection[position_id] = levels
            self._ledger.events.emit(
                LedgerEvent.POSITION_MODIFIED,
                {"positionId": position_id, "stopLoss": levels[0], "takeProfit": levels[1]},
            )
            return position

    def protection(self, position_id: str) -> Protection:
        with self._lock:
            return self._protection.get(position_id, (None, None))

    def close_all_positions(self, prices: Mapping[str, float]) -> List[Position]:
        closed: List[Position] = []
        with self._lock:
            for position in self._ledger.open_positions():
                price = prices.get(position.symbol)
                if price is None:
                    logger.warning("No price for %s, leaving %s open", position.symbol, position.id)
                    continue
                closed.append(self._close(position.id, price))
        return closed

    def account_info(self) -> AccountInfo:
        """Balance is capital plus realized P&L; equity is the marked portfolio value."""
        equity = self._ledger.portfolio_value
        margin = sum(
            (self.margin_required(p.quantity, p.current_price) for p in self._ledger.open_positions()),
            0.0,
        )
        return AccountInfo(
            balance=self._ledger.initial_capital + self._ledger.total_realized_pnl(),
            equity=equity,
            margin=margin,
            free_margin=equity - margin,
            margin_level=equity / margin * 100 if margin > 0 else 0.0,
            currency=self._cfg.currency,
        )

    def margin_required(self, quantity: float, price: float) -> float:
        return quantity * price * self._ledger.contract_size / self._cfg.leverage

    def snapshot(self) -> OrderBookState:
        with self._lock:
            return OrderBookState(
                orders=[replace(o) for o in self._orders.values()],
                protection=dict(self._protection),
            )

    def reset(self) -> None:
        """Forget every order and protection level."""
        with self._lock:
            self._orders.clear()
            self._protection.clear()

    def orders(self, status: OrderStatus | None = None) -> List[Order]:
        with self._lock:
            return [replace(o) for o in self._orders.values() if status is None or o.status is status]

    def pending_symbols(self) -> List[str]:
        with self._lock:
            return sorted({o.symbol for o in self._orders.values() if o.status is OrderStatus.PENDING})

    def on_price(self, symbol: str, price: float) -> PriceReaction:
        """Fill triggered pending orders, then apply stop loss / take profit."""
        reaction = PriceReaction()
        with self._lock:
            for order in list(self._orders.values()):
                if order.symbol != symbol or order.status is not OrderStatus.PENDING:
                    continue
                if self._is_triggered(order, price):
                    fill_price = order.price if order.order_type is OrderType.LIMIT else price
                    reaction.filled.append(self._fill(order, float(fill_price or price)))

            for position in self._ledger.open_positions():
                if position.symbol != symbol:
                    continue
                reason = self._protection_trigger(position, price)
                if reason:
                    logger.info("%s triggered for %s @ %s", reason, position.id, price)
                    reaction.closed.append(self._close(position.id, price))
        return reaction

    def _build_order(
        self,
        symbol: str,
        side: OrderSide | str,
        quantity: float,
        order_type: OrderType | str,
        price: Optional[float],
        stop_loss: Optional[float],
        take_profit: Optional[float],
    ) -> Order:
        if not isinstance(symbol, str) or not symbol.strip():
            raise ValidationError("Symbol is required")
        try:
            order_side = OrderSide(side)
            kind = OrderType(order_type)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        try:
            size = float(quantity)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Quantity must be a number, got {quantity!r}") from exc
        if not math.isfinite(size) or size <= 0:
            raise ValidationError("Quantity must be greater than 0")
        if size > self._cfg.max_quantity:
            raise ValidationError(f"Maximum quantity is {self._cfg.max_quantity:g}")
        limit_price = _optional_level(price, "price")
        if kind is not OrderType.MARKET and limit_price is None:
            raise ValidationError(f"Price is required for {kind.value} orders")
        return Order(
            id=f"ord_{uuid4().hex}",
            symbol=symbol,
            side=order_side,
            quantity=size,
            order_type=kind,
            created_at=self._time.now(),
            price=limit_price,
            stop_loss=_optional_level(stop_loss, "stop_loss"),
            take_profit=_optional_level(take_profit, "take_profit"),
        )

    def _check_margin(self, order: Order, price: float) -> None:
        required = self.margin_required(order.quantity, price)
        available = self.account_info().free_margin
        if available < required:
            raise ValidationError(f"Insufficient margin. Required: {required:.2f}, available: {available:.2f}")

    def _fill(self, order: Order, fill_price: float) -> Order:
        position_id = self._ledger.open_position(
            order.symbol,
            order.quantity,
            fill_price,
            order.side.position_type,
        )
        order.status = OrderStatus.FILLED
        order.fill_price = fill_price
        order.filled_at = self._time.now()
        order.position_id = position_id
        if order.stop_loss is not None or order.take_profit is not None:
            self._protection[position_id] = (order.stop_loss, order.take_profit)
        filled = replace(order)
        self._ledger.events.emit(LedgerEvent.ORDER_FILLED, filled)
        return filled

    def _close(self, position_id: str, price: float) -> Position:
        self._protection.pop(position_id, None)
        return self._ledger.close_position(position_id, price)

    @staticmethod
    def _is_triggered(order: Order, price: float) -> bool:
        level = order.price or 0.0
        buying = order.side is OrderSide.BUY
        if order.order_type is OrderType.LIMIT:
            return price <= level if buying else price >= level
        if order.order_type is OrderType.STOP:
            return price >= level if buying else price <= level
        return False

    def _protection_trigger(self, position: Position, price: float) -> Optional[str]:
        stop_loss, take_profit = self._protection.get(position.id, (None, None))
        is_long = position.type is PositionType.LONG
        if stop_loss is not None and (price <= stop_loss if is_long else price >= stop_loss):
            return "Stop loss"
        if take_profit is not None and (price >= take_profit if is_long else price <= take_profit):
            return "Take profit"
        return None
