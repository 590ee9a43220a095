"""Save and restore ledger and order book state through a local key-value store."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, Callable, Iterable, List, Optional

from portfolio_ledger.core.errors import LedgerIOError
from portfolio_ledger.core.models import LedgerState, OrderBookState
from portfolio_ledger.events.bus import EventBus, LedgerEvent
from portfolio_ledger.ledger.position_ledger import PositionLedger
from portfolio_ledger.storage.store import KeyValueStore

if TYPE_CHECKING:
    from portfolio_ledger.execution.orders import OrderSimulator

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_KEY = "portfolioData"
DEFAULT_ORDERS_KEY = "trading_orders"

_LEDGER_SAVE_EVENTS = (
    LedgerEvent.POSITION_ADDED,
    LedgerEvent.POSITION_CLOSED,
    LedgerEvent.POSITION_UPDATED,
)

_ORDER_SAVE_EVENTS = (
    LedgerEvent.ORDER_PLACED,
    LedgerEvent.ORDER_FILLED,
    LedgerEvent.ORDER_CANCELLED,
    LedgerEvent.POSITION_MODIFIED,
    LedgerEvent.POSITION_CLOSED,
)


class _StoreBinding:
    """One JSON document under one store key, saved on a set of events.

    Failures are logged and swallowed: in-memory state stays authoritative
    whatever happens to the store.
    """

    def __init__(self, store: KeyValueStore, key: str) -> None:
        self._store = store
        self._key = key
        self._unsubscribers: List[Callable[[], None]] = []

    @property
    def key(self) -> str:
        return self._key

    def _read(self) -> Optional[Any]:
        try:
            raw = self._store.get(self._key)
        except LedgerIOError as exc:
            logger.warning("Failed to read %s: %s", self._key, exc)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as exc:
            logger.warning("Discarding malformed state %s: %s", self._key, exc)
            return None

    def _write(self, payload: Any) -> bool:
        try:
            self._store.set(self._key, json.dumps(payload, ensure_ascii=True))
        except (LedgerIOError, TypeError, ValueError) as exc:
            logger.error("Failed to persist %s: %s", self._key, exc)
            return False
        return True

    def _subscribe(self, events: EventBus, names: Iterable[LedgerEvent], save: Callable[[], bool]) -> None:
        for event in names:
            self._unsubscribers.append(events.on(event, lambda _payload: save()))

    def clear(self) -> None:
        try:
            self._store.delete(self._key)
        except LedgerIOError as exc:
            logger.error("Failed to clear %s: %s", self._key, exc)

    def detach(self) -> None:
        while self._unsubscribers:
            self._unsubscribers.pop()()


class LedgerPersistence(_StoreBinding):
    """Serialize ``{positions, transactions, portfolioValue, initialCapital}``."""

    def __init__(self, store: KeyValueStore, key: str = DEFAULT_STORAGE_KEY) -> None:
        super().__init__(store, key)

    def load(self, default_capital: float) -> LedgerState:
        """Restore persisted state, or an empty ledger at ``default_capital``."""
        empty = LedgerState(portfolio_value=default_capital, initial_capital=default_capital)
        payload = self._read()
        if payload is None:
            return empty
        try:
            return LedgerState.from_dict(payload, default_capital=default_capital)
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Discarding malformed ledger state %s: %s", self._key, exc)
            return empty

    def save(self, ledger: PositionLedger) -> bool:
        return self._write(ledger.snapshot().to_dict())

    def attach(self, ledger: PositionLedger) -> None:
        """Auto-save on every position lifecycle event."""
        self._subscribe(ledger.events, _LEDGER_SAVE_EVENTS, lambda: self.save(ledger))


class OrderBookPersistence(_StoreBinding):
    """Serialize the simulator's orders and stop loss / take profit levels."""

    def __init__(self, store: KeyValueStore, key: str = DEFAULT_ORDERS_KEY) -> None:
        super().__init__(store, key)

    def load(self) -> OrderBookState:
        payload = self._read()
        if payload is None:
            return OrderBookState()
        try:
            return OrderBookState.from_dict(payload)
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            logger.warning("Discarding malformed order book %s: %s", self._key, exc)
            return OrderBookState()

    def save(self, simulator: OrderSimulator) -> bool:
        return self._write(simulator.snapshot().to_dict())

    def attach(self, simulator: OrderSimulator, events: EventBus) -> None:
        """Auto-save on order and protection changes."""
        self._subscribe(events, _ORDER_SAVE_EVENTS, lambda: self.save(simulator))
