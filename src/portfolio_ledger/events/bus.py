"""Typed publish/subscribe bus for ledger and order notifications."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

Handler = Callable[[Any], None]


class LedgerEvent(str, Enum):
    POSITION_ADDED = "positionAdded"
    POSITION_CLOSED = "positionClosed"
    POSITION_UPDATED = "positionUpdated"
    PORTFOLIO_UPDATED = "portfolioUpdated"
    TRANSACTION_RECORDED = "transactionRecorded"
    ORDER_PLACED = "orderPlaced"
    ORDER_FILLED = "orderFilled"
    ORDER_CANCELLED = "orderCancelled"
    POSITION_MODIFIED = "positionModified"
    ACCOUNT_RESET = "accountReset"


class EventBus:
    """Dispatch events synchronously, in registration order.

    Every handler call is isolated: a raising handler is logged and the
    remaining handlers still run.
    """

    def __init__(self) -> None:
        self._handlers: Dict[LedgerEvent, List[Handler]] = {}

    def on(self, event: LedgerEvent | str, handler: Handler) -> Callable[[], None]:
        """Register ``handler``; the returned callable unsubscribes it."""
        key = LedgerEvent(event)
        self._handlers.setdefault(key, []).append(handler)
        return lambda: self.off(key, handler)

    def off(self, event: LedgerEvent | str, handler: Handler) -> None:
        handlers = self._handlers.get(LedgerEvent(event))
        if handlers and handler in handlers:
            handlers.remove(handler)

    def emit(self, event: LedgerEvent | str, payload: Any = None) -> int:
        """Invoke all handlers for ``event``; returns the number that failed."""
        key = LedgerEvent(event)
        failures = 0
        # snapshot so handlers may (un)subscribe while we dispatch
        for handler in list(self._handlers.get(key, ())):
            try:
                handler(payload)
            except Exception:  # noqa: BLE001
                failures += 1
                logger.exception("Handler %r failed for event %s", handler, key.value)
        return failures

    def handler_count(self, event: LedgerEvent | str) -> int:
        return len(self._handlers.get(LedgerEvent(event), ()))
