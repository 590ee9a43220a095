from __future__ import annotations

import asyncio
import logging
from typing import Dict, List

from portfolio_ledger.core.errors import LedgerError
from portfolio_ledger.data.provider_base import PriceFeed
from portfolio_ledger.execution.orders import OrderSimulator
from portfolio_ledger.ledger.position_ledger import PositionLedger

logger = logging.getLogger(__name__)


class PriceRefresher:
    """Periodic mark-to-market: one price lookup per symbol, one update per open position."""

    def __init__(
        self,
        ledger: PositionLedger,
        price_feed: PriceFeed,
        interval_seconds: float = 1.0,
        simulator: OrderSimulator | None = None,
    ) -> None:
        self._ledger = ledger
        self._feed = price_feed
        self._interval = interval_seconds
        self._simulator = simulator
        self._task: asyncio.Task | None = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._refresh_loop(), name="price-refresh")

    async def run_forever(self) -> None:
        await self.start()
        if self._task:
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    async def stop(self) -> None:
        self._running = False
        if self._task is None:
            return
        self._task.cancel()
        try:
            await asyncio.gather(self._task, return_exceptions=True)
        finally:
            self._task = None

    async def _refresh_loop(self) -> None:
        while self._running:
            try:
                await self.refresh_once()
            except Exception as exc:
                logger.exception("Price refresh failed: %s", exc)
            await asyncio.sleep(self._interval)

    async def refresh_once(self) -> int:
        """Refresh every open position; returns how many were updated."""
        by_symbol: Dict[str, List[str]] = {}
        for position in self._ledger.open_positions():
            by_symbol.setdefault(position.symbol, []).append(position.id)
        if self._simulator:
            for symbol in self._simulator.pending_symbols():
                by_symbol.setdefault(symbol, [])

        updated = 0
        for symbol, position_ids in by_symbol.items():
            try:
                price = await self._feed.get_current_price(symbol)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Failed to update price for %s: %s", symbol, exc)
                continue
            for position_id in position_ids:
                try:
                    self._ledger.update_position_price(position_id, price)
                    updated += 1
                except LedgerError as exc:
                    logger.warning("Rejected price %s for %s: %s", price, position_id, exc)
            if self._simulator:
                try:
                    self._simulator.on_price(symbol, price)
                except LedgerError as exc:
                    logger.warning("Order check failed for %s: %s", symbol, exc)
        return updated
