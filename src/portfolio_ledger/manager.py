"""Wire the ledger, analytics, persistence, replication and price refresh together."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import httpx

from portfolio_ledger.analytics.performance import PerformanceAnalyzer
from portfolio_ledger.analytics.risk import RiskCalculator, position_size
from portfolio_ledger.core.config import Config
from portfolio_ledger.core.models import AccountInfo, PerformanceReport, PortfolioSummary, RiskMetrics
from portfolio_ledger.data.fetcher import HttpPriceFeed
from portfolio_ledger.data.provider_base import PriceFeed, TimeProvider
from portfolio_ledger.data.providers import MockPriceFeed, SystemTimeProvider
from portfolio_ledger.events.bus import EventBus, LedgerEvent
from portfolio_ledger.execution.orders import OrderSimulator
from portfolio_ledger.ledger.position_ledger import PositionLedger
from portfolio_ledger.monitoring.logger import PortfolioConsole
from portfolio_ledger.scheduler.refresher import PriceRefresher
from portfolio_ledger.storage.persistence import LedgerPersistence, OrderBookPersistence
from portfolio_ledger.storage.replicator import TransactionReplicator
from portfolio_ledger.storage.store import JsonFileStore, KeyValueStore, MemoryStore

logger = logging.getLogger(__name__)


class PortfolioManager:
    """Composition root: one explicitly constructed ledger and its collaborators."""

    def __init__(
        self,
        config: Config,
        *,
        store: KeyValueStore | None = None,
        price_feed: PriceFeed | None = None,
        time_provider: TimeProvider | None = None,
        transport: httpx.BaseTransport | None = None,
        console: PortfolioConsole | None = None,
    ) -> None:
        self._config = config
        self._time = time_provider or SystemTimeProvider()
        self.events = EventBus()

        if store is None:
            store = JsonFileStore(Path(config.storage.directory)) if config.storage.enabled else MemoryStore()
        self.persistence = LedgerPersistence(store, key=config.storage.key)
        state = self.persistence.load(config.ledger.initial_capital)
        self.ledger = PositionLedger(
            events=self.events,
            time_provider=self._time,
            contract_size=config.ledger.contract_size,
            day_boundary_tz=config.ledger.day_boundary_tz,
            state=state,
        )
        self.persistence.attach(self.ledger)

        self.replicator: TransactionReplicator | None = None
        if config.api.replicate:
            self.replicator = TransactionReplicator(config.api, transport=transport)
            self.replicator.attach(self.events)
            self.replicator.start()

        self.order_persistence = OrderBookPersistence(store, key=config.storage.orders_key)
        self.orders = OrderSimulator(
            self.ledger,
            config.orders,
            time_provider=self._time,
            state=self.order_persistence.load(),
        )
        self.order_persistence.attach(self.orders, self.events)
        self.price_feed = price_feed or self._build_price_feed(config)
        self.refresher = PriceRefresher(
            self.ledger,
            self.price_feed,
            interval_seconds=config.refresh.interval_seconds,
            simulator=self.orders,
        )
        self.risk = RiskCalculator(var_confidence=config.risk.var_confidence)
        self.performance = PerformanceAnalyzer(performer_limit=config.risk.performer_limit)
        self.console = console
        if console is not None:
            console.attach(self.events)

    @staticmethod
    def _build_price_feed(config: Config) -> PriceFeed:
        if config.refresh.price_source == "http":
            return HttpPriceFeed(config.api)
        return MockPriceFeed(cache_ttl_seconds=config.refresh.mock_cache_ttl_seconds)

    def summary(self) -> PortfolioSummary:
        return self.ledger.summary()

    def risk_metrics(self) -> RiskMetrics:
        return self.risk.calculate_portfolio_risk(self.ledger.positions())

    def asset_allocation(self) -> dict[str, float]:
        return self.performance.asset_allocation(self.ledger.positions())

    def performance_report(self) -> PerformanceReport:
        return self.performance.generate_report(self.ledger, self.risk)

    def account_info(self) -> AccountInfo:
        return self.orders.account_info()

    def reset(self) -> AccountInfo:
        """Start the demo account over: empty ledger, no orders, nothing stored."""
        self.orders.reset()
        self.ledger.reset()
        self.persistence.clear()
        self.order_persistence.clear()
        account = self.account_info()
        logger.info("Demo account reset to %.2f", account.balance)
        self.events.emit(LedgerEvent.ACCOUNT_RESET, account)
        return account

    async def position_sizing(self, symbol: str, risk_percent: float | None = None) -> int:
        percent = self._config.risk.position_risk_percent if risk_percent is None else risk_percent
        price = await self.price_feed.get_current_price(symbol)
        return position_size(self.ledger.portfolio_value, price, percent)

    async def run(self, seconds: float) -> None:
        """Drive the price refresh loop for ``seconds`` then stop it."""
        await self.refresher.start()
        try:
            await asyncio.sleep(seconds)
        finally:
            await self.refresher.stop()

    async def shutdown(self) -> None:
        await self.refresher.stop()
        await self.price_feed.aclose()
        self.persistence.save(self.ledger)
        self.order_persistence.save(self.orders)
        if self.replicator:
            self.replicator.close()
        logger.info("Portfolio manager stopped")
