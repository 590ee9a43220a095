from __future__ import annotations

import random
import time
from datetime import datetime, timezone
from typing import Dict, Mapping, Tuple

from .provider_base import PriceFeed, TimeProvider

DEFAULT_BASE_PRICES: Dict[str, float] = {
    "EUR/USD": 1.0850,
    "GBP/USD": 1.2650,
    "USD/JPY": 149.50,
    "AUD/USD": 0.6542,
    "BTC/USD": 43500.0,
    "AAPL": 185.50,
    "GOOGL": 140.25,
    "MSFT": 375.80,
    "TSLA": 240.15,
}


class SystemTimeProvider(TimeProvider):
    def now(self) -> datetime:
        return datetime.now(tz=timezone.utc)


class FixedTimeProvider(TimeProvider):
    """Clock pinned to a given instant; advance it manually."""

    def __init__(self, current: datetime) -> None:
        self._current = current

    def now(self) -> datetime:
        return self._current

    def set(self, current: datetime) -> None:
        self._current = current


class MockPriceFeed(PriceFeed):
    """Random walk around base quotes for demos and offline runs."""

    def __init__(
        self,
        base_prices: Mapping[str, float] | None = None,
        *,
        max_move_pct: float = 0.01,
        cache_ttl_seconds: float = 0.5,
        default_price: float = 100.0,
        rng: random.Random | None = None,
    ) -> None:
        self._prices: Dict[str, float] = dict(base_prices or DEFAULT_BASE_PRICES)
        self._max_move_pct = max_move_pct
        self._cache_ttl = cache_ttl_seconds
        self._default_price = default_price
        self._rng = rng or random.Random()
        self._cache: Dict[str, Tuple[float, float]] = {}

    async def get_current_price(self, symbol: str) -> float:
        cached = self._cache.get(symbol)
        now = time.monotonic()
        if cached and now - cached[1] < self._cache_ttl:
            return cached[0]
        last = self._prices.get(symbol, self._default_price)
        move = self._rng.uniform(-self._max_move_pct, self._max_move_pct) * last
        price = max(last + move, last * 0.5)
        self._prices[symbol] = price
        self._cache[symbol] = (price, now)
        return price
