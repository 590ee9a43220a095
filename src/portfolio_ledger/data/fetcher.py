"""Market data lookup over the remote price endpoint with retry."""

from __future__ import annotations

import math
from urllib.parse import quote

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from portfolio_ledger.core.config import ApiConfig
from portfolio_ledger.core.errors import LedgerIOError
from portfolio_ledger.data.provider_base import PriceFeed


class HttpPriceFeed(PriceFeed):
    """Retrieve ``{"price": number}`` quotes from ``GET /api/market-data/{symbol}``."""

    def __init__(self, config: ApiConfig, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._cfg = config
        self._client = httpx.AsyncClient(
            base_url=config.base_url,
            timeout=config.timeout_seconds,
            transport=transport,
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            wait=wait_exponential(
                multiplier=self._cfg.backoff_multiplier,
                min=self._cfg.backoff_min,
                max=self._cfg.backoff_max,
            ),
            stop=stop_after_attempt(self._cfg.retry_attempts),
            retry=retry_if_exception_type(httpx.TransportError),
            reraise=True,
        )

    async def get_current_price(self, symbol: str) -> float:
        path = self._cfg.market_data_path.format(symbol=quote(symbol, safe=""))
        try:
            async for attempt in self._retrying():
                with attempt:
                    response = await self._client.get(path)
                    response.raise_for_status()
                    payload = response.json()
        except httpx.HTTPError as exc:
            raise LedgerIOError(f"Price lookup failed for {symbol}: {exc}") from exc
        except ValueError as exc:
            raise LedgerIOError(f"Malformed price payload for {symbol}: {exc}") from exc

        try:
            price = float(payload["price"])
        except (KeyError, TypeError, ValueError) as exc:
            raise LedgerIOError(f"Malformed price payload for {symbol}: {payload!r}") from exc
        if not math.isfinite(price) or price <= 0:
            raise LedgerIOError(f"Invalid price for {symbol}: {price}")
        return price

    async def aclose(self) -> None:
        await self._client.aclose()
