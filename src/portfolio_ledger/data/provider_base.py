from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime


class PriceFeed(ABC):
    @abstractmethod
    async def get_current_price(self, symbol: str) -> float:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


class TimeProvider(ABC):
    @abstractmethod
    def now(self) -> datetime:
        raise NotImplementedError
