"""Shared data models used across modules."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class PositionType(str, Enum):
    LONG = "long"
    SHORT = "short"

    @property
    def sign(self) -> float:
        return 1.0 if self is PositionType.LONG else -1.0


class PositionStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class TransactionType(str, Enum):
    OPEN = "open"
    CLOSE = "close"


class OrderSide(str, Enum):
    BUY = "buy"
    SELL = "sell"

    @property
    def position_type(self) -> PositionType:
        return PositionType.LONG if self is OrderSide.BUY else PositionType.SHORT


class OrderType(str, Enum):
    MARKET = "market"
    LIMIT = "limit"
    STOP = "stop"


class OrderStatus(str, Enum):
    PENDING = "pending"
    FILLED = "filled"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        return datetime.fromisoformat(value)
    raise ValueError(f"Invalid timestamp: {value!r}")


def _optional_datetime(value: Any) -> Optional[datetime]:
    return None if value is None else _parse_datetime(value)


def _optional_float(value: Any) -> Optional[float]:
    return None if value is None else float(value)


def _camel_keys(values: Dict[str, Any]) -> Dict[str, Any]:
    result = {}
    for name, value in values.items():
        head, *rest = name.split("_")
        result[head + "".join(part.title() for part in rest)] = value
    return result


@dataclass
class Position:
    """One simulated trade. Derived P&L fields are maintained by the ledger."""

    id: str
    symbol: str
    quantity: float
    entry_price: float
    current_price: float
    type: PositionType
    open_time: datetime
    status: PositionStatus = PositionStatus.OPEN
    unrealized_pnl: float = 0.0
    realized_pnl: Optional[float] = None
    close_price: Optional[float] = None
    close_time: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.status is PositionStatus.OPEN

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "quantity": self.quantity,
            "entryPrice": self.entry_price,
            "currentPrice": self.current_price,
            "closePrice": self.close_price,
            "type": self.type.value,
            "openTime": self.open_time.isoformat(),
            "closeTime": self.close_time.isoformat() if self.close_time else None,
            "unrealizedPnL": self.unrealized_pnl,
            "realizedPnL": self.realized_pnl,
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Position":
        position = cls(
            id=str(payload["id"]),
            symbol=str(payload["symbol"]),
            quantity=float(payload["quantity"]),
            entry_price=float(payload["entryPrice"]),
            current_price=float(payload["currentPrice"]),
            type=PositionType(payload["type"]),
            open_time=_parse_datetime(payload["openTime"]),
            status=PositionStatus(payload.get("status", "open")),
            unrealized_pnl=float(payload.get("unrealizedPnL") or 0.0),
            realized_pnl=_optional_float(payload.get("realizedPnL")),
            close_price=_optional_float(payload.get("closePrice")),
            close_time=_optional_datetime(payload.get("closeTime")),
        )
        closed_fields = (position.close_price, position.close_time, position.realized_pnl)
        if position.is_open and any(value is not None for value in closed_fields):
            raise ValueError(f"Open position {position.id} carries close fields")
        if not position.is_open and any(value is None for value in closed_fields):
            raise ValueError(f"Closed position {position.id} is missing close fields")
        return position


@dataclass(frozen=True)
class Transaction:
    """Immutable audit record appended on every open/close."""

    id: str
    type: TransactionType
    position_id: str
    symbol: str
    quantity: float
    price: float
    pnl: float
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "positionId": self.position_id,
            "symbol": self.symbol,
            "quantity": self.quantity,
            "price": self.price,
            "pnl": self.pnl,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Transaction":
        return cls(
            id=str(payload["id"]),
            type=TransactionType(payload["type"]),
            position_id=str(payload["positionId"]),
            symbol=str(payload["symbol"]),
            quantity=float(payload["quantity"]),
            price=float(payload["price"]),
            pnl=float(payload.get("pnl") or 0.0),
            timestamp=_parse_datetime(payload["timestamp"]),
        )


@dataclass
class LedgerState:
    """Persisted shape of the ledger: positions in insertion order plus the log."""

    positions: List[Position] = field(default_factory=list)
    transactions: List[Transaction] = field(default_factory=list)
    portfolio_value: float = 0.0
    initial_capital: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "positions": [[position.id, position.to_dict()] for position in self.positions],
            "transactions": [txn.to_dict() for txn in self.transactions],
            "portfolioValue": self.portfolio_value,
            "initialCapital": self.initial_capital,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any], default_capital: float) -> "LedgerState":
        if not isinstance(payload, dict):
            raise ValueError("Ledger state must be a JSON object")
        positions = [Position.from_dict(entry) for _, entry in payload.get("positions") or []]
        transactions = [Transaction.from_dict(item) for item in payload.get("transactions") or []]
        raw_capital = payload.get("initialCapital")
        initial_capital = float(raw_capital) if raw_capital is not None else default_capital
        raw_value = payload.get("portfolioValue")
        portfolio_value = float(raw_value) if raw_value is not None else initial_capital
        return cls(
            positions=positions,
            transactions=transactions,
            portfolio_value=portfolio_value,
            initial_capital=initial_capital,
        )


@dataclass
class PortfolioSummary:
    total_value: float
    total_unrealized_pnl: float
    total_realized_pnl: float
    open_positions: int
    closed_positions: int
    total_return: float
    total_return_percent: float
    day_change: float
    day_change_percent: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalValue": self.total_value,
            "totalUnrealizedPnL": self.total_unrealized_pnl,
            "totalRealizedPnL": self.total_realized_pnl,
            "openPositions": self.open_positions,
            "closedPositions": self.closed_positions,
            "totalReturn": self.total_return,
            "totalReturnPercent": self.total_return_percent,
            "dayChange": self.day_change,
            "dayChangePercent": self.day_change_percent,
        }


@dataclass
class RiskMetrics:
    total_exposure: float = 0.0
    max_drawdown: float = 0.0
    volatility: float = 0.0
    var95: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return _camel_keys(asdict(self))


@dataclass
class TradingStats:
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    avg_win: float = 0.0
    avg_loss: float = 0.0
    profit_factor: float = 0.0

    def to_dict(self) -> Dict[str, float | int]:
        return _camel_keys(asdict(self))


@dataclass
class PerformanceReport:
    summary: PortfolioSummary
    allocation: Dict[str, float]
    risk: RiskMetrics
    top_performers: List[Position]
    worst_performers: List[Position]
    monthly_returns: Dict[str, float]
    trading_stats: TradingStats

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary.to_dict(),
            "allocation": dict(self.allocation),
            "riskMetrics": self.risk.to_dict(),
            "topPerformers": [position.to_dict() for position in self.top_performers],
            "worstPerformers": [position.to_dict() for position in self.worst_performers],
            "monthlyReturns": dict(self.monthly_returns),
            "tradingStats": self.trading_stats.to_dict(),
        }


@dataclass
class Order:
    """Simulated platform order; market orders fill on placement."""

    id: str
    symbol: str
    side: OrderSide
    quantity: float
    order_type: OrderType
    created_at: datetime
    price: Optional[float] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    status: OrderStatus = OrderStatus.PENDING
    fill_price: Optional[float] = None
    filled_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    position_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "side": self.side.value,
            "quantity": self.quantity,
            "orderType": self.order_type.value,
            "createdAt": self.created_at.isoformat(),
            "price": self.price,
            "stopLoss": self.stop_loss,
            "takeProfit": self.take_profit,
            "status": self.status.value,
            "fillPrice": self.fill_price,
            "filledAt": self.filled_at.isoformat() if self.filled_at else None,
            "cancelledAt": self.cancelled_at.isoformat() if self.cancelled_at else None,
            "positionId": self.position_id,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Order":
        return cls(
            id=str(payload["id"]),
            symbol=str(payload["symbol"]),
            side=OrderSide(payload["side"]),
            quantity=float(payload["quantity"]),
            order_type=OrderType(payload["orderType"]),
            created_at=_parse_datetime(payload["createdAt"]),
            price=_optional_float(payload.get("price")),
            stop_loss=_optional_float(payload.get("stopLoss")),
            take_profit=_optional_float(payload.get("takeProfit")),
            status=OrderStatus(payload.get("status", "pending")),
            fill_price=_optional_float(payload.get("fillPrice")),
            filled_at=_optional_datetime(payload.get("filledAt")),
            cancelled_at=_optional_datetime(payload.get("cancelledAt")),
            position_id=payload.get("positionId"),
        )


Protection = Tuple[Optional[float], Optional[float]]


@dataclass
class OrderBookState:
    """Persisted order history plus stop loss / take profit per open position."""

    orders: List[Order] = field(default_factory=list)
    protection: Dict[str, Protection] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "orders": [[order.id, order.to_dict()] for order in self.orders],
            "protection": {
                position_id: {"stopLoss": stop_loss, "takeProfit": take_profit}
                for position_id, (stop_loss, take_profit) in self.protection.items()
            },
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "OrderBookState":
        if not isinstance(payload, dict):
            raise ValueError("Order book state must be a JSON object")
        orders = [Order.from_dict(entry) for _, entry in payload.get("orders") or []]
        protection = {
            str(position_id): (
                _optional_float(levels.get("stopLoss")),
                _optional_float(levels.get("takeProfit")),
            )
            for position_id, levels in (payload.get("protection") or {}).items()
        }
        return cls(orders=orders, protection=protection)


@dataclass
class AccountInfo:
    """Demo trading account view: equity tracks the ledger, margin the open notional."""

    balance: float
    equity: float
    margin: float
    free_margin: float
    margin_level: float
    currency: str = "USD"

    def to_dict(self) -> Dict[str, Any]:
        return _camel_keys(asdict(self))
