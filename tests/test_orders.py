import pytest

from portfolio_ledger.core.config import OrderConfig
from portfolio_ledger.core.errors import InvalidStateError, NotFoundError, ValidationError
from portfolio_ledger.core.models import OrderStatus, PositionType
from portfolio_ledger.events.bus import LedgerEvent
from portfolio_ledger.execution.orders import OrderSimulator


@pytest.fixture
def simulator(ledger, clock):
    return OrderSimulator(ledger, OrderConfig(max_quantity=100), time_provider=clock)


def test_market_order_fills_immediately(simulator, ledger, recorder):
    for event in (LedgerEvent.ORDER_PLACED, LedgerEvent.ORDER_FILLED, LedgerEvent.POSITION_ADDED):
        ledger.events.on(event, recorder.bind(event.value))

    order = simulator.place_order("EUR/USD", "sell", 10, market_price=1.085)

    assert order.status is OrderStatus.FILLED
    assert order.fill_price == 1.085
    assert order.id.startswith("ord_")
    position = ledger.get_position(order.position_id)
    assert position.type is PositionType.SHORT
    assert position.quantity == 10
    assert recorder.names() == ["orderPlaced", "positionAdded", "orderFilled"]


def test_market_order_without_any_price_is_rejected(simulator, ledger):
    with pytest.raises(ValidationError):
        simulator.place_order("EUR/USD", "buy", 1)
    assert ledger.positions() == []


@pytest.mark.parametrize(
    "kwargs",
    [
        {"symbol": "", "side": "buy", "quantity": 1},
        {"symbol": "XYZ", "side": "hold", "quantity": 1},
        {"symbol": "XYZ", "side": "buy", "quantity": 0},
        {"symbol": "XYZ", "side": "buy", "quantity": 101},
        {"symbol": "XYZ", "side": "buy", "quantity": 1, "order_type": "trailing"},
        {"symbol": "XYZ", "side": "buy", "quantity": 1, "order_type": "limit"},
        {"symbol": "XYZ", "side": "buy", "quantity": 1, "stop_loss": -1},
    ],
)
def test_invalid_orders_are_rejected(simulator, kwargs):
    with pytest.raises(ValidationError):
        simulator.place_order(market_price=10, **kwargs)
    assert simulator.orders() == []


def test_limit_and_stop_orders_wait_for_trigger(simulator, ledger):
    buy_limit = simulator.place_order("XYZ", "buy", 1, "limit", price=95)
    sell_limit = simulator.place_order("XYZ", "sell", 1, "limit", price=110)
    buy_stop = simulator.place_order("XYZ", "buy", 1, "stop", price=105)
    sell_stop = simulator.place_order("XYZ", "sell", 1, "stop", price=90)
    assert all(o.status is OrderStatus.PENDING for o in simulator.orders())
    assert simulator.pending_symbols() == ["XYZ"]

    assert simulator.on_price("XYZ", 100).filled == []

    reaction = simulator.on_price("XYZ", 106)
    assert [o.id for o in reaction.filled] == [buy_stop.id]
    assert reaction.filled[0].fill_price == 106

    reaction = simulator.on_price("XYZ", 94)
    assert [o.id for o in reaction.filled] == [buy_limit.id]
    assert reaction.filled[0].fill_price == 95

    reaction = simulator.on_price("XYZ", 89)
    assert [o.id for o in reaction.filled] == [sell_stop.id]

    remaining = simulator.orders(OrderStatus.PENDING)
    assert [o.id for o in remaining] == [sell_limit.id]
    assert len(ledger.open_positions()) == 3


def test_prices_for_other_symbols_do_not_trigger(simulator):
    simulator.place_order("XYZ", "buy", 1, "limit", price=95)

    assert simulator.on_price("ABC", 1).filled == []
    assert len(simulator.orders(OrderStatus.PENDING)) == 1


def test_take_profit_and_stop_loss_close_positions(simulator, ledger):
    long_order = simulator.place_order("XYZ", "buy", 1, market_price=100, take_profit=110, stop_loss=90)
    short_order = simulator.place_order("XYZ", "sell", 1, market_price=100, take_profit=90, stop_loss=110)

    assert simulator.on_price("XYZ", 105).closed == []

    reaction = simulator.on_price("XYZ", 111)
    closed_ids = {p.id for p in reaction.closed}
    assert closed_ids == {long_order.position_id, short_order.position_id}
    assert ledger.get_position(long_order.position_id).realized_pnl == pytest.approx(11)
    assert ledger.get_position(short_order.position_id).realized_pnl == pytest.approx(-11)
    assert simulator.protection(long_order.position_id) == (None, None)


def test_cancel_order(simulator, recorder, ledger):
    ledger.events.on(LedgerEvent.ORDER_CANCELLED, recorder.bind("cancelled"))
    order = simulator.place_order("XYZ", "buy", 1, "limit", price=95)

    cancelled = simulator.cancel_order(order.id)

    assert cancelled.status is OrderStatus.CANCELLED
    assert cancelled.cancelled_at is not None
    assert recorder.names() == ["cancelled"]
    with pytest.raises(InvalidStateError):
        simulator.cancel_order(order.id)
    with pytest.raises(NotFoundError):
        simulator.cancel_order("ord_missing")


def test_filled_orders_cannot_be_cancelled(simulator):
    order = simulator.place_order("XYZ", "buy", 1, market_price=10)

    with pytest.raises(InvalidStateError):
        simulator.cancel_order(order.id)


def test_cancel_all_orders(simulator):
    simulator.place_order("XYZ", "buy", 1, "limit", price=95)
    simulator.place_order("ABC", "sell", 1, "stop", price=5)
    simulator.place_order("XYZ", "buy", 1, market_price=100)

    assert simulator.cancel_all_orders() == 2
    assert simulator.orders(OrderStatus.PENDING) == []
    assert simulator.pending_symbols() == []


def test_modify_position_updates_protection(simulator, ledger, recorder):
    ledger.events.on(LedgerEvent.POSITION_MODIFIED, recorder.bind("modified"))
    position_id = ledger.open_position("XYZ", 1, 100)

    simulator.modify_position(position_id, stop_loss=95)
    simulator.modify_position(position_id, take_profit=120)

    assert simulator.protection(position_id) == (95, 120)
    assert recorder.calls[-1][1] == {"positionId": position_id, "stopLoss": 95, "takeProfit": 120}

    with pytest.raises(ValidationError):
        simulator.modify_position(position_id, stop_loss=float("nan"))
    with pytest.raises(NotFoundError):
        simulator.modify_position("pos_missing", stop_loss=1)

    ledger.close_position(position_id, 101)
    with pytest.raises(InvalidStateError):
        simulator.modify_position(position_id, stop_loss=1)


def test_close_all_positions_skips_symbols_without_price(simulator, ledger):
    a = ledger.open_position("AAA", 1, 10)
    b = ledger.open_position("BBB", 1, 10)

    closed = simulator.close_all_positions({"AAA": 12})

    assert [p.id for p in closed] == [a]
    assert ledger.get_position(a).realized_pnl == pytest.approx(2)
    assert ledger.get_position(b).is_open


@pytest.mark.parametrize("order_type, kwargs", [("market", {"market_price": 200}), ("limit", {"price": 200})])
def test_orders_beyond_free_margin_are_rejected(ledger, clock, order_type, kwargs):
    simulator = OrderSimulator(ledger, OrderConfig(max_quantity=100, leverage=1), time_provider=clock)

    with pytest.raises(ValidationError, match="Insufficient margin"):
        simulator.place_order("XYZ", "buy", 100, order_type, **kwargs)

    assert simulator.orders() == []
    assert ledger.positions() == []
    assert ledger.transactions() == []


def test_order_using_exactly_the_free_margin_is_accepted(ledger, clock):
    simulator = OrderSimulator(ledger, OrderConfig(max_quantity=100, leverage=1), time_provider=clock)

    order = simulator.place_order("XYZ", "buy", 50, market_price=200)

    assert order.status is OrderStatus.FILLED
    assert simulator.account_info().free_margin == pytest.approx(0)


def test_account_info_follows_ledger(simulator, ledger):
    assert simulator.account_info().to_dict() == {
        "balance": 10_000,
        "equity": 10_000,
        "margin": 0,
        "freeMargin": 10_000,
        "marginLevel": 0,
        "currency": "USD",
    }

    kept = simulator.place_order("XYZ", "buy", 10, market_price=100)
    closed = simulator.place_order("ABC", "sell", 5, market_price=50)
    ledger.update_position_price(kept.position_id, 110)
    ledger.close_position(closed.position_id, 40)

    account = simulator.account_info()
    assert account.balance == pytest.approx(10_050)
    assert account.equity == pytest.approx(10_150)
    assert account.margin == pytest.approx(11)
    assert account.free_margin == pytest.approx(10_139)
    assert account.margin_level == pytest.approx(10_150 / 11 * 100)


def test_closing_through_ledger_drops_protection(simulator, ledger):
    order = simulator.place_order("XYZ", "buy", 1, market_price=100, stop_loss=95, take_profit=120)

    ledger.close_position(order.position_id, 101)

    assert simulator.protection(order.position_id) == (None, None)
    assert simulator.snapshot().protection == {}


def test_reset_forgets_orders_and_protection(simulator):
    filled = simulator.place_order("XYZ", "buy", 1, market_price=100, stop_loss=95)
    simulator.place_order("XYZ", "buy", 1, "limit", price=90)

    simulator.reset()

    assert simulator.orders() == []
    assert simulator.protection(filled.position_id) == (None, None)
