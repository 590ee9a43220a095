import json
import logging

import pytest

from portfolio_ledger.core.errors import LedgerIOError
from portfolio_ledger.ledger.position_ledger import PositionLedger
from portfolio_ledger.execution.orders import OrderSimulator
from portfolio_ledger.storage.persistence import LedgerPersistence, OrderBookPersistence
from portfolio_ledger.storage.store import JsonFileStore, MemoryStore


class BrokenStore(MemoryStore):
    def set(self, key, value):
        raise LedgerIOError("disk full")


def _populate(ledger):
    a = ledger.open_position("EUR/USD", 10, 1.08)
    b = ledger.open_position("AAPL", 2, 185.5, "short")
    c = ledger.open_position("BTC/USD", 0.5, 43_500)
    ledger.update_position_price(a, 1.0875)
    ledger.close_position(b, 180.25)
    ledger.update_position_price(c, 44_100)


def test_reload_is_byte_identical(ledger, events, clock, memory_store):
    _populate(ledger)
    persistence = LedgerPersistence(memory_store)
    assert persistence.save(ledger)

    state = LedgerPersistence(memory_store).load(default_capital=10_000)
    restored = PositionLedger(events=events, time_provider=clock, state=state)

    before = json.dumps(ledger.snapshot().to_dict())
    assert json.dumps(restored.snapshot().to_dict()) == before
    assert [p.id for p in restored.positions()] == [p.id for p in ledger.positions()]
    assert restored.portfolio_value == ledger.portfolio_value


def test_persisted_payload_shape(ledger, memory_store):
    _populate(ledger)
    LedgerPersistence(memory_store).save(ledger)

    payload = json.loads(memory_store.get("portfolioData"))

    assert set(payload) == {"positions", "transactions", "portfolioValue", "initialCapital"}
    position_id, position = payload["positions"][0]
    assert position_id == position["id"]
    assert position["closePrice"] is None
    assert len(payload["transactions"]) == 4


def test_attach_saves_on_every_position_event(ledger, memory_store):
    persistence = LedgerPersistence(memory_store)
    persistence.attach(ledger)

    position_id = ledger.open_position("XYZ", 1, 10)
    assert json.loads(memory_store.get("portfolioData"))["positions"][0][0] == position_id

    ledger.update_position_price(position_id, 11)
    saved = json.loads(memory_store.get("portfolioData"))
    assert saved["positions"][0][1]["currentPrice"] == 11

    persistence.detach()
    ledger.close_position(position_id, 12)
    saved = json.loads(memory_store.get("portfolioData"))
    assert saved["positions"][0][1]["status"] == "open"


def test_missing_data_loads_defaults(memory_store):
    state = LedgerPersistence(memory_store).load(default_capital=2_500)

    assert state.positions == [] and state.transactions == []
    assert state.initial_capital == state.portfolio_value == 2_500


@pytest.mark.parametrize(
    "raw",
    [
        "{not json",
        "[]",
        json.dumps({"positions": [["pos_1", {"id": "pos_1"}]]}),
        json.dumps(
            {
                "positions": [
                    [
                        "pos_1",
                        {
                            "id": "pos_1",
                            "symbol": "XYZ",
                            "quantity": 1,
                            "entryPrice": 10,
                            "currentPrice": 10,
                            "type": "long",
                            "openTime": "2025-03-14T12:00:00+00:00",
                            "status": "closed",
                        },
                    ]
                ]
            }
        ),
    ],
)
def test_malformed_data_loads_defaults(memory_store, caplog, raw):
    memory_store.set("portfolioData", raw)

    with caplog.at_level(logging.WARNING):
        state = LedgerPersistence(memory_store).load(default_capital=10_000)

    assert state.positions == []
    assert state.portfolio_value == 10_000
    assert "malformed" in caplog.text


def test_missing_capital_fields_fall_back(memory_store):
    memory_store.set("portfolioData", json.dumps({"positions": [], "transactions": []}))

    state = LedgerPersistence(memory_store).load(default_capital=7_000)

    assert state.initial_capital == 7_000
    assert state.portfolio_value == 7_000


def test_save_failure_is_logged_not_raised(ledger, caplog):
    persistence = LedgerPersistence(BrokenStore())
    persistence.attach(ledger)

    with caplog.at_level(logging.ERROR):
        position_id = ledger.open_position("XYZ", 1, 10)

    assert ledger.get_position(position_id) is not None
    assert persistence.save(ledger) is False
    assert "disk full" in caplog.text


def test_json_file_store_roundtrip(tmp_path):
    store = JsonFileStore(tmp_path / "state")

    assert store.get("portfolioData") is None
    store.set("portfolioData", '{"a": 1}')
    assert (tmp_path / "state" / "portfolioData.json").read_text(encoding="utf-8") == '{"a": 1}'
    assert store.get("portfolioData") == '{"a": 1}'

    store.delete("portfolioData")
    assert store.get("portfolioData") is None
    assert list((tmp_path / "state").iterdir()) == []


@pytest.mark.parametrize("key", ["", "../escape", "nested/key"])
def test_json_file_store_rejects_path_like_keys(tmp_path, key):
    with pytest.raises(LedgerIOError):
        JsonFileStore(tmp_path).set(key, "{}")


def test_ledger_survives_through_file_store(ledger, events, clock, tmp_path):
    _populate(ledger)
    LedgerPersistence(JsonFileStore(tmp_path)).save(ledger)

    state = LedgerPersistence(JsonFileStore(tmp_path)).load(default_capital=10_000)
    restored = PositionLedger(events=events, time_provider=clock, state=state)

    assert restored.snapshot() == ledger.snapshot()


def test_order_book_restores_orders_and_protection(ledger, clock, memory_store):
    simulator = OrderSimulator(ledger, time_provider=clock)
    persistence = OrderBookPersistence(memory_store)
    persistence.attach(simulator, ledger.events)
    filled = simulator.place_order("XYZ", "buy", 1, market_price=100, stop_loss=95)
    pending = simulator.place_order("XYZ", "buy", 1, "limit", price=90)

    saved = json.loads(memory_store.get("trading_orders"))
    assert [order_id for order_id, _ in saved["orders"]] == [filled.id, pending.id]
    assert saved["protection"] == {filled.position_id: {"stopLoss": 95.0, "takeProfit": None}}

    restored = OrderSimulator(ledger, time_provider=clock, state=OrderBookPersistence(memory_store).load())

    assert restored.orders() == simulator.orders()
    assert restored.protection(filled.position_id) == (95.0, None)


def test_order_book_drops_protection_of_closed_positions(ledger, clock, memory_store):
    simulator = OrderSimulator(ledger, time_provider=clock)
    persistence = OrderBookPersistence(memory_store)
    persistence.attach(simulator, ledger.events)
    filled = simulator.place_order("XYZ", "buy", 1, market_price=100, take_profit=120)

    ledger.close_position(filled.position_id, 105)

    assert json.loads(memory_store.get("trading_orders"))["protection"] == {}


@pytest.mark.parametrize("raw", ["[1, 2]", "{not json", json.dumps({"orders": [["ord_1", {"symbol": "XYZ"}]]})])
def test_malformed_order_book_loads_empty(memory_store, caplog, raw):
    memory_store.set("trading_orders", raw)

    with caplog.at_level(logging.WARNING):
        state = OrderBookPersistence(memory_store).load()

    assert state.orders == []
    assert state.protection == {}
    assert "malformed" in caplog.text
