from datetime import datetime, timezone

import pytest

from portfolio_ledger.data.providers import FixedTimeProvider
from portfolio_ledger.events.bus import EventBus
from portfolio_ledger.ledger.position_ledger import PositionLedger
from portfolio_ledger.storage.store import MemoryStore


@pytest.fixture
def clock():
    return FixedTimeProvider(datetime(2025, 3, 14, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def ledger(events, clock):
    return PositionLedger(initial_capital=10_000.0, events=events, time_provider=clock)


@pytest.fixture
def memory_store():
    return MemoryStore()


class RecordingHandler:
    """Collect (event, payload) pairs in arrival order."""

    def __init__(self):
        self.calls = []

    def bind(self, name):
        return lambda payload: self.calls.append((name, payload))

    def names(self):
        return [name for name, _ in self.calls]


@pytest.fixture
def recorder():
    return RecordingHandler()
