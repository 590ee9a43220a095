from rich.console import Console

from portfolio_ledger.analytics.performance import PerformanceAnalyzer
from portfolio_ledger.analytics.risk import RiskCalculator
from portfolio_ledger.core.models import AccountInfo
from portfolio_ledger.events.bus import LedgerEvent
from portfolio_ledger.monitoring.logger import PortfolioConsole


def _console():
    return PortfolioConsole(Console(record=True, width=120))


def test_attach_renders_position_lifecycle(ledger):
    console = _console()
    console.attach(ledger.events)

    position_id = ledger.open_position("EUR/USD", 10, 1.08)
    ledger.close_position(position_id, 1.07)

    text = console.console.export_text()
    assert "Position opened" in text
    assert "Position closed" in text
    assert "-0.10" in text


def test_report_tables(ledger):
    position_id = ledger.open_position("AAA", 1, 100)
    ledger.close_position(position_id, 110)
    ledger.open_position("BBB", 1, 50)
    console = _console()

    console.log_positions(ledger.positions())
    console.log_report(PerformanceAnalyzer().generate_report(ledger, RiskCalculator()))

    text = console.console.export_text()
    for heading in ("Positions", "Portfolio", "Risk", "Trading stats", "Allocation", "Monthly returns"):
        assert heading in text
    assert "10010.00" in text


def test_account_and_reset_rendering(events):
    console = _console()
    console.attach(events)
    account = AccountInfo(balance=10_000, equity=10_100, margin=11, free_margin=10_089, margin_level=91_818.18)

    console.log_account(account)
    events.emit(LedgerEvent.ACCOUNT_RESET, account)
    console.log_rejection("Insufficient margin. Required: 20000.00, available: 10000.00")

    text = console.console.export_text()
    assert "Account (USD)" in text
    assert "10089.00" in text
    assert "Account reset to 10000.00 USD" in text
    assert "Operation rejected: Insufficient margin" in text
