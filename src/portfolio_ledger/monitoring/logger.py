"""Console dashboard and logging setup using Rich."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from portfolio_ledger.core.models import (
    AccountInfo,
    PerformanceReport,
    PortfolioSummary,
    Position,
    RiskMetrics,
)
from portfolio_ledger.events.bus import EventBus, LedgerEvent


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(name)s - %(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _pnl_style(value: float) -> str:
    if value > 0:
        return "green"
    if value < 0:
        return "red"
    return "dim"


def _money(value: float) -> str:
    style = _pnl_style(value)
    return f"[{style}]{value:.2f}[/{style}]"


class PortfolioConsole:
    """Render ledger activity and reports; gains print green, losses red."""

    def __init__(self, console: Console | None = None) -> None:
        self._console = console or Console()

    @property
    def console(self) -> Console:
        return self._console

    def attach(self, events: EventBus) -> None:
        events.on(LedgerEvent.POSITION_ADDED, self.log_opened)
        events.on(LedgerEvent.POSITION_CLOSED, self.log_closed)
        events.on(LedgerEvent.ACCOUNT_RESET, self.log_account_reset)

    def log_opened(self, position: Position) -> None:
        self._console.print(
            f"[bold cyan]Position opened[/bold cyan] {position.id} {position.type.value} "
            f"{position.quantity:g} {escape(position.symbol)} @ {position.entry_price:.5f}"
        )

    def log_closed(self, position: Position) -> None:
        pnl = position.realized_pnl or 0.0
        style = _pnl_style(pnl)
        self._console.print(
            f"[bold {style}]Position closed[/bold {style}] {position.id} {escape(position.symbol)} "
            f"@ {position.close_price or 0.0:.5f} realized {_money(pnl)}"
        )

    def log_rejection(self, reason: str) -> None:
        self._console.print(f"[bold red]Operation rejected:[/bold red] {escape(reason)}")

    def log_account_reset(self, account: AccountInfo) -> None:
        self._console.print(f"[bold yellow]Account reset[/] to {account.balance:.2f} {account.currency}")

    def _key_values(self, title: str, rows: Mapping[str, Any], *, signed: bool = False) -> None:
        table = Table(title=title, show_header=False, show_lines=False)
        table.add_column(justify="right", style="bold")
        table.add_column()
        for key, value in rows.items():
            table.add_row(str(key), _money(value) if signed else str(value))
        self._console.print(table)

    def log_account(self, account: AccountInfo) -> None:
        self._key_values(
            f"Account ({account.currency})",
            {
                "Balance": f"{account.balance:.2f}",
                "Equity": f"{account.equity:.2f}",
                "Margin": f"{account.margin:.2f}",
                "Free margin": f"{account.free_margin:.2f}",
                "Margin level": f"{account.margin_level:.2f}%",
            },
        )

    def log_positions(self, positions: list[Position]) -> None:
        table = Table(title="Positions", show_lines=True)
        for column in ("Id", "Symbol", "Type", "Qty", "Entry", "Price", "Unrealized", "Realized", "Status"):
            table.add_column(column)
        for position in positions:
            table.add_row(
                position.id,
                position.symbol,
                position.type.value,
                f"{position.quantity:g}",
                f"{position.entry_price:.5f}",
                f"{position.current_price:.5f}",
                f"{position.unrealized_pnl:.2f}",
                "" if position.realized_pnl is None else f"{position.realized_pnl:.2f}",
                position.status.value,
            )
        self._console.print(table)

    def log_summary(self, summary: PortfolioSummary) -> None:
        table = Table(title="Portfolio", show_lines=True)
        table.add_column("Field")
        table.add_column("Value")
        table.add_row("Total value", f"{summary.total_value:.2f}")
        table.add_row("Unrealized P&L", f"{summary.total_unrealized_pnl:.2f}")
        table.add_row("Realized P&L", f"{summary.total_realized_pnl:.2f}")
        table.add_row("Open / closed", f"{summary.open_positions} / {summary.closed_positions}")
        table.add_row("Total return", f"{summary.total_return:.2f} ({summary.total_return_percent:.2f}%)")
        table.add_row("Day change", f"{summary.day_change:.2f} ({summary.day_change_percent:.2f}%)")
        self._console.print(table)

    def log_risk(self, risk: RiskMetrics) -> None:
        table = Table(title="Risk", show_lines=True)
        table.add_column("Metric")
        table.add_column("Value")
        table.add_row("Exposure", f"{risk.total_exposure:.2f}")
        table.add_row("Max drawdown", f"{risk.max_drawdown:.2f}%")
        table.add_row("Volatility", f"{risk.volatility:.2f}%")
        table.add_row("VaR 95", f"{risk.var95:.2f}")
        self._console.print(table)

    def log_report(self, report: PerformanceReport) -> None:
        self.log_summary(report.summary)
        self.log_risk(report.risk)
        stats = report.trading_stats
        self._key_values(
            "Trading stats",
            {
                "Trades": stats.total_trades,
                "Win rate": f"{stats.win_rate:.2f}%",
                "Avg win": f"{stats.avg_win:.2f}",
                "Avg loss": f"{stats.avg_loss:.2f}",
                "Profit factor": f"{stats.profit_factor:.2f}",
            },
        )
        if report.allocation:
            self._key_values("Allocation", {symbol: f"{pct:.1f}%" for symbol, pct in report.allocation.items()})
        if report.monthly_returns:
            self._key_values("Monthly returns", report.monthly_returns, signed=True)
