"""Entry point for manual runs of the simulated portfolio."""

from __future__ import annotations

import argparse
import asyncio
import json

from portfolio_ledger.core.config import Config
from portfolio_ledger.core.errors import LedgerError
from portfolio_ledger.manager import PortfolioManager
from portfolio_ledger.monitoring.logger import PortfolioConsole, configure_logging


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Simulated portfolio ledger")
    parser.add_argument("--config", type=str, help="Path to YAML/JSON/TOML config", default=None)
    sub = parser.add_subparsers(dest="command", required=True)

    open_cmd = sub.add_parser("open", help="Open a position")
    open_cmd.add_argument("symbol")
    open_cmd.add_argument("quantity", type=float)
    open_cmd.add_argument("price", type=float)
    open_cmd.add_argument("--type", choices=["long", "short"], default="long")

    close_cmd = sub.add_parser("close", help="Close a position")
    close_cmd.add_argument("position_id")
    close_cmd.add_argument("price", type=float)

    report_cmd = sub.add_parser("report", help="Print the performance report")
    report_cmd.add_argument("--json", action="store_true", help="Emit JSON instead of tables")

    sub.add_parser("account", help="Show balance, equity and margin")
    sub.add_parser("reset", help="Clear positions, orders and saved state")

    run_cmd = sub.add_parser("run", help="Run the price refresh loop")
    run_cmd.add_argument("--seconds", type=float, default=10.0, help="Run duration in seconds")
    return parser.parse_args(argv)


async def run_command(manager: PortfolioManager, console: PortfolioConsole, args: argparse.Namespace) -> int:
    try:
        if args.command == "open":
            manager.ledger.open_position(args.symbol, args.quantity, args.price, args.type)
        elif args.command == "close":
            manager.ledger.close_position(args.position_id, args.price)
        elif args.command == "run":
            await manager.run(args.seconds)
            console.log_positions(manager.ledger.positions())
            console.log_summary(manager.summary())
        elif args.command == "report":
            report = manager.performance_report()
            if args.json:
                console.console.print_json(json.dumps(report.to_dict()))
            else:
                console.log_positions(manager.ledger.positions())
                console.log_report(report)
                console.log_account(manager.account_info())
        elif args.command == "account":
            console.log_account(manager.account_info())
        elif args.command == "reset":
            manager.reset()
    except LedgerError as exc:
        console.log_rejection(str(exc))
        return 1
    return 0


async def run_app(config: Config, args: argparse.Namespace) -> int:
    console = PortfolioConsole()
    manager = PortfolioManager(config, console=console)
    try:
        return await run_command(manager, console, args)
    finally:
        await manager.shutdown()


def cli(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    config = Config.load(args.config)
    configure_logging(config.logging.level)
    return asyncio.run(run_app(config, args))


if __name__ == "__main__":
    raise SystemExit(cli())
