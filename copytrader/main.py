"""Entry point for the copy trader.

With no command the scheduler runs until SIGINT/SIGTERM. The remaining
commands operate on the persisted paper ledger and exit.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Optional

from copytrader.config import setup_logging
from copytrader.context import AppContext, build_context
from copytrader.execution.router import ExecutionMode
from copytrader.scheduler import CopyTraderScheduler

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="copytrader", description="Polymarket copy trader")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("run", help="Poll targets and copy their activity (default)")
    sub.add_parser("stats", help="Print paper ledger statistics as JSON")

    export = sub.add_parser("export", help="Export the paper trade log as CSV")
    export.add_argument("--output", "-o", default=None, help="File to write (default stdout)")

    settle = sub.add_parser("settle-expired", help="Force-settle expired paper positions")
    settle.add_argument("--win", action="store_true", help="Assume the positions won")
    settle.add_argument("--market", default=None, help="Only slugs containing this text")

    sub.add_parser("prune", help="Drop settled positions from the ledger")

    reset = sub.add_parser("reset", help="Start the paper ledger over")
    reset.add_argument("--balance", type=float, default=None, help="New starting balance")
    return parser


async def _run_command(args: argparse.Namespace, ctx: AppContext) -> None:
    ledger = ctx.ledger

    if args.command == "stats":
        print(json.dumps(ctx.status()["ledger"], indent=2))
    elif args.command == "export":
        csv_text = ledger.export_trades()
        if args.output:
            with open(args.output, "w", encoding="utf-8") as f:
                f.write(csv_text)
            logger.info("trades_exported", extra={"path": args.output})
        else:
            sys.stdout.write(csv_text)
    elif args.command == "settle-expired":
        summary = ctx.settlement.settle_expired(assume_win=args.win, market_filter=args.market)
        print(summary.model_dump_json(indent=2))
    elif args.command == "prune":
        print(json.dumps({"pruned": ledger.prune_settled()}))
    elif args.command == "reset":
        ledger.reset(args.balance)


async def _main(argv: Optional[list[str]] = None) -> None:
    args = _build_parser().parse_args(argv)
    setup_logging()

    if args.command in (None, "run"):
        logger.info("copytrader_starting")
        ctx = build_context()
        if ctx.mode == ExecutionMode.LIVE:
            await ctx.router.order_service.initialize()
        scheduler = CopyTraderScheduler(ctx)
        await scheduler.start()
        return

    ctx = build_context(mode=ExecutionMode.PAPER)
    try:
        await _run_command(args, ctx)
    finally:
        await ctx.aclose()


def main() -> None:
    asyncio.run(_main())


if __name__ == "__main__":
    main()
