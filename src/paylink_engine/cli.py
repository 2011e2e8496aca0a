"""Paylink operator command line interface.

Usage:
    python -m paylink_engine.cli init-db
    python -m paylink_engine.cli run-cycle activation
    python -m paylink_engine.cli run-cycle refund --now 2026-01-31T00:00:00Z
    python -m paylink_engine.cli scheduler-stats
    python -m paylink_engine.cli rebuild-routes
    python -m paylink_engine.cli cancel <payment-request-id>

Commands run against DATABASE_URL in their own process. The route
registry of a running API server is not touched; it picks up changes on
its next rebuild (restart).
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime
from typing import Any, Awaitable, Callable

from paylink_engine.config import get_settings
from paylink_engine.database import create_session_factory, create_tables, get_engine
from paylink_engine.engine import PaylinkEngine
from paylink_engine.errors import PaylinkError
from paylink_engine.services.scheduler import CYCLES


def parse_datetime(s: str) -> datetime:
    """Parse ISO datetime string."""
    return datetime.fromisoformat(s.replace("Z", "+00:00"))


class PaylinkCli:
    """Paylink Command Line Interface."""

    def __init__(self, database_url: str | None = None) -> None:
        self.database_url = database_url
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            prog="python -m paylink_engine.cli",
            description="Paylink operational tools",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        subparsers.add_parser("init-db", help="Create database tables")

        cycle = subparsers.add_parser("run-cycle", help="Run one scheduler cycle now")
        cycle.add_argument("cycle", choices=CYCLES, help="Cycle to run")
        cycle.add_argument(
            "--now",
            type=parse_datetime,
            help="Treat this time (ISO format) as the current time",
        )

        subparsers.add_parser("scheduler-stats", help="Show pending scheduler work")
        subparsers.add_parser(
            "rebuild-routes",
            help="Load live payment links from storage and report the count",
        )

        cancel = subparsers.add_parser("cancel", help="Cancel an unpaid payment request")
        cancel.add_argument("payment_request_id", help="Payment request ID")

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        handlers: dict[str, Callable[[argparse.Namespace], Awaitable[int]]] = {
            "init-db": self._cmd_init_db,
            "run-cycle": self._cmd_run_cycle,
            "scheduler-stats": self._cmd_scheduler_stats,
            "rebuild-routes": self._cmd_rebuild_routes,
            "cancel": self._cmd_cancel,
        }

        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=sys.stderr)
            return 1
        try:
            return asyncio.run(handler(parsed))
        except PaylinkError as e:
            print(f"ERROR: {e}", file=sys.stderr)
            return 1

    async def _with_engine(self, action: Callable[[PaylinkEngine], Awaitable[int]]) -> int:
        db_engine = get_engine(self.database_url)
        engine = PaylinkEngine.from_settings(get_settings(), create_session_factory(db_engine))
        try:
            return await action(engine)
        finally:
            await engine.shutdown()
            await db_engine.dispose()

    async def _cmd_init_db(self, args: argparse.Namespace) -> int:
        db_engine = get_engine(self.database_url)
        try:
            await create_tables(db_engine)
        finally:
            await db_engine.dispose()
        print("Database tables created.")
        return 0

    async def _cmd_run_cycle(self, args: argparse.Namespace) -> int:
        async def action(engine: PaylinkEngine) -> int:
            result = await engine.scheduler.run_cycle(args.cycle, args.now)
            print(
                f"{result.cycle} cycle: found={result.found} "
                f"processed={result.processed} failed={result.failed} "
                f"in_flight={result.in_flight}"
            )
            for error in result.errors:
                print(f"  - {error['id']}: {error['message']}")
            return 0 if result.success else 2

        return await self._with_engine(action)

    async def _cmd_scheduler_stats(self, args: argparse.Namespace) -> int:
        async def action(engine: PaylinkEngine) -> int:
            stats: dict[str, Any] = await engine.scheduler.get_stats()
            print(json.dumps(stats, indent=2))
            return 0

        return await self._with_engine(action)

    async def _cmd_rebuild_routes(self, args: argparse.Namespace) -> int:
        async def action(engine: PaylinkEngine) -> int:
            count = await engine.registry.rebuild_from_storage()
            print(f"{count} live payment link(s)")
            for payment_id in sorted(engine.registry.payment_ids()):
                print(f"  {payment_id}")
            return 0

        return await self._with_engine(action)

    async def _cmd_cancel(self, args: argparse.Namespace) -> int:
        async def action(engine: PaylinkEngine) -> int:
            request = await engine.payment_requests.cancel(args.payment_request_id)
            print(f"Payment request {request.payment_request_id}: {request.status}")
            return 0

        return await self._with_engine(action)


def main() -> int:
    """CLI entry point."""
    logging.basicConfig(
        level=get_settings().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    cli = PaylinkCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
