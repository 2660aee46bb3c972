"""Driver payroll command line interface.

Usage:
    driver-payroll init-db
    driver-payroll run-batch --week-start 2024-01-01 [--employee-id ID ...] [--json]
    driver-payroll mileage 75201 77001
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Callable
from dataclasses import asdict
from datetime import date
from typing import Any
from uuid import UUID

from driver_payroll.calculators.mileage import MileageResolver
from driver_payroll.calculators.periods import week_start_for
from driver_payroll.database import dispose_db, init_db, init_models
from driver_payroll.logging_config import configure_logging
from driver_payroll.services.batch_service import BatchPayrollService, BatchResult

logger = logging.getLogger(__name__)


def parse_date(s: str) -> date:
    """Parse ISO date string."""
    return date.fromisoformat(s)


def parse_uuid(s: str) -> UUID:
    """Parse UUID string."""
    return UUID(s)


def _json_default(value: Any) -> Any:
    if isinstance(value, (date, UUID)):
        return str(value)
    return format(value, "f")


class DriverPayrollCli:
    """Operational commands for the payroll engine."""

    def __init__(self) -> None:
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            prog="driver-payroll",
            description="Driver payroll operational tools",
        )
        parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        subparsers.add_parser("init-db", help="Create database tables")

        batch = subparsers.add_parser(
            "run-batch",
            help="Calculate payroll for every active employee in a week",
        )
        batch.add_argument(
            "--week-start",
            type=parse_date,
            required=True,
            help="Any date in the target week (ISO format)",
        )
        batch.add_argument("--week-end", type=parse_date, help="Period end (defaults to Sunday)")
        batch.add_argument(
            "--employee-id",
            type=parse_uuid,
            action="append",
            dest="employee_ids",
            help="Limit to this employee (repeatable)",
        )
        batch.add_argument(
            "--skip-without-loads",
            action="store_true",
            help="Skip employees with no delivered loads",
        )
        batch.add_argument("--json", action="store_true", help="Print the result as JSON")

        mileage = subparsers.add_parser("mileage", help="Estimate miles between two zip codes")
        mileage.add_argument("from_zip")
        mileage.add_argument("to_zip")

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)
        configure_logging(parsed.log_level)

        if not parsed.command:
            self.parser.print_help()
            return 1

        handlers: dict[str, Callable[[argparse.Namespace], int]] = {
            "init-db": self._cmd_init_db,
            "run-batch": self._cmd_run_batch,
            "mileage": self._cmd_mileage,
        }
        handler = handlers.get(parsed.command)
        if handler:
            return handler(parsed)

        print(f"Unknown command: {parsed.command}", file=sys.stderr)
        return 1

    def _cmd_init_db(self, args: argparse.Namespace) -> int:
        async def _run() -> None:
            try:
                await init_models()
            finally:
                await dispose_db()

        asyncio.run(_run())
        print("Database tables created.")
        return 0

    def _cmd_run_batch(self, args: argparse.Namespace) -> int:
        """Run the weekly batch and print one line per employee."""
        week_start = week_start_for(args.week_start)

        async def _run() -> BatchResult:
            _, factory = init_db()
            try:
                service = BatchPayrollService(factory, MileageResolver())
                return await service.run_batch_payroll(
                    week_start,
                    args.week_end,
                    employee_ids=args.employee_ids,
                    skip_without_loads=args.skip_without_loads,
                )
            finally:
                await dispose_db()

        result = asyncio.run(_run())

        if args.json:
            print(json.dumps(asdict(result), default=_json_default, indent=2))
        else:
            print(f"Payroll for week {result.week_start} - {result.week_end}")
            for row in result.results:
                line = f"  {row.status:<8} {row.employee_name or row.employee_id}"
                if row.success:
                    line += f"  gross {row.gross_pay}  net {row.net_pay}"
                elif row.message:
                    line += f"  {row.message}"
                print(line)
            totals = result.totals
            print(
                f"\n{totals.success_count} succeeded, {totals.error_count} failed, "
                f"{totals.skipped_count} skipped"
            )
            print(f"Total gross {totals.gross_pay}, total net {totals.net_pay}")

        return 1 if result.errors else 0

    def _cmd_mileage(self, args: argparse.Namespace) -> int:
        result = asyncio.run(MileageResolver().resolve(args.from_zip, args.to_zip))
        print(
            f"{result.from_zip or args.from_zip} -> {result.to_zip or args.to_zip}: "
            f"{result.miles} miles ({result.method.value})"
        )
        return 0


def main() -> int:
    """CLI entry point."""
    cli = DriverPayrollCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
