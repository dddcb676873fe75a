"""Schedule resolver command line interface.

Provides operational tools for:
- Resolving a staff member's schedule
- Reconciling duplicate pending requests
- Checking roster active flags against contracts

Usage:
    python -m schedule_resolver.cli resolve --staff-id 7 --date 2024-05-01
    python -m schedule_resolver.cli reconcile --dry-run
    python -m schedule_resolver.cli check-active
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Awaitable, Callable

from schedule_resolver.config import Settings, configure_logging, get_settings
from schedule_resolver.errors import ScheduleError
from schedule_resolver.service import ScheduleService

logger = logging.getLogger(__name__)

ServiceFactory = Callable[[Settings], ScheduleService]


class ScheduleCli:
    """Schedule resolver Command Line Interface."""

    def __init__(
        self,
        settings: Settings | None = None,
        service_factory: ServiceFactory = ScheduleService.from_settings,
    ) -> None:
        self.settings = settings
        self.service_factory = service_factory
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="python -m schedule_resolver.cli",
            description="Schedule resolver operational tools",
        )
        parser.add_argument(
            "--log-level",
            type=str,
            help="Override LOG_LEVEL for this run",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        # resolve command
        resolve = subparsers.add_parser(
            "resolve",
            help="Print the resolved timeline for a staff member",
        )
        resolve.add_argument(
            "--staff-id",
            type=int,
            required=True,
            help="Staff ID to resolve",
        )
        resolve.add_argument(
            "--date",
            type=str,
            required=True,
            help="Local date (YYYY-MM-DD)",
        )
        resolve.add_argument(
            "--to",
            type=str,
            help="Resolve through this date inclusive (YYYY-MM-DD)",
        )
        resolve.add_argument(
            "--json",
            action="store_true",
            help="Output as JSON",
        )

        # reconcile command
        reconcile = subparsers.add_parser(
            "reconcile",
            help="Reject duplicate active pending requests",
        )
        reconcile.add_argument(
            "--staff-id",
            type=int,
            help="Limit to one staff member",
        )
        reconcile.add_argument(
            "--date",
            type=str,
            help="Limit to one local date (YYYY-MM-DD)",
        )
        reconcile.add_argument(
            "--dry-run",
            action="store_true",
            help="Report duplicates without rejecting them",
        )

        # check-active command
        subparsers.add_parser(
            "check-active",
            help="Report staff whose active flag disagrees with contract presence",
        )

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        settings = self.settings or get_settings()
        configure_logging(parsed.log_level or settings.log_level)

        # Dispatch to command handler
        handlers: dict[str, Callable[[ScheduleService, argparse.Namespace], Awaitable[int]]] = {
            "resolve": self._cmd_resolve,
            "reconcile": self._cmd_reconcile,
            "check-active": self._cmd_check_active,
        }

        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=sys.stderr)
            return 1

        try:
            return asyncio.run(self._with_service(settings, handler, parsed))
        except ScheduleError as e:
            print(f"Error [{e.code}]: {e.message}", file=sys.stderr)
            return 2

    async def _with_service(
        self,
        settings: Settings,
        handler: Callable[[ScheduleService, argparse.Namespace], Awaitable[int]],
        args: argparse.Namespace,
    ) -> int:
        service = self.service_factory(settings)
        try:
            return await handler(service, args)
        finally:
            await service.aclose()

    async def _cmd_resolve(self, service: ScheduleService, args: argparse.Namespace) -> int:
        """Resolve a schedule."""
        if args.to:
            timelines = await service.resolve_range(args.staff_id, args.date, args.to)
        else:
            timelines = [await service.resolve_schedule(args.staff_id, args.date)]

        if args.json:
            print(json.dumps([t.to_dict() for t in timelines], indent=2))
            return 0

        for timeline in timelines:
            print(f"Staff {timeline.staff_id} on {timeline.day.isoformat()}")
            print("=" * 40)
            if timeline.is_empty:
                print("  (no schedule)")
            for interval in timeline.intervals:
                print(_row(interval))
            if timeline.has_proposal:
                print("\n  Proposed:")
                for interval in timeline.proposed:
                    print(_row(interval))
            for warning in timeline.warnings:
                print(f"  ! {warning}")
            print()
        return 0

    async def _cmd_reconcile(self, service: ScheduleService, args: argparse.Namespace) -> int:
        """Reconcile duplicate pending requests."""
        report = await service.reconcile(args.staff_id, args.date, dry_run=args.dry_run)

        if args.dry_run:
            print("[DRY RUN] No records were changed.")
        print(f"Keys scanned:      {report.groups_scanned}")
        print(f"Duplicate groups:  {report.duplicate_groups}")
        print(f"Kept:              {_ids(report.kept)}")
        label = "Would reject:" if args.dry_run else "Rejected:"
        print(f"{label:<19}{_ids(report.rejected)}")
        if report.skipped:
            print(f"Skipped (decided): {_ids(report.skipped)}")
        return 0

    async def _cmd_check_active(self, service: ScheduleService, args: argparse.Namespace) -> int:
        """Check active flags against contract presence."""
        mismatches = await service.check_active()
        if not mismatches:
            print("All staff active flags match contract presence.")
            return 0

        print(f"Found {len(mismatches)} inconsistent staff:")
        for m in mismatches:
            flagged = "active" if m.is_active else "inactive"
            expected = "active" if m.expected_active else "inactive"
            print(f"  - {m.staff_id} {m.name}: flagged {flagged}, expected {expected}")
        return 1


def _row(interval: Any) -> str:
    return f"  {interval.start}-{interval.end}  {interval.status:<12} {interval.layer.label}"


def _ids(values: list[Any]) -> str:
    return ", ".join(str(v) for v in values) if values else "-"


def main() -> int:
    """CLI entry point."""
    cli = ScheduleCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
