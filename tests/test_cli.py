"""Tests for the operational CLI.

The CLI drives its own event loop, so these tests swap in a stub service
rather than sharing the async database fixtures.
"""

from datetime import date

import pytest

from schedule_resolver.cli import ScheduleCli
from schedule_resolver.config import Settings
from schedule_resolver.errors import ValidationError
from schedule_resolver.service import ActiveMismatch
from schedule_resolver.timeline.types import Layer, LocalTime, ResolvedTimeline, StatusInterval
from schedule_resolver.workflow.pending_service import ReconciliationReport


def _interval(status, start, end, layer=Layer.CONTRACT):
    return StatusInterval(status, LocalTime.parse(start), LocalTime.parse(end), layer)


class StubService:
    def __init__(self):
        self.calls = []
        self.closed = False
        self.mismatches = []

    async def resolve_schedule(self, staff_id, day):
        self.calls.append(("resolve_schedule", staff_id, day))
        if day == "bad":
            raise ValidationError("Malformed date 'bad' (expected YYYY-MM-DD)")
        timeline = ResolvedTimeline(staff_id=staff_id, day=date.fromisoformat(day))
        timeline.intervals = [_interval("online", "09:00", "18:00")]
        timeline.proposed = [
            _interval("online", "09:00", "13:00"),
            _interval("remote", "13:00", "18:00", Layer.PENDING),
        ]
        return timeline

    async def resolve_range(self, staff_id, start_day, end_day):
        self.calls.append(("resolve_range", staff_id, start_day, end_day))
        return [
            ResolvedTimeline(staff_id=staff_id, day=date(2024, 5, 11)),
            ResolvedTimeline(staff_id=staff_id, day=date(2024, 5, 12)),
        ]

    async def reconcile(self, staff_id=None, day=None, dry_run=False):
        self.calls.append(("reconcile", staff_id, day, dry_run))
        return ReconciliationReport(
            groups_scanned=3, duplicate_groups=1, kept=[4], rejected=[9], dry_run=dry_run
        )

    async def check_active(self):
        return self.mismatches

    async def aclose(self):
        self.closed = True


@pytest.fixture
def stub():
    return StubService()


@pytest.fixture
def cli(stub):
    return ScheduleCli(Settings(log_level="WARNING"), service_factory=lambda settings: stub)


def test_no_command_prints_help(cli, capsys):
    assert cli.run([]) == 1
    assert "usage" in capsys.readouterr().out


def test_resolve_prints_timeline_and_proposal(cli, stub, capsys):
    assert cli.run(["resolve", "--staff-id", "7", "--date", "2024-05-06"]) == 0

    out = capsys.readouterr().out
    assert "Staff 7 on 2024-05-06" in out
    assert "09:00-18:00  online" in out
    assert "Proposed:" in out
    assert "13:00-18:00  remote" in out
    assert stub.closed


def test_resolve_range_as_json(cli, stub, capsys):
    args = ["resolve", "--staff-id", "7", "--date", "2024-05-11", "--to", "2024-05-12", "--json"]

    assert cli.run(args) == 0

    out = capsys.readouterr().out
    assert '"date": "2024-05-12"' in out
    assert stub.calls == [("resolve_range", 7, "2024-05-11", "2024-05-12")]


def test_errors_exit_with_code(cli, stub, capsys):
    assert cli.run(["resolve", "--staff-id", "7", "--date", "bad"]) == 2

    assert "Error [VALIDATION_ERROR]" in capsys.readouterr().err
    assert stub.closed


def test_reconcile_dry_run(cli, stub, capsys):
    assert cli.run(["reconcile", "--staff-id", "7", "--date", "2024-05-08", "--dry-run"]) == 0

    out = capsys.readouterr().out
    assert "[DRY RUN]" in out
    assert "Would reject:" in out
    assert stub.calls == [("reconcile", 7, "2024-05-08", True)]


def test_check_active(cli, stub, capsys):
    assert cli.run(["check-active"]) == 0
    assert "match" in capsys.readouterr().out

    stub.mismatches = [ActiveMismatch(3, "Ken Sato", is_active=True, has_contract=False)]

    assert cli.run(["check-active"]) == 1
    assert "3 Ken Sato: flagged active, expected inactive" in capsys.readouterr().out


class TestCheckActiveService:
    async def test_reports_disagreeing_flags(self, service, seed, office_worker):
        no_contract = await seed.staff("No Contract")
        await seed.staff("Left", is_active=False, hours={"monday": "09:00-12:00"})
        await seed.staff("Retired", is_active=False)

        mismatches = await service.check_active()

        assert [(m.staff_id, m.expected_active) for m in mismatches][0] == (no_contract, False)
        assert [m.name for m in mismatches] == ["No Contract", "Left"]
