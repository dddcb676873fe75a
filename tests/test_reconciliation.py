"""Tests for duplicate pending request reconciliation.

Bulk imports (rows with a batch id) bypass the submit-time uniqueness
check, so duplicates are seeded that way here.
"""

from datetime import date, datetime, timedelta, timezone

from schedule_resolver.store.base import NewAdjustment, PendingFilter
from schedule_resolver.workflow.pending_service import DUPLICATE_REASON, RECONCILE_ACTOR
from schedule_resolver.workflow.state_machine import PendingStatus

DAY = date(2024, 5, 8)
EARLY = datetime(2024, 4, 1, 9, 0, tzinfo=timezone.utc)
LATE = datetime(2024, 4, 2, 9, 0, tzinfo=timezone.utc)


async def _imported(seed, staff_id, created_at, day=DAY, status="remote"):
    return await seed.adjustment(
        staff_id,
        day,
        status,
        "13:00",
        "18:00",
        is_pending=True,
        pending_type="monthly-planner",
        batch_id="import-2024-04",
        created_at=created_at,
    )


class TestReconcileDuplicates:
    async def test_keeps_earliest_and_rejects_rest(self, service, seed, office_worker):
        kept = await _imported(seed, office_worker, EARLY)
        dup = await _imported(seed, office_worker, LATE, status="off")

        report = await service.reconcile()

        assert report.duplicate_groups == 1
        assert report.kept == [kept]
        assert report.rejected == [dup]
        assert report.skipped == []

        record = await service.get_pending(dup)
        assert record.state == PendingStatus.REJECTED
        assert record.rejection_reason == DUPLICATE_REASON
        assert record.rejected_by == RECONCILE_ACTOR
        history = await service.history(dup)
        assert [(e.to_state, e.actor, e.reason) for e in history] == [
            ("rejected", RECONCILE_ACTOR, DUPLICATE_REASON)
        ]
        assert (await service.get_pending(kept)).state == PendingStatus.PENDING

        by_system = await service.audit.entries(actor=RECONCILE_ACTOR)
        assert [e.adjustment_id for e in by_system] == [dup]
        since = by_system[0].created_at + timedelta(seconds=1)
        assert await service.audit.entries(since=since) == []

    async def test_idempotent(self, service, seed, office_worker):
        await _imported(seed, office_worker, EARLY)
        await _imported(seed, office_worker, LATE)
        await _imported(seed, office_worker, datetime(2024, 4, 3, tzinfo=timezone.utc))

        first = await service.reconcile()
        second = await service.reconcile()

        assert first.rejected_count == 2
        assert second.is_clean
        assert second.rejected == []
        assert len(await service.list_pending()) == 1

    async def test_clean_store_is_noop(self, service, office_worker):
        await service.submit_pending(
            office_worker, DAY, [{"status": "remote", "start": "13:00", "end": "18:00"}]
        )

        report = await service.reconcile()

        assert report.groups_scanned == 1
        assert report.is_clean

    async def test_direct_insert_duplicating_import(self, service, seed, office_worker):
        kept = await _imported(seed, office_worker, EARLY)
        await service.store.put_adjustment(
            _batch_free_copy(await service.store.get_adjustment(kept))
        )

        report = await service.reconcile()

        assert report.kept == [kept]
        assert report.rejected_count == 1

    async def test_multi_interval_submission_is_rejected_whole(
        self, service, seed, office_worker
    ):
        pending_id = await service.submit_pending(
            office_worker, DAY, [("remote", "09:00", "12:00"), ("off", "15:00", "18:00")]
        )
        kept = await _imported(seed, office_worker, EARLY)

        report = await service.reconcile(staff_id=office_worker, day=DAY)

        assert report.kept == [kept]
        assert report.rejected_count == 2
        assert pending_id in report.rejected
        remaining = await service.list_pending(PendingFilter(staff_id=office_worker))
        assert [r.id for r in remaining] == [kept]

    async def test_dry_run_changes_nothing(self, service, seed, office_worker):
        await _imported(seed, office_worker, EARLY)
        dup = await _imported(seed, office_worker, LATE)

        report = await service.reconcile(dry_run=True)

        assert report.dry_run
        assert report.rejected == [dup]
        assert len(await service.list_pending()) == 2
        assert await service.history(dup) == []

    async def test_scoped_by_staff_and_day(self, service, seed, office_worker):
        other = await seed.staff("Second")
        await _imported(seed, office_worker, EARLY)
        await _imported(seed, office_worker, LATE)
        await _imported(seed, other, EARLY)
        await _imported(seed, other, LATE)
        await _imported(seed, office_worker, EARLY, day=date(2024, 5, 9))
        await _imported(seed, office_worker, LATE, day=date(2024, 5, 9))

        report = await service.reconcile(staff_id=office_worker, day="2024-05-08")

        assert report.groups_scanned == 1
        assert report.rejected_count == 1
        assert len(await service.list_pending()) == 5

    async def test_concurrently_decided_row_is_skipped(
        self, service, seed, office_worker, monkeypatch
    ):
        await _imported(seed, office_worker, EARLY)
        dup = await _imported(seed, office_worker, LATE)
        list_adjustments = service.store.list_adjustments

        async def approve_after_scan(flt):
            rows = await list_adjustments(flt)
            await service.decide(dup, "approve", "manager:1")
            return rows

        monkeypatch.setattr(service.store, "list_adjustments", approve_after_scan)
        report = await service.reconcile()

        assert report.rejected == []
        assert report.skipped == [dup]
        assert (await service.get_pending(dup)).state == PendingStatus.APPROVED


def _batch_free_copy(record):
    return NewAdjustment(
        staff_id=record.staff_id,
        day=record.day,
        status=record.status,
        start_at=record.start_at,
        end_at=record.end_at,
        is_pending=True,
        pending_type=record.pending_type,
    )
