"""Layered schedule resolution.

Merges, for one staff member and local date:

    Layer 1  contract weekday hours      (status "online")
    Layer 2  monthly schedule entries
    Layer 3  direct and approved adjustments

into one time-ordered, non-overlapping timeline. Every higher layer fully
replaces the lower-layer time it covers; uncovered remainders are kept and
split at the boundary. Requests still awaiting approval are never merged
into the authoritative timeline, only into the ``proposed`` preview.
"""

from __future__ import annotations

import asyncio
import calendar
import logging
from datetime import date, timedelta
from typing import TYPE_CHECKING, Iterable

from schedule_resolver.errors import OverlapWarning, ValidationError
from schedule_resolver.timeline.clock import WallClock
from schedule_resolver.timeline.types import (
    Layer,
    ResolvedTimeline,
    StatusInterval,
    Weekday,
)

if TYPE_CHECKING:
    from schedule_resolver.store.base import LayerStore

logger = logging.getLogger(__name__)

CONTRACT_STATUS = "online"
CONTRACT_MEMO = "contract baseline"
MAX_RANGE_DAYS = 62


def overlay(
    base: Iterable[StatusInterval], top: Iterable[StatusInterval]
) -> list[StatusInterval]:
    """Lay ``top`` over ``base``.

    ``top`` must be free of internal overlaps. Base time covered by any top
    interval is removed; the uncovered base remainders are kept.
    """
    covers = sorted(top, key=lambda i: (i.start, i.end))
    result: list[StatusInterval] = []
    for piece in base:
        remaining = [piece]
        for cover in covers:
            if cover.start >= piece.end:
                break
            next_remaining: list[StatusInterval] = []
            for part in remaining:
                if not part.overlaps(cover):
                    next_remaining.append(part)
                    continue
                if part.start < cover.start:
                    next_remaining.append(part.clipped(part.start, cover.start))
                if cover.end < part.end:
                    next_remaining.append(part.clipped(cover.end, part.end))
            remaining = next_remaining
        result.extend(remaining)
    result.extend(covers)
    return sorted(result, key=lambda i: (i.start, i.end))


def flatten_layer(
    intervals: Iterable[StatusInterval],
    staff_id: int,
    day: date,
) -> tuple[list[StatusInterval], list[OverlapWarning]]:
    """Remove same-layer overlaps: the most recently updated interval wins.

    Overlaps are a data-quality defect, not an error; each one yields an
    OverlapWarning.
    """
    flat: list[StatusInterval] = []
    warnings: list[OverlapWarning] = []
    for interval in sorted(intervals, key=StatusInterval.freshness):
        # one warning per source row, however many fragments of it remain
        warned: set[int] = set()
        for older in flat:
            source = older.source_id if older.source_id is not None else id(older)
            if older.overlaps(interval) and source not in warned:
                warned.add(source)
                warning = OverlapWarning(
                    interval.layer.label, staff_id, day, kept=interval, dropped=older
                )
                logger.warning("%s", warning)
                warnings.append(warning)
        flat = overlay(flat, [interval])
    return flat, warnings


def month_days(year: int, month: int) -> list[date]:
    """All local dates of a calendar month."""
    if not 1 <= month <= 12:
        raise ValidationError(f"Invalid month {month}", month=month)
    if not 1 <= year <= 9999:
        raise ValidationError(f"Invalid year {year}", year=year)
    _, last = calendar.monthrange(year, month)
    return [date(year, month, d) for d in range(1, last + 1)]


class ScheduleResolver:
    """Resolves authoritative timelines from a LayerStore.

    Stateless between calls: every resolution reads the store afresh, so
    calls for different staff/date keys can run concurrently.
    """

    def __init__(
        self,
        store: LayerStore,
        clock: WallClock | None = None,
        concurrency: int = 8,
    ):
        self.store = store
        self.clock = clock or WallClock()
        self.concurrency = concurrency

    async def resolve_schedule(self, staff_id: int, day: date | str) -> ResolvedTimeline:
        """Resolve one staff member's timeline for one local date."""
        day = self.clock.parse_date(day)
        timeline = ResolvedTimeline(staff_id=staff_id, day=day)

        staff = await self.store.get_staff(staff_id)
        if staff is None or not staff.is_active:
            logger.debug("Staff %s inactive or unknown; empty timeline for %s", staff_id, day)
            return timeline

        contract_layer = await self._contract_layer(staff_id, day)
        monthly, adjustments, pending = await asyncio.gather(
            self.store.get_monthly_entries(staff_id, day),
            self.store.get_adjustments(staff_id, day, include_pending=False),
            self.store.get_adjustments(staff_id, day, include_pending=True),
        )

        merged = contract_layer
        for layer_intervals in (monthly, adjustments):
            flat, warnings = flatten_layer(layer_intervals, staff_id, day)
            timeline.warnings.extend(warnings)
            merged = overlay(merged, flat)
        timeline.intervals = merged

        if pending:
            flat_pending, warnings = flatten_layer(pending, staff_id, day)
            timeline.warnings.extend(warnings)
            timeline.proposed = overlay(merged, flat_pending)
        else:
            timeline.proposed = list(merged)

        return timeline

    async def resolve_range(
        self, staff_id: int, start_day: date | str, end_day: date | str
    ) -> list[ResolvedTimeline]:
        """Resolve every date in ``[start_day, end_day]`` for one staff member."""
        start_day = self.clock.parse_date(start_day)
        end_day = self.clock.parse_date(end_day)
        if end_day < start_day:
            raise ValidationError(
                f"Range end {end_day} precedes start {start_day}",
                start=start_day,
                end=end_day,
            )
        span = (end_day - start_day).days + 1
        if span > MAX_RANGE_DAYS:
            raise ValidationError(
                f"Range of {span} days exceeds {MAX_RANGE_DAYS}", days=span
            )
        days = [start_day + timedelta(days=n) for n in range(span)]
        return await self._gather([(staff_id, d) for d in days])

    async def resolve_month(
        self, staff_ids: Iterable[int], year: int, month: int
    ) -> dict[tuple[int, date], ResolvedTimeline]:
        """Resolve a calendar month for many staff; inactive staff are skipped."""
        days = month_days(year, month)
        active = set(await self.store.list_active_staff())
        requested = list(dict.fromkeys(staff_ids))
        skipped = [s for s in requested if s not in active]
        if skipped:
            logger.info("Skipping %d inactive staff in %04d-%02d", len(skipped), year, month)

        keys = [(s, d) for s in requested if s in active for d in days]
        timelines = await self._gather(keys)
        return {(t.staff_id, t.day): t for t in timelines}

    async def _gather(self, keys: list[tuple[int, date]]) -> list[ResolvedTimeline]:
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _one(staff_id: int, day: date) -> ResolvedTimeline:
            async with semaphore:
                return await self.resolve_schedule(staff_id, day)

        return list(await asyncio.gather(*(_one(s, d) for s, d in keys)))

    async def _contract_layer(self, staff_id: int, day: date) -> list[StatusInterval]:
        """Zero or one baseline interval from the contract's weekday hours."""
        hours = await self.store.get_contract_hours(staff_id, Weekday.of(day))
        if hours is None:
            return []
        return [
            StatusInterval(
                status=CONTRACT_STATUS,
                start=hours.start,
                end=hours.end,
                layer=Layer.CONTRACT,
                memo=CONTRACT_MEMO,
            )
        ]
