"""Pytest fixtures for schedule resolver tests."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from schedule_resolver.api.app import create_app
from schedule_resolver.config import Settings
from schedule_resolver.database import create_engine, create_schema, create_session_factory
from schedule_resolver.models import Adjustment, Contract, MonthlySchedule, Staff
from schedule_resolver.service import ScheduleService
from schedule_resolver.store.sql import SqlLayerStore
from schedule_resolver.timeline.clock import WallClock
from schedule_resolver.timeline.types import LocalTime


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing at a fresh file-backed SQLite database."""
    return Settings(database_url=f"sqlite+aiosqlite:///{tmp_path / 'schedule.db'}")


@pytest.fixture
def clock() -> WallClock:
    return WallClock(timedelta(hours=9))


@pytest.fixture
async def engine(settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    """Create test database engine."""
    engine = create_engine(settings)
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest.fixture
def store(session_factory, clock: WallClock, settings: Settings) -> SqlLayerStore:
    return SqlLayerStore(session_factory, clock, timeout=settings.store_timeout_seconds)


@pytest.fixture
def service(
    store: SqlLayerStore, settings: Settings, clock: WallClock, engine: AsyncEngine
) -> ScheduleService:
    return ScheduleService(store, settings=settings, clock=clock, engine=engine)


@pytest.fixture
async def client(service: ScheduleService) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client for API testing."""
    app = create_app(service.settings, service=service)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


class Seeder:
    """Insert roster and layer rows directly through the ORM."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], clock: WallClock):
        self.session_factory = session_factory
        self.clock = clock

    def instant(self, day: date, hhmm: str) -> datetime:
        return self.clock.to_instant(day, LocalTime.parse(hhmm))

    async def _add(self, row):
        async with self.session_factory() as session:
            session.add(row)
            await session.commit()
            return row

    async def staff(
        self,
        name: str = "Test Staff",
        is_active: bool = True,
        hours: dict[str, str] | None = None,
        department: str | None = "support",
    ) -> int:
        """Create a staff member, with a contract when ``hours`` is given.

        ``hours`` maps weekday column prefixes (``"wednesday"``) to ranges.
        """
        staff = await self._add(Staff(name=name, is_active=is_active, department=department))
        if hours is not None:
            await self._add(
                Contract(
                    staff_id=staff.id,
                    **{f"{day}_hours": value for day, value in hours.items()},
                )
            )
        return staff.id

    async def monthly(
        self,
        staff_id: int,
        day: date,
        status: str,
        start: str,
        end: str,
        updated_at: datetime | None = None,
        end_day: date | None = None,
    ) -> int:
        row = MonthlySchedule(
            staff_id=staff_id,
            work_date=day,
            status=status,
            start_at=self.instant(day, start),
            end_at=self.instant(end_day or day, end),
            source="planner",
        )
        if updated_at is not None:
            row.created_at = updated_at
            row.updated_at = updated_at
        return (await self._add(row)).id

    async def adjustment(
        self,
        staff_id: int,
        day: date,
        status: str,
        start: str,
        end: str,
        *,
        is_pending: bool = False,
        pending_type: str | None = None,
        batch_id: str | None = None,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
    ) -> int:
        row = Adjustment(
            staff_id=staff_id,
            work_date=day,
            status=status,
            start_at=self.instant(day, start),
            end_at=self.instant(day, end),
            is_pending=is_pending,
            pending_type=pending_type,
            batch_id=batch_id,
        )
        if created_at is not None:
            row.created_at = created_at
        if updated_at is not None or created_at is not None:
            row.updated_at = updated_at or created_at
        return (await self._add(row)).id


@pytest.fixture
def seed(session_factory, clock: WallClock) -> Seeder:
    return Seeder(session_factory, clock)


@pytest.fixture
async def office_worker(seed: Seeder) -> int:
    """Active staff member with a 09:00-18:00 weekday contract."""
    weekday = "09:00-18:00"
    return await seed.staff(
        "Aiko Tanaka",
        hours={
            "monday": weekday,
            "tuesday": weekday,
            "wednesday": "9:00-18:00",
            "thursday": weekday,
            "friday": weekday,
        },
    )
