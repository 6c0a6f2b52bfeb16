import os
from collections.abc import AsyncGenerator
from datetime import UTC, date, datetime, time, timedelta
from typing import Any
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# The application modules read settings at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ["SWEEPER_ENABLED"] = "false"
os.environ["LOCK_BACKEND"] = "local"
os.environ["NOTIFICATION_BACKEND"] = "log"
os.environ["SCHEDULE_CACHE_ENABLED"] = "false"
os.environ["CLINIC_TIMEZONE"] = "UTC"
os.environ["LOG_FORMAT"] = "console"

from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from clinicq.core.clock import FixedClock, get_clock
from clinicq.core.locks import LocalLockManager, get_lock_manager
from clinicq.database import get_db
from clinicq.dependencies import get_cache_manager, get_sweeper
from clinicq.main import app
from clinicq.models import combined_metadata
from clinicq.scheduling.sweeper import AppointmentSweeper
from clinicq.schemas.appointments import Actor, ActorContext, AppointmentCreate
from clinicq.schemas.providers import ProviderScheduleUpdate, TimeRange, Weekday
from clinicq.services.appointment_service import AppointmentService
from clinicq.services.notification_service import (
    NotificationKind,
    get_notification_dispatcher,
)
from clinicq.services.provider_service import ProviderService

metadata = combined_metadata()


class RecordingDispatcher:
    """Notification dispatcher that keeps every notification in memory."""

    def __init__(self) -> None:
        self.sent: list[tuple[UUID, NotificationKind, dict[str, Any]]] = []

    async def notify(self, user_id: UUID, kind: NotificationKind, payload: dict[str, Any]) -> None:
        self.sent.append((user_id, kind, payload))

    def kinds(self) -> list[NotificationKind]:
        return [kind for _, kind, _ in self.sent]


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """Create a fresh SQLite database file per test."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'clinicq_test.db'}",
        echo=False,
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> FixedClock:
    """Clinic clock frozen at 08:00 on a Monday."""
    return FixedClock(datetime(2026, 3, 2, 8, 0, tzinfo=UTC))


@pytest.fixture
def today(clock) -> date:
    return clock.today()


@pytest.fixture
def tomorrow(today) -> date:
    return today + timedelta(days=1)


@pytest.fixture
def locks() -> LocalLockManager:
    return LocalLockManager(timeout=5.0)


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def make_service(clock, locks, dispatcher):
    """Build an appointment service bound to a given session."""

    def factory(session: AsyncSession) -> AppointmentService:
        return AppointmentService(session, clock=clock, locks=locks, dispatcher=dispatcher)

    return factory


@pytest.fixture
def service(db_session, make_service) -> AppointmentService:
    return make_service(db_session)


@pytest.fixture
def sweeper(session_factory, clock, locks, dispatcher) -> AppointmentSweeper:
    return AppointmentSweeper(session_factory, clock=clock, locks=locks, dispatcher=dispatcher)


@pytest.fixture
def schedule_data() -> ProviderScheduleUpdate:
    """Weekday schedule 09:00-17:00 with a lunch break and single-capacity slots."""
    return ProviderScheduleUpdate(
        working_days=[
            Weekday.MONDAY,
            Weekday.TUESDAY,
            Weekday.WEDNESDAY,
            Weekday.THURSDAY,
            Weekday.FRIDAY,
        ],
        working_hours=TimeRange(start=time(9, 0), end=time(17, 0)),
        breaks=[TimeRange(start=time(12, 0), end=time(13, 0))],
        slot_duration_minutes=30,
        max_appointments_per_slot=1,
        is_verified=True,
        is_active=True,
    )


@pytest_asyncio.fixture
async def provider_id(db_session, schedule_data) -> UUID:
    """Create a verified, active provider."""
    provider = uuid4()
    await ProviderService(db_session).upsert_schedule(provider, schedule_data)
    return provider


@pytest.fixture
def provider(provider_id) -> ActorContext:
    return ActorContext(role=Actor.PROVIDER, user_id=provider_id)


@pytest.fixture
def admin() -> ActorContext:
    return ActorContext(role=Actor.ADMIN)


@pytest.fixture
def new_patient():
    """Create patient actors on demand."""

    def factory() -> ActorContext:
        return ActorContext(role=Actor.PATIENT, user_id=uuid4())

    return factory


@pytest.fixture
def patient(new_patient) -> ActorContext:
    return new_patient()


@pytest.fixture
def book(service, provider_id, today):
    """Book a slot with the test provider."""

    async def factory(
        patient: ActorContext,
        slot_start: time = time(9, 0),
        day: date | None = None,
        svc: AppointmentService | None = None,
    ):
        return await (svc or service).book(
            patient,
            AppointmentCreate(
                provider_id=provider_id,
                appointment_date=day or today,
                slot_start=slot_start,
            ),
        )

    return factory


@pytest_asyncio.fixture
async def client(
    session_factory,
    clock,
    locks,
    dispatcher,
    sweeper,
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_lock_manager] = lambda: locks
    app.dependency_overrides[get_notification_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_cache_manager] = lambda: None
    app.dependency_overrides[get_sweeper] = lambda: sweeper

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def headers_for():
    """Gateway headers asserting an actor."""

    def factory(actor: ActorContext) -> dict[str, str]:
        headers = {"X-Actor-Role": actor.role.value}
        if actor.user_id:
            headers["X-Actor-Id"] = str(actor.user_id)
        return headers

    return factory
