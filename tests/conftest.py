import os
from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time, timedelta
from decimal import Decimal
from typing import Any

# Tests always run against an in-memory SQLite database
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ.setdefault("LOG_FORMAT", "console")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.config import Settings, get_settings
from app.core.exceptions import CollaboratorError, CollaboratorNotFound
from app.dependencies import get_appointment_service
from app.main import app
from app.models.appointments import metadata
from app.schemas.appointments import AppointmentCreate
from app.services.appointment_service import AppointmentService
from app.services.dispatcher import BackgroundDispatcher

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Fixed "now" for every test: 2025-03-01 08:00 UTC
NOW = datetime(2025, 3, 1, 8, 0, tzinfo=UTC)
APPOINTMENT_DATE = date(2025, 3, 1)


class FakeClock:
    """Controllable replacement for the service clock."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


class FakePatientClient:
    def __init__(self) -> None:
        self.missing: set[int] = set()
        self.unavailable = False

    async def get_patient(self, patient_id: int) -> dict[str, Any]:
        if self.unavailable:
            raise CollaboratorError("patient", "patient service returned 500", status_code=500)
        if patient_id in self.missing:
            raise CollaboratorNotFound("patient", "patient service returned 404", status_code=404)
        return {"id": patient_id, "name": "Test Patient"}


class FakeDoctorClient:
    def __init__(self) -> None:
        self.missing: set[int] = set()
        self.unavailable = False

    async def get_doctor(self, doctor_id: int) -> dict[str, Any]:
        if self.unavailable:
            raise CollaboratorError("doctor", "Unable to reach doctor service: ConnectTimeout")
        if doctor_id in self.missing:
            raise CollaboratorNotFound("doctor", "doctor service returned 404", status_code=404)
        return {"id": doctor_id, "name": "Dr. Jane Smith"}


class FakeBillingClient:
    def __init__(self) -> None:
        self.bills: list[dict[str, Any]] = []
        self.cancellations: list[dict[str, Any]] = []
        self.unavailable = False

    async def create_bill(
        self,
        appointment_id: int,
        patient_id: int,
        doctor_id: int,
        amount: Decimal,
        bill_type: str | None = None,
    ) -> dict[str, Any]:
        if self.unavailable:
            raise CollaboratorError("billing", "billing service returned 503", status_code=503)
        bill = {
            "appointment_id": appointment_id,
            "patient_id": patient_id,
            "doctor_id": doctor_id,
            "amount": amount,
            "bill_type": bill_type,
        }
        self.bills.append(bill)
        return bill

    async def cancel_bill(self, appointment_id: int, refund_policy: str) -> dict[str, Any]:
        if self.unavailable:
            raise CollaboratorError("billing", "billing service returned 503", status_code=503)
        entry = {"appointment_id": appointment_id, "refund_policy": refund_policy}
        self.cancellations.append(entry)
        return entry


class FakeNotificationClient:
    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.unavailable = False

    async def send(
        self,
        notification_type: str,
        patient_id: int,
        message: str,
        metadata: dict[str, Any],
    ) -> dict[str, Any]:
        if self.unavailable:
            raise CollaboratorError("notification", "Unable to reach notification service")
        entry = {
            "type": notification_type,
            "patient_id": patient_id,
            "message": message,
            "metadata": metadata,
        }
        self.sent.append(entry)
        return entry


@dataclass
class FakeCollaborators:
    patients: FakePatientClient = field(default_factory=FakePatientClient)
    doctors: FakeDoctorClient = field(default_factory=FakeDoctorClient)
    billing: FakeBillingClient = field(default_factory=FakeBillingClient)
    notifications: FakeNotificationClient = field(default_factory=FakeNotificationClient)


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session on a fresh in-memory schema."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(NOW)


@pytest.fixture
def collaborators() -> FakeCollaborators:
    return FakeCollaborators()


@pytest.fixture
def dispatcher() -> BackgroundDispatcher:
    return BackgroundDispatcher(timeout=1.0)


@pytest.fixture
def service(
    db_session: AsyncSession,
    settings: Settings,
    collaborators: FakeCollaborators,
    dispatcher: BackgroundDispatcher,
    clock: FakeClock,
) -> AppointmentService:
    """Appointment orchestrator wired to fakes and a fixed clock."""
    return AppointmentService(db_session, settings, collaborators, dispatcher, clock=clock)


@pytest.fixture(autouse=True)
def reset_rate_limits() -> None:
    """Start every test with empty per-client request counters."""
    app.state.limiter.reset()


@pytest_asyncio.fixture
async def client(service: AppointmentService) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client."""
    app.dependency_overrides[get_appointment_service] = lambda: service

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


def make_booking(
    start: str = "10:00",
    end: str = "10:30",
    *,
    doctor_id: int = 7,
    patient_id: int = 1,
    appointment_date: date = APPOINTMENT_DATE,
    **extra: Any,
) -> AppointmentCreate:
    """Build a booking request for the shared test date."""
    return AppointmentCreate(
        patient_id=patient_id,
        doctor_id=doctor_id,
        appointment_date=appointment_date,
        start_time=time.fromisoformat(start),
        end_time=time.fromisoformat(end),
        **extra,
    )


@pytest.fixture
def sample_appointment_data() -> dict:
    """Sample booking payload for API tests."""
    return {
        "patient_id": 1,
        "doctor_id": 7,
        "appointment_date": APPOINTMENT_DATE.isoformat(),
        "start_time": "10:00",
        "end_time": "10:30",
        "reason": "Regular checkup",
        "notes": "First time patient",
    }
