"""
Pytest configuration and shared fixtures for the fleet reservation test suite.

This module provides:
- Database fixtures (in-memory SQLite for fast tests, a file-backed
  database for tests that need concurrent connections)
- A pinned fleet clock and test settings (no retry sleeps)
- Entity factories for vehicles, drivers and reservations
- A recording fake for the email sender
"""

import itertools
from datetime import date, datetime, timedelta, timezone
from typing import AsyncGenerator, List, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from core.clock import FixedClock
from core.db import Base
from core.environment import FleetSettings, RetryPolicy
from models import Driver, Reservation, Vehicle
from services.notifications import EmailMessage, NotificationResult, Notifier


# Test Database Configuration
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Fleet-local "now" used by most tests: 10 March 2026, 09:30 in Sao Paulo
TODAY = date(2026, 3, 10)
NOW = datetime(2026, 3, 10, 9, 30)
ONBOARDED = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

NO_SLEEP_RETRY = RetryPolicy(max_attempts=2, base_delay=0.0, max_delay=0.0)


@pytest.fixture
async def async_engine():
    """Create async engine for testing with in-memory SQLite."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def async_db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for testing."""
    async_session = async_sessionmaker(async_engine, expire_on_commit=False)

    async with async_session() as session:
        yield session


@pytest.fixture
async def file_sessions(tmp_path):
    """
    Session factory over a file-backed SQLite database. Each session gets
    its own connection, so concurrent writers really contend for locks.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'fleet.db'}",
        connect_args={"timeout": 30},
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def settings() -> FleetSettings:
    return FleetSettings(
        retry=NO_SLEEP_RETRY,
        admin_email="fleet-admin@example.com",
    )


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


# Notification doubles

class FakeSender:
    """Records every message; recipients in `failing` get a failed result."""

    def __init__(self, failing: Optional[set] = None):
        self.sent: List[EmailMessage] = []
        self.failing = failing or set()

    async def send(self, message: EmailMessage) -> NotificationResult:
        if message.recipient in self.failing:
            return NotificationResult(success=False, error="mailbox unavailable")
        self.sent.append(message)
        return NotificationResult(success=True)


@pytest.fixture
def fake_sender() -> FakeSender:
    return FakeSender()


@pytest.fixture
def notifier(fake_sender) -> Notifier:
    return Notifier(fake_sender, RetryPolicy(max_attempts=1, base_delay=0.0, max_delay=0.0))


# Test Data Factories

@pytest.fixture
def make_vehicle(async_db_session):
    counter = itertools.count(1)

    async def _make(**overrides) -> Vehicle:
        n = next(counter)
        fields = dict(
            plate=f"TST{n:04d}",
            brand="Fiat",
            model="Strada",
            current_odometer=1000,
            next_service_odometer=10000,
            next_revision_odometer=10000,
            service_margin_km=500,
            status="available",
            created_at=ONBOARDED,
        )
        fields.update(overrides)
        vehicle = Vehicle(**fields)
        async_db_session.add(vehicle)
        await async_db_session.commit()
        await async_db_session.refresh(vehicle)
        return vehicle

    return _make


@pytest.fixture
def make_driver(async_db_session):
    counter = itertools.count(1)

    async def _make(**overrides) -> Driver:
        n = next(counter)
        fields = dict(name=f"Driver {n}", email=f"driver{n}@example.com", active=True)
        fields.update(overrides)
        driver = Driver(**fields)
        async_db_session.add(driver)
        await async_db_session.commit()
        await async_db_session.refresh(driver)
        return driver

    return _make


@pytest.fixture
def make_reservation(async_db_session):
    async def _make(
        vehicle: Vehicle,
        driver: Driver,
        pickup_date: date,
        return_date: date,
        status: str = "active",
        start_odometer: Optional[int] = None,
        end_odometer: Optional[int] = None,
        destinations: Optional[list] = None,
    ) -> Reservation:
        reservation = Reservation(
            vehicle_id=vehicle.id,
            driver_id=driver.id,
            pickup_date=pickup_date,
            return_date=return_date,
            status=status,
            start_odometer=vehicle.current_odometer if start_odometer is None else start_odometer,
            end_odometer=end_odometer,
            destinations=destinations or ["Campinas"],
        )
        async_db_session.add(reservation)
        await async_db_session.commit()
        await async_db_session.refresh(reservation)
        return reservation

    return _make


def days_ago(n: int) -> date:
    return TODAY - timedelta(days=n)


def days_ahead(n: int) -> date:
    return TODAY + timedelta(days=n)
