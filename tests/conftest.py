"""
Shared test fixtures.

Uses an in-memory SQLite database (via aiosqlite) built from the real ORM
models, so tests run without Docker / PostgreSQL / Redis.  ``StaticPool``
keeps every session on the one in-memory connection; Redis is an
``AsyncMock``.  All services share a fixed, adjustable clock.
"""

import itertools
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import AsyncGenerator
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import selectinload
from sqlalchemy.pool import StaticPool

from src.domain.enums import TripStatus
from src.infrastructure.audit import AuditLogger
from src.infrastructure.database import Base
from src.infrastructure.models import (
    AuditLogModel,
    CancellationModel,
    PaymentModel,
    RefundModel,
    ReservationModel,
    TripModel,
    UserModel,
)
from src.infrastructure.notifications import RedisNotifier
from src.infrastructure.repositories import (
    AuditLogRepository,
    PaymentRepository,
    ReservationRepository,
    TripRepository,
)
from src.services.expiration import ExpirationSweeper
from src.services.payments import PaymentService
from src.services.reservations import ReservationService
from src.services.trips import TripService

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now = self.now + timedelta(**delta)


# ── Database ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory schema per test."""
    test_engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


# ── Collaborators ─────────────────────────────────────────────────────


@pytest.fixture
def fake_redis():
    client = AsyncMock()
    client.publish = AsyncMock(return_value=1)
    client.set = AsyncMock(return_value=True)
    client.eval = AsyncMock(return_value=1)
    return client


@pytest.fixture
def notifier(fake_redis) -> RedisNotifier:
    return RedisNotifier(AsyncMock(return_value=fake_redis))


@pytest.fixture
def audit(session_factory) -> AuditLogger:
    return AuditLogger(session_factory)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def services(session_factory, notifier, audit, clock) -> SimpleNamespace:
    deps = (session_factory, notifier, audit)
    return SimpleNamespace(
        trips=TripService(*deps, clock=clock),
        reservations=ReservationService(*deps, clock=clock),
        payments=PaymentService(*deps, clock=clock),
        sweeper=ExpirationSweeper(*deps, clock=clock),
    )


# ── Factories ─────────────────────────────────────────────────────────


@pytest.fixture
def make_user(session_factory):
    counter = itertools.count(1)

    async def _make(name: str = None, is_admin: bool = False) -> UserModel:
        n = next(counter)
        async with session_factory() as session, session.begin():
            user = UserModel(
                name=name or f"User {n}",
                email=f"user{n}@example.com",
                is_admin=is_admin,
            )
            session.add(user)
        return user

    return _make


@pytest.fixture
def make_trip(session_factory, clock):
    async def _make(
        driver: UserModel,
        *,
        hours_until_departure: float = 48.0,
        offered_seats: int = 4,
        price_per_seat: float = 1000.0,
        **overrides,
    ) -> TripModel:
        departure = clock.now + timedelta(hours=hours_until_departure)
        fields = dict(
            driver_id=driver.id,
            origin_city="Buenos Aires",
            destination_city="Rosario",
            departure_time=departure,
            original_departure_time=departure,
            offered_seats=offered_seats,
            remaining_seats=offered_seats,
            is_full=False,
            price_per_seat=price_per_seat,
            status=TripStatus.ACTIVE,
        )
        fields.update(overrides)
        async with session_factory() as session, session.begin():
            trip = TripModel(**fields)
            session.add(trip)
        return trip

    return _make


class Fetch:
    """Fresh reads straight from the database."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def trip(self, trip_id: int) -> TripModel:
        async with self.session_factory() as session:
            return await TripRepository(session).get_by_id(trip_id)

    async def reservation(self, reservation_id: int) -> ReservationModel:
        async with self.session_factory() as session:
            return await ReservationRepository(session).get_aggregate(reservation_id)

    async def payment(self, payment_id: int):
        async with self.session_factory() as session:
            return await PaymentRepository(session).get_aggregate(payment_id)

    async def reservations(self, trip_id: int) -> list[ReservationModel]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ReservationModel)
                .where(ReservationModel.trip_id == trip_id)
                .order_by(ReservationModel.id)
            )
            return list(result.scalars().all())

    async def cancellations(self) -> list[CancellationModel]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(CancellationModel).order_by(CancellationModel.id)
            )
            return list(result.scalars().all())

    async def refunds(self) -> list[RefundModel]:
        async with self.session_factory() as session:
            result = await session.execute(select(RefundModel).order_by(RefundModel.id))
            return list(result.scalars().all())

    async def payments(self, reservation_id: int) -> list[PaymentModel]:
        """Every payment the reservation ever had, oldest first."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(PaymentModel)
                .where(PaymentModel.reservation_id == reservation_id)
                .options(
                    selectinload(PaymentModel.bank_transfer),
                    selectinload(PaymentModel.refunds),
                )
                .order_by(PaymentModel.id)
            )
            return list(result.scalars().all())

    async def audit_entries(self, action: str = None) -> list[AuditLogModel]:
        async with self.session_factory() as session:
            if action is not None:
                return await AuditLogRepository(session).list_by_action(action)
            result = await session.execute(
                select(AuditLogModel).order_by(AuditLogModel.id)
            )
            return list(result.scalars().all())


@pytest.fixture
def fetch(session_factory) -> Fetch:
    return Fetch(session_factory)
