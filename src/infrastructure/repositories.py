"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.  Aggregates are hydrated explicitly with
``selectinload`` so state-machine preconditions never trigger lazy loads.

Seat inventory
--------------
``TripRepository.try_reserve_seats`` is an atomic conditional decrement::

    UPDATE trips SET remaining_seats = remaining_seats - :n, is_full = ...
     WHERE id = :trip AND remaining_seats >= :n

Two concurrent reservations racing for the last seat both issue it; the
database serialises the row update and only one sees ``rowcount == 1``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional, Sequence

from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.attributes import set_committed_value

from .models import (
    AuditLogModel,
    BankTransferModel,
    CancellationModel,
    PaymentModel,
    RefundModel,
    ReservationModel,
    TripModel,
    UserModel,
)
from src.domain import seat_ledger
from src.domain.enums import (
    CAPACITY_HOLDING_STATUSES,
    CancelledBy,
    PaymentStatus,
    RefundStatus,
    RefundType,
    ReservationStatus,
    TripStatus,
)
from src.domain.pricing import PaymentQuote


class TripRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, trip: TripModel) -> TripModel:
        self.session.add(trip)
        await self.session.flush()
        return trip

    async def get_by_id(self, trip_id: int) -> Optional[TripModel]:
        return await self.session.get(TripModel, trip_id)

    async def get_with_reservations(
        self, trip_id: int, *, for_update: bool = False
    ) -> Optional[TripModel]:
        query = (
            select(TripModel)
            .where(TripModel.id == trip_id)
            .options(
                selectinload(TripModel.reservations).selectinload(
                    ReservationModel.payment
                )
            )
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_for_update(self, trip_id: int) -> Optional[TripModel]:
        """SELECT ... FOR UPDATE on the trip row (the seat-inventory lock)."""
        result = await self.session.execute(
            select(TripModel)
            .where(TripModel.id == trip_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def try_reserve_seats(self, trip_id: int, seats: int) -> bool:
        result = await self.session.execute(
            update(TripModel)
            .where(TripModel.id == trip_id, TripModel.remaining_seats >= seats)
            .values(
                remaining_seats=TripModel.remaining_seats - seats,
                is_full=TripModel.remaining_seats - seats <= 0,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def release_seats(self, trip_id: int, seats: int) -> None:
        released = TripModel.remaining_seats + seats
        await self.session.execute(
            update(TripModel)
            .where(TripModel.id == trip_id)
            .values(
                remaining_seats=case(
                    (released > TripModel.offered_seats, TripModel.offered_seats),
                    else_=released,
                ),
                is_full=False,
            )
            .execution_options(synchronize_session=False)
        )

    async def reconcile_seats(self, trip_id: int) -> seat_ledger.SeatSnapshot:
        """Recompute ``remaining_seats`` / ``is_full`` from the reservations."""
        trip = await self.get_with_reservations(trip_id, for_update=True)
        snap = seat_ledger.snapshot(trip.offered_seats, trip.reservations)
        trip.remaining_seats = snap.available_seats
        trip.is_full = snap.is_full
        await self.session.flush()
        return snap

    async def get_completable(self, departed_before: datetime) -> list[TripModel]:
        result = await self.session.execute(
            select(TripModel)
            .where(
                TripModel.status == TripStatus.ACTIVE,
                TripModel.departure_time < departed_before,
            )
            .order_by(TripModel.departure_time)
        )
        return list(result.scalars().all())


class ReservationRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, reservation: ReservationModel) -> ReservationModel:
        self.session.add(reservation)
        await self.session.flush()
        return reservation

    async def get_aggregate(
        self, reservation_id: int, *, for_update: bool = False
    ) -> Optional[ReservationModel]:
        """Reservation + trip + payment + bank transfer."""
        query = (
            select(ReservationModel)
            .where(ReservationModel.id == reservation_id)
            .options(
                selectinload(ReservationModel.trip),
                selectinload(ReservationModel.payment).selectinload(
                    PaymentModel.bank_transfer
                ),
            )
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_for_trip_and_passenger(
        self, trip_id: int, passenger_id: int
    ) -> Optional[ReservationModel]:
        result = await self.session.execute(
            select(ReservationModel)
            .where(
                ReservationModel.trip_id == trip_id,
                ReservationModel.passenger_id == passenger_id,
            )
            .options(selectinload(ReservationModel.payment))
            .with_for_update()
        )
        return result.scalar_one_or_none()

    async def get_pending_by_ids(
        self, reservation_ids: Sequence[int]
    ) -> list[ReservationModel]:
        result = await self.session.execute(
            select(ReservationModel)
            .where(
                ReservationModel.id.in_(list(reservation_ids)),
                ReservationModel.status == ReservationStatus.PENDING_APPROVAL,
            )
            .options(selectinload(ReservationModel.trip))
            .order_by(ReservationModel.id)
            .with_for_update()
        )
        return list(result.scalars().all())

    async def list_for_trip(
        self, trip_id: int, statuses: Iterable[ReservationStatus]
    ) -> list[ReservationModel]:
        result = await self.session.execute(
            select(ReservationModel)
            .where(
                ReservationModel.trip_id == trip_id,
                ReservationModel.status.in_(list(statuses)),
            )
            .options(
                selectinload(ReservationModel.payment).selectinload(
                    PaymentModel.bank_transfer
                )
            )
            .order_by(ReservationModel.id)
            .with_for_update()
        )
        return list(result.scalars().all())

    async def list_unpaid_near_departure(
        self, now: datetime, departs_before: datetime
    ) -> list[ReservationModel]:
        """APPROVED reservations with a PENDING payment on open trips."""
        result = await self.session.execute(
            select(ReservationModel)
            .join(ReservationModel.trip)
            .join(ReservationModel.payment)
            .where(
                ReservationModel.status == ReservationStatus.APPROVED,
                PaymentModel.status == PaymentStatus.PENDING,
                TripModel.departure_time <= departs_before,
                TripModel.departure_time > now,
                TripModel.status.in_([TripStatus.PENDING, TripStatus.ACTIVE]),
            )
            .options(
                selectinload(ReservationModel.trip),
                selectinload(ReservationModel.payment),
            )
            .order_by(ReservationModel.id)
        )
        return list(result.scalars().all())

    async def list_pending_approval_ids(self, departs_before: datetime) -> list[int]:
        result = await self.session.execute(
            select(ReservationModel.id)
            .join(ReservationModel.trip)
            .where(
                ReservationModel.status == ReservationStatus.PENDING_APPROVAL,
                TripModel.status == TripStatus.ACTIVE,
                TripModel.departure_time < departs_before,
            )
            .order_by(ReservationModel.id)
        )
        return list(result.scalars().all())

    async def has_confirmed(self, trip_id: int) -> bool:
        result = await self.session.execute(
            select(ReservationModel.id)
            .where(
                ReservationModel.trip_id == trip_id,
                ReservationModel.status == ReservationStatus.CONFIRMED,
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def list_seat_holder_ids(self, trip_id: int) -> list[int]:
        """Passenger ids currently holding capacity on the trip."""
        result = await self.session.execute(
            select(ReservationModel.passenger_id).where(
                ReservationModel.trip_id == trip_id,
                ReservationModel.status.in_(list(CAPACITY_HOLDING_STATUSES)),
            )
        )
        return list(result.scalars().all())


class PaymentRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_aggregate(
        self, payment_id: int, *, for_update: bool = False
    ) -> Optional[PaymentModel]:
        """Payment + reservation + trip + bank transfer."""
        query = (
            select(PaymentModel)
            .where(PaymentModel.id == payment_id)
            .options(
                selectinload(PaymentModel.reservation).selectinload(
                    ReservationModel.trip
                ),
                selectinload(PaymentModel.bank_transfer),
            )
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_current(self, reservation_id: int) -> Optional[PaymentModel]:
        result = await self.session.execute(
            select(PaymentModel).where(
                PaymentModel.reservation_id == reservation_id,
                PaymentModel.superseded_at.is_(None),
            )
        )
        return result.scalar_one_or_none()

    async def supersede_current(
        self, reservation: ReservationModel, now: datetime
    ) -> Optional[PaymentModel]:
        """Retire the reservation's current payment before a fresh one opens.

        Settled rows (completed, refunded, cancelled) are only stamped
        ``superseded_at``; an open one is cancelled first.  Amounts, bank
        transfer and refunds are left as they are.
        """
        previous = await self.get_current(reservation.id)
        if previous is not None:
            if previous.can_transition_to(PaymentStatus.CANCELLED):
                previous.transition_to(PaymentStatus.CANCELLED)
            previous.superseded_at = now
            await self.session.flush()
        set_committed_value(reservation, "payment", None)
        return previous

    async def open_for_reservation(
        self, reservation: ReservationModel, quote: PaymentQuote, now: datetime
    ) -> PaymentModel:
        """Open a new PENDING payment as the reservation's current one."""
        await self.supersede_current(reservation, now)
        payment = PaymentModel(
            reservation_id=reservation.id,
            total_amount=quote.total_amount,
            service_fee=quote.service_fee,
            currency=quote.currency,
            status=PaymentStatus.PENDING,
        )
        self.session.add(payment)
        await self.session.flush()
        set_committed_value(reservation, "payment", payment)
        return payment

    async def get_bank_transfer(self, payment_id: int) -> Optional[BankTransferModel]:
        result = await self.session.execute(
            select(BankTransferModel).where(BankTransferModel.payment_id == payment_id)
        )
        return result.scalar_one_or_none()

    async def upsert_bank_transfer(
        self, payment: PaymentModel, **fields
    ) -> BankTransferModel:
        transfer = await self.get_bank_transfer(payment.id)
        if transfer is None:
            transfer = BankTransferModel(payment_id=payment.id, **fields)
            self.session.add(transfer)
        else:
            for key, value in fields.items():
                setattr(transfer, key, value)
        await self.session.flush()
        set_committed_value(payment, "bank_transfer", transfer)
        return transfer


class CancellationRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def record(
        self,
        *,
        cancelled_by: CancelledBy,
        reason: Optional[str],
        hours_before_departure: float,
        refund_percentage: float,
        reservation_id: Optional[int] = None,
        trip_id: Optional[int] = None,
    ) -> CancellationModel:
        record = CancellationModel(
            reservation_id=reservation_id,
            trip_id=trip_id,
            cancelled_by=cancelled_by,
            reason=reason,
            hours_before_departure=round(hours_before_departure, 2),
            refund_percentage=refund_percentage,
        )
        self.session.add(record)
        await self.session.flush()
        return record


class RefundRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def record(
        self,
        *,
        payment_id: int,
        refund_amount: float,
        driver_compensation: float,
        service_fee_retained: float,
        refund_type: RefundType,
        processed_at: datetime,
    ) -> RefundModel:
        refund = RefundModel(
            payment_id=payment_id,
            refund_amount=refund_amount,
            driver_compensation=driver_compensation,
            service_fee_retained=service_fee_retained,
            refund_type=refund_type,
            status=RefundStatus.PROCESSING,
            processed_at=processed_at,
        )
        self.session.add(refund)
        await self.session.flush()
        return refund


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, user_id: int) -> Optional[UserModel]:
        return await self.session.get(UserModel, user_id)


class AuditLogRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(
        self, *, user_id: str, action: str, status: str, details: Optional[dict]
    ) -> AuditLogModel:
        entry = AuditLogModel(
            user_id=user_id, action=action, status=status, details=details
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def list_by_action(self, action: str) -> list[AuditLogModel]:
        result = await self.session.execute(
            select(AuditLogModel)
            .where(AuditLogModel.action == action)
            .order_by(AuditLogModel.id)
        )
        return list(result.scalars().all())
