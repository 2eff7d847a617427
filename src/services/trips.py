"""
Trip orchestrator.

Publishing, preference edits, whole-trip cancellation and completion, and
the seat-inventory repair used by admins.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from src.domain import seat_ledger, time_policy
from src.domain.enums import (
    ACTIVE_RESERVATION_STATUSES,
    CancelledBy,
    ReservationStatus,
    TripStatus,
)
from src.domain.errors import AuthorizationFailed, NotFound, ValidationFailed
from src.infrastructure.audit import SYSTEM_ACTOR, AuditAction
from src.infrastructure.models import TripModel
from src.infrastructure.notifications import Notice
from src.infrastructure.repositories import (
    CancellationRepository,
    ReservationRepository,
    TripRepository,
)
from src.services.base import BaseService

logger = logging.getLogger(__name__)

OPEN_TRIP_STATUSES = (TripStatus.PENDING, TripStatus.ACTIVE)


@dataclass(frozen=True)
class TripCancellationOutcome:
    trip_id: int
    cancelled_reservations: int
    refunds_processed: int


@dataclass(frozen=True)
class TripCompletionOutcome:
    trip_id: int
    completed: int
    expired: int
    rejected: int


def _link(trip_id: int) -> str:
    return f"/trips/{trip_id}"


class TripService(BaseService):
    async def create_trip(
        self,
        driver_id: int,
        origin_city: str,
        destination_city: str,
        departure_time: datetime,
        offered_seats: int,
        price_per_seat: float,
        *,
        auto_approve_reservations: bool = False,
        allow_waitlist: bool = False,
        service_fee_percentage: Optional[float] = None,
        additional_notes: Optional[str] = None,
    ) -> TripModel:
        now = self.now()
        departure_time = time_policy.as_utc(departure_time)
        if departure_time <= now:
            raise ValidationFailed("Departure time must be in the future")
        if offered_seats < 1:
            raise ValidationFailed("A trip must offer at least one seat")
        if price_per_seat <= 0:
            raise ValidationFailed("Price per seat must be greater than zero")

        async with self.session_factory() as session, session.begin():
            trip = await TripRepository(session).create(
                TripModel(
                    driver_id=driver_id,
                    origin_city=origin_city,
                    destination_city=destination_city,
                    departure_time=departure_time,
                    original_departure_time=departure_time,
                    offered_seats=offered_seats,
                    remaining_seats=offered_seats,
                    is_full=False,
                    price_per_seat=price_per_seat,
                    service_fee_percentage=service_fee_percentage,
                    status=TripStatus.ACTIVE,
                    auto_approve_reservations=auto_approve_reservations,
                    allow_waitlist=allow_waitlist,
                    additional_notes=additional_notes,
                )
            )

        logger.info("Trip %s published by driver %s", trip.id, driver_id)
        await self._audit(
            driver_id,
            AuditAction.TRIP_CREATED,
            {"trip_id": trip.id, "offered_seats": offered_seats},
        )
        return trip

    async def get_trip(self, trip_id: int) -> TripModel:
        async with self.session_factory() as session:
            trip = await TripRepository(session).get_by_id(trip_id)
        if trip is None:
            raise NotFound("Trip not found", details={"trip_id": trip_id})
        return trip

    async def get_seat_snapshot(self, trip_id: int) -> seat_ledger.SeatSnapshot:
        async with self.session_factory() as session:
            trip = await TripRepository(session).get_with_reservations(trip_id)
            if trip is None:
                raise NotFound("Trip not found", details={"trip_id": trip_id})
            return seat_ledger.snapshot(trip.offered_seats, trip.reservations)

    async def update_trip_preferences(
        self,
        driver_id: int,
        trip_id: int,
        *,
        departure_time: Optional[datetime] = None,
        auto_approve_reservations: Optional[bool] = None,
        allow_waitlist: Optional[bool] = None,
        additional_notes: Optional[str] = None,
    ) -> TripModel:
        now = self.now()
        notify: list[int] = []
        async with self.session_factory() as session, session.begin():
            reservations = ReservationRepository(session)
            trip = await self._load_for_driver(session, trip_id, driver_id)
            if TripStatus(trip.status) not in OPEN_TRIP_STATUSES:
                raise ValidationFailed("Only open trips can be edited")

            if departure_time is not None:
                departure_time = time_policy.as_utc(departure_time)
                gate = time_policy.can_modify_departure_time(
                    trip.original_departure_time,
                    trip.departure_time,
                    departure_time,
                    await reservations.has_confirmed(trip.id),
                    now,
                )
                if not gate.is_allowed:
                    raise ValidationFailed(
                        gate.reason,
                        details={"hours_until_departure": round(gate.hours_until_departure, 2)},
                    )
                if departure_time != time_policy.as_utc(trip.departure_time):
                    trip.departure_time = departure_time
                    notify = await reservations.list_seat_holder_ids(trip.id)

            if auto_approve_reservations is not None:
                trip.auto_approve_reservations = auto_approve_reservations
            if allow_waitlist is not None:
                trip.allow_waitlist = allow_waitlist
            if additional_notes is not None:
                trip.additional_notes = additional_notes
            await session.flush()
            await session.refresh(trip)

        logger.info("Trip %s preferences updated", trip_id)
        if notify:
            when = departure_time.strftime("%Y-%m-%d %H:%M UTC")
            await self._dispatch(
                Notice(
                    passenger_id,
                    "Departure time changed",
                    f"Your trip from {trip.origin_city} to {trip.destination_city} "
                    f"now departs at {when}.",
                    event_type="TRIP_UPDATED",
                    link=_link(trip_id),
                )
                for passenger_id in notify
            )
        await self._audit(
            driver_id,
            AuditAction.TRIP_UPDATED,
            {"trip_id": trip_id, "departure_changed": bool(notify)},
        )
        return trip

    async def cancel_trip(
        self, driver_id: int, trip_id: int, reason: Optional[str] = None
    ) -> TripCancellationOutcome:
        """Cancel the whole trip; every active passenger gets the driver tier.

        Paid passengers are refunded the full trip price (fee retained).
        The post-approval protection window does not apply here: it guards
        individual removals only.
        """
        now = self.now()
        notices: list[Notice] = []
        refunds = 0
        async with self.session_factory() as session, session.begin():
            cancellations = CancellationRepository(session)
            trip = await self._load_for_driver(session, trip_id, driver_id)
            if TripStatus(trip.status) not in OPEN_TRIP_STATUSES:
                raise ValidationFailed(
                    f"Trip cannot be cancelled in status {TripStatus(trip.status).value}"
                )

            decision = self.policy.for_driver(trip.departure_time, now)
            affected = await ReservationRepository(session).list_for_trip(
                trip.id, ACTIVE_RESERVATION_STATUSES
            )
            for reservation in affected:
                reservation.transition_to(decision.status)
                refund = await self._settle_payment(
                    session, reservation, decision.refund_percentage, now
                )
                await cancellations.record(
                    cancelled_by=CancelledBy.DRIVER,
                    reason=reason,
                    hours_before_departure=decision.hours_before_departure,
                    refund_percentage=decision.refund_percentage,
                    reservation_id=reservation.id,
                    trip_id=trip.id,
                )
                message = (
                    f"The driver cancelled the trip from {trip.origin_city} "
                    f"to {trip.destination_city}."
                )
                if refund is not None:
                    refunds += 1
                    message += f" A refund of {refund.refund_amount:.2f} is being processed."
                notices.append(
                    Notice(
                        reservation.passenger_id,
                        "Trip cancelled",
                        message,
                        event_type="TRIP_CANCELLED",
                        link=_link(trip.id),
                    )
                )

            await cancellations.record(
                cancelled_by=CancelledBy.DRIVER,
                reason=reason,
                hours_before_departure=decision.hours_before_departure,
                refund_percentage=decision.refund_percentage,
                trip_id=trip.id,
            )
            trip.status = TripStatus.CANCELLED
            trip.remaining_seats = trip.offered_seats
            trip.is_full = False

        logger.info(
            "Trip %s cancelled by driver %s: %d reservation(s), %d refund(s)",
            trip_id,
            driver_id,
            len(affected),
            refunds,
        )
        await self._dispatch(notices)
        await self._audit(
            driver_id,
            AuditAction.TRIP_CANCELLED,
            {"trip_id": trip_id, "reservations": len(affected), "refunds": refunds},
        )
        return TripCancellationOutcome(trip_id, len(affected), refunds)

    async def complete_trip(
        self, trip_id: int, *, is_automated: bool = False, actor_id: Optional[int] = None
    ) -> TripCompletionOutcome:
        """Close an ACTIVE trip after departure.

        Automated completion waits until 24 h after departure.  Confirmed
        passengers complete; unpaid approvals expire; anything still
        awaiting a decision is rejected.
        """
        now = self.now()
        counts = dict.fromkeys(
            (ReservationStatus.COMPLETED, ReservationStatus.EXPIRED, ReservationStatus.REJECTED),
            0,
        )
        notices: list[Notice] = []
        async with self.session_factory() as session, session.begin():
            if is_automated:
                trip = await TripRepository(session).get_for_update(trip_id)
                if trip is None:
                    raise NotFound("Trip not found", details={"trip_id": trip_id})
            else:
                trip = await self._load_for_driver(session, trip_id, actor_id)

            if trip.status != TripStatus.ACTIVE:
                raise ValidationFailed(
                    "Only active trips can be completed",
                    details={"status": TripStatus(trip.status).value},
                )
            since_departure = -time_policy.hours_until_departure(trip.departure_time, now)
            if is_automated and since_departure < time_policy.TRIP_COMPLETION_GRACE_HOURS:
                raise ValidationFailed("Trip departed less than 24 hours ago")
            if since_departure < 0:
                raise ValidationFailed("Trip has not departed yet")

            reservations = await ReservationRepository(session).list_for_trip(
                trip.id, ACTIVE_RESERVATION_STATUSES
            )
            for reservation in reservations:
                if reservation.status == ReservationStatus.CONFIRMED:
                    target = ReservationStatus.COMPLETED
                elif reservation.status == ReservationStatus.APPROVED:
                    target = ReservationStatus.EXPIRED
                    await self._settle_payment(session, reservation, 0.0, now)
                else:
                    target = ReservationStatus.REJECTED
                reservation.transition_to(target)
                counts[target] += 1
                if target == ReservationStatus.COMPLETED:
                    notices.append(
                        Notice(
                            reservation.passenger_id,
                            "Trip completed",
                            f"Your trip from {trip.origin_city} to {trip.destination_city} "
                            "is complete.",
                            event_type="TRIP_COMPLETED",
                            link=_link(trip.id),
                        )
                    )

            trip.status = TripStatus.COMPLETED
            trip.remaining_seats = trip.offered_seats
            trip.is_full = False
            driver_id = trip.driver_id

        outcome = TripCompletionOutcome(
            trip_id,
            counts[ReservationStatus.COMPLETED],
            counts[ReservationStatus.EXPIRED],
            counts[ReservationStatus.REJECTED],
        )
        logger.info(
            "Trip %s completed (%s): %d completed, %d expired, %d rejected",
            trip_id,
            "automated" if is_automated else "manual",
            outcome.completed,
            outcome.expired,
            outcome.rejected,
        )
        notices.append(
            Notice(
                driver_id,
                "Trip completed",
                f"Your trip was marked completed with {outcome.completed} passenger(s).",
                event_type="TRIP_COMPLETED",
                link=_link(trip_id),
            )
        )
        await self._dispatch(notices)
        await self._audit(
            SYSTEM_ACTOR if is_automated else actor_id,
            AuditAction.TRIP_COMPLETED,
            {
                "trip_id": trip_id,
                "completed": outcome.completed,
                "expired": outcome.expired,
                "rejected": outcome.rejected,
            },
        )
        return outcome

    async def list_completable_trip_ids(self) -> list[int]:
        cutoff = self.now() - timedelta(hours=time_policy.TRIP_COMPLETION_GRACE_HOURS)
        async with self.session_factory() as session:
            trips = await TripRepository(session).get_completable(cutoff)
            return [trip.id for trip in trips]

    async def reconcile_trip_seats(
        self, trip_id: int, actor_id: Optional[int] = None
    ) -> seat_ledger.SeatSnapshot:
        """Recompute ``remaining_seats`` / ``is_full`` from the reservations."""
        async with self.session_factory() as session, session.begin():
            trips = TripRepository(session)
            trip = await trips.get_by_id(trip_id)
            if trip is None:
                raise NotFound("Trip not found", details={"trip_id": trip_id})
            before = trip.remaining_seats
            snap = await trips.reconcile_seats(trip_id)

        if before != snap.available_seats:
            logger.warning(
                "Trip %s seat drift repaired: %d -> %d",
                trip_id,
                before,
                snap.available_seats,
            )
        await self._audit(
            actor_id if actor_id is not None else SYSTEM_ACTOR,
            AuditAction.TRIP_SEATS_RECONCILED,
            {
                "trip_id": trip_id,
                "remaining_before": before,
                "remaining_after": snap.available_seats,
            },
        )
        return snap

    @staticmethod
    async def _load_for_driver(session, trip_id: int, driver_id: Optional[int]) -> TripModel:
        trip = await TripRepository(session).get_for_update(trip_id)
        if trip is None:
            raise NotFound("Trip not found", details={"trip_id": trip_id})
        if trip.driver_id != driver_id:
            raise AuthorizationFailed("Only the trip driver can manage this trip")
        return trip
