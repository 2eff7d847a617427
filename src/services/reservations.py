"""
Reservation orchestrator
========================

Per-action entry points driving the reservation state machine:

* ``create_reservation``   -- passenger claims seats (or joins the waitlist)
* ``approve_reservation``  -- driver accepts a pending request
* ``reject_pending_reservations`` -- bulk rejection, manual or automated
* ``cancel_reservation``   -- passenger cancels, refund tier applied
* ``remove_passenger``     -- driver removes an approved / confirmed passenger
* ``promote_waitlisted``   -- driver pulls a waitlisted passenger in
* ``mark_no_show``         -- driver records a no-show after departure

Seat inventory
--------------
Seats are taken at creation through ``TripRepository.try_reserve_seats``
(conditional decrement) so two passengers racing for the last seat cannot
both succeed.  Every transition out of a seat-holding status releases the
seats in the same transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from src.domain import time_policy
from src.domain.enums import (
    OPEN_PAYMENT_STATUSES,
    RE_RESERVABLE_STATUSES,
    CancelledBy,
    PaymentStatus,
    ReservationStatus,
    TripStatus,
)
from src.domain.errors import (
    AuthenticationFailed,
    AuthorizationFailed,
    ConflictFailed,
    NotFound,
    ValidationFailed,
)
from src.domain.cancellation import ensure_cancellable
from src.domain.seat_ledger import holds_capacity
from src.infrastructure.audit import SYSTEM_ACTOR, AuditAction
from src.infrastructure.models import ReservationModel, TripModel
from src.infrastructure.notifications import Notice
from src.infrastructure.repositories import (
    CancellationRepository,
    PaymentRepository,
    ReservationRepository,
    TripRepository,
)
from src.services.base import BaseService

logger = logging.getLogger(__name__)

OPEN_TRIP_STATUSES = (TripStatus.PENDING, TripStatus.ACTIVE)


@dataclass(frozen=True)
class CancellationOutcome:
    reservation_id: int
    status: ReservationStatus
    refund_percentage: float
    refund_processed: bool
    refund_amount: float = 0.0


@dataclass(frozen=True)
class RejectionOutcome:
    rejected_count: int
    reservation_ids: tuple[int, ...] = ()


@dataclass(frozen=True)
class _Rejected:
    reservation_id: int
    trip_id: int
    passenger_id: int
    seats: int
    route: str


def _route(trip: TripModel) -> str:
    return f"{trip.origin_city} to {trip.destination_city}"


def _link(reservation_id: int) -> str:
    return f"/reservations/{reservation_id}"


class ReservationService(BaseService):
    # ── Reads ─────────────────────────────────────────────────────────

    async def get_reservation(
        self, reservation_id: int, viewer_id: Optional[int] = None, is_admin: bool = False
    ) -> ReservationModel:
        async with self.session_factory() as session:
            reservation = await ReservationRepository(session).get_aggregate(reservation_id)
        if reservation is None:
            raise NotFound("Reservation not found", details={"reservation_id": reservation_id})
        if viewer_id is not None and not is_admin:
            if viewer_id not in (reservation.passenger_id, reservation.trip.driver_id):
                raise AuthorizationFailed("You cannot view this reservation")
        return reservation

    # ── Create ────────────────────────────────────────────────────────

    async def create_reservation(
        self,
        passenger_id: int,
        trip_id: int,
        seats_reserved: int,
        total_price: float,
        message: Optional[str] = None,
    ) -> ReservationModel:
        self._validate_request(seats_reserved, total_price, message)
        now = self.now()

        async with self.session_factory() as session, session.begin():
            trips = TripRepository(session)
            reservations = ReservationRepository(session)

            trip = await trips.get_for_update(trip_id)
            if trip is None:
                raise NotFound("Trip not found", details={"trip_id": trip_id})
            if trip.driver_id == passenger_id:
                raise ValidationFailed("Drivers cannot reserve seats on their own trip")
            if TripStatus(trip.status) not in OPEN_TRIP_STATUSES:
                raise ValidationFailed(
                    "Trip is not open for reservations",
                    details={"trip_status": TripStatus(trip.status).value},
                )

            gate = time_policy.can_create_reservation(trip.departure_time, now)
            if not gate.is_allowed:
                raise ValidationFailed(
                    time_policy.format_time_restriction_error(gate),
                    details={"hours_until_departure": round(gate.hours_until_departure, 2)},
                )

            existing = await reservations.get_for_trip_and_passenger(trip.id, passenger_id)
            if existing is not None and existing.status not in RE_RESERVABLE_STATUSES:
                raise ConflictFailed(
                    "You already have a reservation for this trip",
                    details={
                        "reservation_id": existing.id,
                        "status": ReservationStatus(existing.status).value,
                    },
                )

            status = (
                ReservationStatus.APPROVED
                if trip.auto_approve_reservations
                else ReservationStatus.PENDING_APPROVAL
            )
            if not await trips.try_reserve_seats(trip.id, seats_reserved):
                if not trip.allow_waitlist:
                    raise ValidationFailed(
                        "No seats available",
                        details={
                            "requested": seats_reserved,
                            "available": trip.remaining_seats,
                        },
                    )
                status = ReservationStatus.WAITLISTED

            if existing is None:
                reservation = await reservations.create(
                    ReservationModel(
                        trip_id=trip.id,
                        passenger_id=passenger_id,
                        seats_reserved=seats_reserved,
                        total_price=total_price,
                        message=message,
                        status=status,
                        reserved_at=now,
                    )
                )
            else:
                reservation = existing
                previous = await PaymentRepository(session).supersede_current(
                    reservation, now
                )
                if previous is not None:
                    logger.info(
                        "Payment %s (%s) superseded by re-reservation %s",
                        previous.id,
                        PaymentStatus(previous.status).value,
                        reservation.id,
                    )
                reservation.transition_to(status)
                reservation.seats_reserved = seats_reserved
                reservation.total_price = total_price
                reservation.message = message
                reservation.reserved_at = now
                reservation.approved_at = None

            if status == ReservationStatus.APPROVED:
                reservation.approved_at = now
                await self._open_payment(session, reservation, trip)

            driver_id = trip.driver_id
            route = _route(trip)

        logger.info(
            "Reservation %s on trip %s: %d seat(s), %s",
            reservation.id,
            trip_id,
            seats_reserved,
            status.value,
        )

        titles = {
            ReservationStatus.PENDING_APPROVAL: "New reservation request",
            ReservationStatus.APPROVED: "New confirmed passenger",
            ReservationStatus.WAITLISTED: "New waitlist request",
        }
        notices = [
            Notice(
                driver_id,
                titles[status],
                f"A passenger reserved {seats_reserved} seat(s) on your trip from {route}.",
                event_type="RESERVATION_CREATED",
                link=_link(reservation.id),
                extra={"reservation_id": reservation.id, "status": status.value},
            )
        ]
        if status == ReservationStatus.APPROVED:
            notices.append(
                Notice(
                    passenger_id,
                    "Reservation approved",
                    f"Your seat on the trip from {route} is approved. "
                    "Complete the payment to confirm it.",
                    event_type="RESERVATION_APPROVED",
                    link=_link(reservation.id),
                )
            )
        await self._dispatch(notices)
        await self._audit(
            passenger_id,
            AuditAction.RESERVATION_CREATED,
            {
                "reservation_id": reservation.id,
                "trip_id": trip_id,
                "seats_reserved": seats_reserved,
                "status": status.value,
                "reused": existing is not None,
            },
        )
        return reservation

    def _validate_request(
        self, seats_reserved: int, total_price: float, message: Optional[str]
    ) -> None:
        max_seats = self.settings.max_seats_per_reservation
        if not 1 <= seats_reserved <= max_seats:
            raise ValidationFailed(
                f"Seats reserved must be between 1 and {max_seats}",
                details={"seats_reserved": seats_reserved},
            )
        if total_price <= 0:
            raise ValidationFailed(
                "Total price must be greater than zero",
                details={"total_price": total_price},
            )
        max_length = self.settings.reservation_message_max_length
        if message is not None and len(message) > max_length:
            raise ValidationFailed(
                f"Message cannot exceed {max_length} characters",
                details={"length": len(message)},
            )

    # ── Approve / reject ──────────────────────────────────────────────

    async def approve_reservation(
        self, driver_id: int, reservation_id: int
    ) -> ReservationModel:
        now = self.now()
        async with self.session_factory() as session, session.begin():
            reservation = await self._load_for_driver(session, reservation_id, driver_id)
            trip = reservation.trip

            if reservation.status != ReservationStatus.PENDING_APPROVAL:
                raise ValidationFailed(
                    "Only reservations pending approval can be approved",
                    details={"status": ReservationStatus(reservation.status).value},
                )
            if TripStatus(trip.status) not in OPEN_TRIP_STATUSES:
                raise ValidationFailed("Trip is no longer open")
            gate = time_policy.can_approve_reservation(trip.departure_time, now)
            if not gate.is_allowed:
                raise ValidationFailed(
                    time_policy.format_time_restriction_error(gate),
                    details={"hours_until_departure": round(gate.hours_until_departure, 2)},
                )

            reservation.transition_to(ReservationStatus.APPROVED)
            reservation.approved_at = now
            payment = await self._open_payment(session, reservation, trip)
            route = _route(trip)

        logger.info("Reservation %s approved by driver %s", reservation_id, driver_id)
        await self._dispatch(
            [
                Notice(
                    reservation.passenger_id,
                    "Reservation approved",
                    f"Your reservation for the trip from {route} was approved. "
                    f"Pay {payment.total_amount:.2f} {payment.currency} to confirm your seat.",
                    event_type="RESERVATION_APPROVED",
                    link=_link(reservation_id),
                    extra={"payment_id": payment.id},
                )
            ]
        )
        await self._audit(
            driver_id,
            AuditAction.RESERVATION_APPROVED,
            {"reservation_id": reservation_id, "payment_id": payment.id},
        )
        return reservation

    async def reject_pending_reservations(
        self,
        reservation_ids: Sequence[int],
        *,
        is_automated: bool = False,
        actor_id: Optional[int] = None,
    ) -> RejectionOutcome:
        """Reject ``PENDING_APPROVAL`` reservations in one transaction.

        Automated runs (the pending-approval sweep) only touch active trips
        departing within the 2 h window; one reservation outside it fails
        the whole batch.  Manual runs require the actor to drive every
        trip involved.
        """
        ids = list(dict.fromkeys(reservation_ids))
        if not ids:
            raise ValidationFailed("No reservations specified")
        if not is_automated and actor_id is None:
            raise AuthenticationFailed()

        now = self.now()
        rejected: list[_Rejected] = []
        async with self.session_factory() as session, session.begin():
            trips = TripRepository(session)
            pending = await ReservationRepository(session).get_pending_by_ids(ids)
            if not pending:
                raise NotFound(
                    "No pending reservations found", details={"reservation_ids": ids}
                )

            for reservation in pending:
                trip = reservation.trip
                if is_automated:
                    hours = time_policy.hours_until_departure(trip.departure_time, now)
                    if (
                        trip.status != TripStatus.ACTIVE
                        or hours > time_policy.PENDING_APPROVAL_EXPIRY_HOURS
                    ):
                        raise ValidationFailed(
                            "Automated rejection only applies to active trips "
                            "departing within 2 hours",
                            details={
                                "reservation_id": reservation.id,
                                "trip_id": trip.id,
                                "hours_until_departure": round(hours, 2),
                            },
                        )
                elif trip.driver_id != actor_id:
                    raise AuthorizationFailed(
                        "Only the trip driver can reject reservations",
                        details={"reservation_id": reservation.id},
                    )

            for reservation in pending:
                reservation.transition_to(ReservationStatus.REJECTED)
                await trips.release_seats(reservation.trip_id, reservation.seats_reserved)
                rejected.append(
                    _Rejected(
                        reservation.id,
                        reservation.trip_id,
                        reservation.passenger_id,
                        reservation.seats_reserved,
                        _route(reservation.trip),
                    )
                )

        actor = SYSTEM_ACTOR if is_automated else actor_id
        logger.info(
            "Rejected %d pending reservation(s) (%s)",
            len(rejected),
            "automated" if is_automated else f"driver {actor_id}",
        )
        for item in rejected:
            details = {
                "reservation_id": item.reservation_id,
                "trip_id": item.trip_id,
                "seats_released": item.seats,
                "automated": is_automated,
            }
            try:
                await self.notifier.send(
                    Notice(
                        item.passenger_id,
                        "Reservation rejected",
                        f"Your reservation for the trip from {item.route} was not approved.",
                        event_type="RESERVATION_REJECTED",
                        link=_link(item.reservation_id),
                    )
                )
                await self._audit(actor, AuditAction.PENDING_RESERVATION_REJECTED, details)
            except Exception:
                logger.exception(
                    "Post-rejection side effects failed for reservation %s",
                    item.reservation_id,
                )
                await self._audit(
                    actor, AuditAction.PENDING_RESERVATION_REJECTED, details, status="FAILED"
                )

        return RejectionOutcome(
            len(rejected), tuple(item.reservation_id for item in rejected)
        )

    # ── Cancel / remove ───────────────────────────────────────────────

    async def cancel_reservation(
        self, passenger_id: int, reservation_id: int, reason: Optional[str] = None
    ) -> CancellationOutcome:
        now = self.now()
        async with self.session_factory() as session, session.begin():
            reservation = await ReservationRepository(session).get_aggregate(
                reservation_id, for_update=True
            )
            if reservation is None:
                raise NotFound("Reservation not found", details={"reservation_id": reservation_id})
            if reservation.passenger_id != passenger_id:
                raise AuthorizationFailed("You can only cancel your own reservations")
            trip = reservation.trip
            ensure_cancellable(reservation.status, trip.status)

            decision = self.policy.for_passenger(
                trip.departure_time, now, reservation.reserved_at
            )
            held = holds_capacity(reservation.status)
            reservation.transition_to(decision.status)
            refund = await self._settle_payment(
                session, reservation, decision.refund_percentage, now
            )
            await CancellationRepository(session).record(
                cancelled_by=CancelledBy.PASSENGER,
                reason=reason,
                hours_before_departure=decision.hours_before_departure,
                refund_percentage=decision.refund_percentage,
                reservation_id=reservation.id,
                trip_id=trip.id,
            )
            if held:
                await TripRepository(session).release_seats(
                    trip.id, reservation.seats_reserved
                )
            driver_id = trip.driver_id
            route = _route(trip)

        outcome = CancellationOutcome(
            reservation_id=reservation_id,
            status=decision.status,
            refund_percentage=decision.refund_percentage,
            refund_processed=refund is not None,
            refund_amount=refund.refund_amount if refund is not None else 0.0,
        )
        logger.info(
            "Reservation %s cancelled by passenger: %s (%.1f h before departure)",
            reservation_id,
            decision.status.value,
            decision.hours_before_departure,
        )

        notices = [
            Notice(
                driver_id,
                "Reservation cancelled",
                f"A passenger cancelled {reservation.seats_reserved} seat(s) "
                f"on your trip from {route}.",
                event_type="RESERVATION_CANCELLED",
                link=_link(reservation_id),
            )
        ]
        if refund is not None:
            notices.append(
                Notice(
                    passenger_id,
                    "Refund in progress",
                    f"A refund of {refund.refund_amount:.2f} "
                    f"({decision.refund_percentage:g}%) is being processed.",
                    event_type="REFUND_CREATED",
                    link=_link(reservation_id),
                )
            )
        await self._dispatch(notices)
        await self._audit(
            passenger_id,
            AuditAction.RESERVATION_CANCELLED,
            {
                "reservation_id": reservation_id,
                "status": decision.status.value,
                "refund_percentage": decision.refund_percentage,
                "refund_processed": outcome.refund_processed,
            },
        )
        return outcome

    async def remove_passenger(
        self, driver_id: int, reservation_id: int, reason: Optional[str] = None
    ) -> CancellationOutcome:
        """Driver-initiated cancellation of one approved or confirmed passenger.

        Two gates apply: the post-approval protection window and the usual
        cancellability checks.  Paid passengers get the full trip price
        back; the service fee is retained.
        """
        now = self.now()
        async with self.session_factory() as session, session.begin():
            reservation = await self._load_for_driver(session, reservation_id, driver_id)
            trip = reservation.trip

            if reservation.status not in (
                ReservationStatus.APPROVED,
                ReservationStatus.CONFIRMED,
            ):
                raise ValidationFailed(
                    "Only approved or confirmed passengers can be removed",
                    details={"status": ReservationStatus(reservation.status).value},
                )
            ensure_cancellable(reservation.status, trip.status)

            gate = time_policy.can_driver_remove_approved_passenger(
                trip.departure_time, reservation.approved_at, now
            )
            if not gate.is_allowed:
                raise ValidationFailed(
                    time_policy.format_time_restriction_error(gate),
                    details={"hours_until_departure": round(gate.hours_until_departure, 2)},
                )

            decision = self.policy.for_driver(trip.departure_time, now)
            reservation.transition_to(decision.status)
            refund = await self._settle_payment(
                session, reservation, decision.refund_percentage, now
            )
            await CancellationRepository(session).record(
                cancelled_by=CancelledBy.DRIVER,
                reason=reason,
                hours_before_departure=decision.hours_before_departure,
                refund_percentage=decision.refund_percentage,
                reservation_id=reservation.id,
                trip_id=trip.id,
            )
            await TripRepository(session).release_seats(trip.id, reservation.seats_reserved)
            route = _route(trip)

        logger.info(
            "Passenger %s removed from trip %s by driver %s (%s)",
            reservation.passenger_id,
            reservation.trip_id,
            driver_id,
            decision.status.value,
        )
        message = f"The driver removed you from the trip from {route}."
        if refund is not None:
            message += f" A refund of {refund.refund_amount:.2f} is being processed."
        await self._dispatch(
            [
                Notice(
                    reservation.passenger_id,
                    "Removed from trip",
                    message,
                    event_type="PASSENGER_REMOVED",
                    link=_link(reservation_id),
                    extra={"reason": reason} if reason else {},
                )
            ]
        )
        await self._audit(
            driver_id,
            AuditAction.PASSENGER_REMOVED,
            {
                "reservation_id": reservation_id,
                "status": decision.status.value,
                "refund_processed": refund is not None,
            },
        )
        return CancellationOutcome(
            reservation_id=reservation_id,
            status=decision.status,
            refund_percentage=decision.refund_percentage,
            refund_processed=refund is not None,
            refund_amount=refund.refund_amount if refund is not None else 0.0,
        )

    # ── Waitlist / no-show ────────────────────────────────────────────

    async def promote_waitlisted(
        self, driver_id: int, reservation_id: int
    ) -> ReservationModel:
        """Move a waitlisted passenger in once seats are free.

        Never triggered automatically; a freed seat does not promote anyone
        on its own.
        """
        now = self.now()
        async with self.session_factory() as session, session.begin():
            trips = TripRepository(session)
            reservation = await self._load_for_driver(session, reservation_id, driver_id)
            trip = reservation.trip

            if reservation.status != ReservationStatus.WAITLISTED:
                raise ValidationFailed(
                    "Only waitlisted reservations can be promoted",
                    details={"status": ReservationStatus(reservation.status).value},
                )
            if TripStatus(trip.status) not in OPEN_TRIP_STATUSES:
                raise ValidationFailed("Trip is no longer open")
            gate = time_policy.can_approve_reservation(trip.departure_time, now)
            if not gate.is_allowed:
                raise ValidationFailed(time_policy.format_time_restriction_error(gate))
            if not await trips.try_reserve_seats(trip.id, reservation.seats_reserved):
                raise ValidationFailed(
                    "No seats available",
                    details={"requested": reservation.seats_reserved},
                )

            status = (
                ReservationStatus.APPROVED
                if trip.auto_approve_reservations
                else ReservationStatus.PENDING_APPROVAL
            )
            reservation.transition_to(status)
            if status == ReservationStatus.APPROVED:
                reservation.approved_at = now
                await self._open_payment(session, reservation, trip)
            route = _route(trip)

        logger.info("Waitlisted reservation %s promoted to %s", reservation_id, status.value)
        await self._dispatch(
            [
                Notice(
                    reservation.passenger_id,
                    "A seat opened up",
                    f"You moved off the waitlist for the trip from {route}.",
                    event_type="RESERVATION_PROMOTED",
                    link=_link(reservation_id),
                    extra={"status": status.value},
                )
            ]
        )
        await self._audit(
            driver_id,
            AuditAction.RESERVATION_PROMOTED,
            {"reservation_id": reservation_id, "status": status.value},
        )
        return reservation

    async def mark_no_show(self, driver_id: int, reservation_id: int) -> ReservationModel:
        now = self.now()
        async with self.session_factory() as session, session.begin():
            reservation = await self._load_for_driver(session, reservation_id, driver_id)
            trip = reservation.trip

            if time_policy.as_utc(trip.departure_time) > now:
                raise ValidationFailed("No-shows can only be recorded after departure")
            held = holds_capacity(reservation.status)
            reservation.transition_to(ReservationStatus.NO_SHOW)
            payment = reservation.payment
            if payment is not None and payment.status in OPEN_PAYMENT_STATUSES:
                payment.transition_to(PaymentStatus.CANCELLED)
            if held:
                await TripRepository(session).release_seats(trip.id, reservation.seats_reserved)

        logger.info("Reservation %s marked as no-show", reservation_id)
        await self._audit(
            driver_id, AuditAction.PASSENGER_NO_SHOW, {"reservation_id": reservation_id}
        )
        return reservation

    # ── Helpers ───────────────────────────────────────────────────────

    @staticmethod
    async def _load_for_driver(session, reservation_id: int, driver_id: int) -> ReservationModel:
        reservation = await ReservationRepository(session).get_aggregate(
            reservation_id, for_update=True
        )
        if reservation is None:
            raise NotFound("Reservation not found", details={"reservation_id": reservation_id})
        if reservation.trip.driver_id != driver_id:
            raise AuthorizationFailed("Only the trip driver can manage this reservation")
        return reservation
