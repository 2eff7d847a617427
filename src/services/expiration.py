"""
Expiration Sweeper
==================

The system's timeout mechanism: there is no per-request timer, so these
jobs bound how long an overdue reservation can linger.

Jobs
----
1. **Unpaid reservations** -- ``APPROVED`` with a ``PENDING`` payment on a
   trip departing within 2 h: reservation ``EXPIRED``, payment
   ``CANCELLED``, seats released.  One transaction per reservation; a
   failing item is logged and counted, never raised.
2. **Pending approvals** -- ``PENDING_APPROVAL`` on active trips departing
   within 2 h are bulk-rejected (automated rejection).
3. **Completed trips** -- active trips more than 24 h past departure are
   completed.

Every job re-checks status inside its transaction, so overlapping runs
(or a run racing a passenger action) are harmless.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from src.domain import time_policy
from src.domain.enums import PaymentStatus, ReservationStatus, TripStatus
from src.domain.errors import NotFound
from src.infrastructure.audit import SYSTEM_ACTOR, AuditAction
from src.infrastructure.notifications import Notice
from src.infrastructure.repositories import ReservationRepository, TripRepository
from src.services.base import BaseService
from src.services.reservations import ReservationService
from src.services.trips import TripService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UnpaidSweepResult:
    checked_count: int
    expired_count: int
    failed_count: int


@dataclass(frozen=True)
class PendingApprovalSweepResult:
    processed_count: int
    rejected_count: int


@dataclass(frozen=True)
class TripCompletionSweepResult:
    checked_count: int
    completed_count: int
    failed_count: int


class ExpirationSweeper(BaseService):
    def __init__(self, session_factory, notifier, audit, **kwargs):
        super().__init__(session_factory, notifier, audit, **kwargs)
        self.reservations = ReservationService(session_factory, notifier, audit, **kwargs)
        self.trips = TripService(session_factory, notifier, audit, **kwargs)

    async def sweep_expired_unpaid(self) -> UnpaidSweepResult:
        now = self.now()
        window_end = now + timedelta(hours=time_policy.UNPAID_EXPIRY_HOURS)
        async with self.session_factory() as session:
            candidates = await ReservationRepository(session).list_unpaid_near_departure(
                now, window_end
            )
            candidate_ids = [reservation.id for reservation in candidates]

        expired = failed = 0
        for reservation_id in candidate_ids:
            try:
                notice = await self._expire_unpaid(reservation_id, now)
            except Exception:
                failed += 1
                logger.exception("Failed to expire reservation %s", reservation_id)
                continue
            if notice is None:
                continue
            expired += 1
            await self._dispatch([notice])
            await self._audit(
                SYSTEM_ACTOR,
                AuditAction.UNPAID_RESERVATION_EXPIRED,
                {"reservation_id": reservation_id},
            )

        result = UnpaidSweepResult(len(candidate_ids), expired, failed)
        if candidate_ids:
            logger.info(
                "Unpaid sweep: %d checked, %d expired, %d failed",
                result.checked_count,
                result.expired_count,
                result.failed_count,
            )
        return result

    async def _expire_unpaid(self, reservation_id: int, now: datetime) -> Optional[Notice]:
        async with self.session_factory() as session, session.begin():
            reservation = await ReservationRepository(session).get_aggregate(
                reservation_id, for_update=True
            )
            if reservation is None or not reservation.can_transition_to(
                ReservationStatus.EXPIRED
            ):
                return None
            payment = reservation.payment
            trip = reservation.trip
            if payment is None or trip.status not in (TripStatus.PENDING, TripStatus.ACTIVE):
                return None

            verdict = time_policy.should_expire_unpaid_reservation(
                trip.departure_time, payment.status, now
            )
            if not verdict.is_allowed:
                return None

            reservation.transition_to(ReservationStatus.EXPIRED)
            payment.transition_to(PaymentStatus.CANCELLED)
            await TripRepository(session).release_seats(trip.id, reservation.seats_reserved)

            logger.info(
                "Reservation %s expired unpaid (%.1f h before departure), %d seat(s) released",
                reservation_id,
                verdict.hours_until_departure,
                reservation.seats_reserved,
            )
            return Notice(
                reservation.passenger_id,
                "Reservation expired",
                f"Your reservation for the trip from {trip.origin_city} to "
                f"{trip.destination_city} expired because the payment was not completed.",
                event_type="RESERVATION_EXPIRED",
                link=f"/reservations/{reservation_id}",
            )

    async def sweep_expired_pending_approvals(self) -> PendingApprovalSweepResult:
        now = self.now()
        async with self.session_factory() as session:
            ids = await ReservationRepository(session).list_pending_approval_ids(
                now + timedelta(hours=time_policy.PENDING_APPROVAL_EXPIRY_HOURS)
            )
        if not ids:
            return PendingApprovalSweepResult(0, 0)

        try:
            outcome = await self.reservations.reject_pending_reservations(
                ids, is_automated=True
            )
        except NotFound:
            # Another run got there first.
            return PendingApprovalSweepResult(len(ids), 0)
        return PendingApprovalSweepResult(len(ids), outcome.rejected_count)

    async def complete_expired_trips(self) -> TripCompletionSweepResult:
        trip_ids = await self.trips.list_completable_trip_ids()
        completed = failed = 0
        for trip_id in trip_ids:
            try:
                await self.trips.complete_trip(trip_id, is_automated=True)
            except Exception:
                failed += 1
                logger.exception("Failed to complete trip %s", trip_id)
                continue
            completed += 1
        return TripCompletionSweepResult(len(trip_ids), completed, failed)
