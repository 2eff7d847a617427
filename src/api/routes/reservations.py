"""
Reservation endpoints
=====================

POST /api/v1/reservations                    -- reserve seats on a trip
GET  /api/v1/reservations/{id}               -- reservation with its payment
POST /api/v1/reservations/{id}/cancel        -- passenger cancels
POST /api/v1/reservations/{id}/approve       -- driver approves
POST /api/v1/reservations/{id}/remove        -- driver removes a passenger
POST /api/v1/reservations/{id}/promote       -- driver promotes from the waitlist
POST /api/v1/reservations/{id}/no-show       -- driver records a no-show
POST /api/v1/reservations/reject             -- driver bulk-rejects pending requests
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request

from src.api.dependencies import get_current_user, get_reservation_service
from src.api.middleware import DEFAULT_LIMIT, limiter
from src.api.schemas import (
    BulkRejectRequest,
    CancellationResponse,
    Envelope,
    ReasonRequest,
    RejectionResponse,
    ReservationCreateRequest,
    ReservationDetailResponse,
    ReservationResponse,
    ok,
)
from src.infrastructure.models import UserModel
from src.services.reservations import ReservationService

router = APIRouter(prefix="/reservations", tags=["reservations"])


@router.post(
    "",
    status_code=201,
    response_model=Envelope[ReservationResponse],
    summary="Reserve seats on a trip",
    responses={
        409: {"description": "An active reservation already exists for this trip."},
        422: {"description": "No seats, closed trip, or inside the 3 h cutoff."},
    },
)
@limiter.limit(DEFAULT_LIMIT)
async def create_reservation(
    request: Request,
    body: ReservationCreateRequest,
    user: UserModel = Depends(get_current_user),
    service: ReservationService = Depends(get_reservation_service),
):
    reservation = await service.create_reservation(
        user.id, body.trip_id, body.seats_reserved, body.total_price, body.message
    )
    return ok(reservation, "Reservation created")


# Registered before "/{reservation_id}/..." so "reject" is never taken for an id.
@router.post(
    "/reject",
    response_model=Envelope[RejectionResponse],
    summary="Reject pending reservations",
)
@limiter.limit(DEFAULT_LIMIT)
async def reject_reservations(
    request: Request,
    body: BulkRejectRequest,
    user: UserModel = Depends(get_current_user),
    service: ReservationService = Depends(get_reservation_service),
):
    outcome = await service.reject_pending_reservations(
        body.reservation_ids, is_automated=False, actor_id=user.id
    )
    return ok(outcome, f"{outcome.rejected_count} reservation(s) rejected")


@router.get(
    "/{reservation_id}",
    response_model=Envelope[ReservationDetailResponse],
    summary="Get a reservation",
)
@limiter.limit(DEFAULT_LIMIT)
async def get_reservation(
    request: Request,
    reservation_id: int,
    user: UserModel = Depends(get_current_user),
    service: ReservationService = Depends(get_reservation_service),
):
    reservation = await service.get_reservation(
        reservation_id, viewer_id=user.id, is_admin=user.is_admin
    )
    return ok(reservation)


@router.post(
    "/{reservation_id}/cancel",
    response_model=Envelope[CancellationResponse],
    summary="Cancel your reservation",
    description=(
        "The refund tier depends on how long before departure the "
        "cancellation happens; the service fee is never refunded."
    ),
)
@limiter.limit(DEFAULT_LIMIT)
async def cancel_reservation(
    request: Request,
    reservation_id: int,
    body: Optional[ReasonRequest] = None,
    user: UserModel = Depends(get_current_user),
    service: ReservationService = Depends(get_reservation_service),
):
    outcome = await service.cancel_reservation(
        user.id, reservation_id, body.reason if body else None
    )
    return ok(outcome, "Reservation cancelled")


@router.post(
    "/{reservation_id}/approve",
    response_model=Envelope[ReservationResponse],
    summary="Approve a pending reservation",
)
@limiter.limit(DEFAULT_LIMIT)
async def approve_reservation(
    request: Request,
    reservation_id: int,
    user: UserModel = Depends(get_current_user),
    service: ReservationService = Depends(get_reservation_service),
):
    reservation = await service.approve_reservation(user.id, reservation_id)
    return ok(reservation, "Reservation approved")


@router.post(
    "/{reservation_id}/remove",
    response_model=Envelope[CancellationResponse],
    summary="Remove an approved or confirmed passenger",
)
@limiter.limit(DEFAULT_LIMIT)
async def remove_passenger(
    request: Request,
    reservation_id: int,
    body: Optional[ReasonRequest] = None,
    user: UserModel = Depends(get_current_user),
    service: ReservationService = Depends(get_reservation_service),
):
    outcome = await service.remove_passenger(
        user.id, reservation_id, body.reason if body else None
    )
    return ok(outcome, "Passenger removed")


@router.post(
    "/{reservation_id}/promote",
    response_model=Envelope[ReservationResponse],
    summary="Promote a waitlisted reservation",
)
@limiter.limit(DEFAULT_LIMIT)
async def promote_waitlisted(
    request: Request,
    reservation_id: int,
    user: UserModel = Depends(get_current_user),
    service: ReservationService = Depends(get_reservation_service),
):
    reservation = await service.promote_waitlisted(user.id, reservation_id)
    return ok(reservation, "Reservation promoted")


@router.post(
    "/{reservation_id}/no-show",
    response_model=Envelope[ReservationResponse],
    summary="Mark a passenger as no-show",
)
@limiter.limit(DEFAULT_LIMIT)
async def mark_no_show(
    request: Request,
    reservation_id: int,
    user: UserModel = Depends(get_current_user),
    service: ReservationService = Depends(get_reservation_service),
):
    reservation = await service.mark_no_show(user.id, reservation_id)
    return ok(reservation, "Passenger marked as no-show")
