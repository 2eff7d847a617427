"""
Trip endpoints
==============

POST  /api/v1/trips                     -- publish a trip
GET   /api/v1/trips/{trip_id}           -- trip details
GET   /api/v1/trips/{trip_id}/seats     -- seat ledger snapshot
PATCH /api/v1/trips/{trip_id}/preferences -- auto-approve / waitlist / departure
POST  /api/v1/trips/{trip_id}/cancel    -- driver cancels the whole trip
POST  /api/v1/trips/{trip_id}/complete  -- driver closes a departed trip
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request

from src.api.dependencies import get_current_user, get_trip_service
from src.api.middleware import DEFAULT_LIMIT, limiter
from src.api.schemas import (
    Envelope,
    ReasonRequest,
    SeatSnapshotResponse,
    TripCancellationResponse,
    TripCompletionResponse,
    TripCreateRequest,
    TripPreferencesRequest,
    TripResponse,
    ok,
)
from src.infrastructure.models import UserModel
from src.services.trips import TripService

router = APIRouter(prefix="/trips", tags=["trips"])


@router.post(
    "",
    status_code=201,
    response_model=Envelope[TripResponse],
    summary="Publish a trip",
)
@limiter.limit(DEFAULT_LIMIT)
async def create_trip(
    request: Request,
    body: TripCreateRequest,
    user: UserModel = Depends(get_current_user),
    service: TripService = Depends(get_trip_service),
):
    trip = await service.create_trip(
        user.id,
        body.origin_city,
        body.destination_city,
        body.departure_time,
        body.offered_seats,
        body.price_per_seat,
        auto_approve_reservations=body.auto_approve_reservations,
        allow_waitlist=body.allow_waitlist,
        service_fee_percentage=body.service_fee_percentage,
        additional_notes=body.additional_notes,
    )
    return ok(trip, "Trip published")


@router.get("/{trip_id}", response_model=Envelope[TripResponse], summary="Get a trip")
@limiter.limit(DEFAULT_LIMIT)
async def get_trip(
    request: Request,
    trip_id: int,
    service: TripService = Depends(get_trip_service),
):
    return ok(await service.get_trip(trip_id))


@router.get(
    "/{trip_id}/seats",
    response_model=Envelope[SeatSnapshotResponse],
    summary="Seat availability derived from reservations",
)
@limiter.limit(DEFAULT_LIMIT)
async def get_trip_seats(
    request: Request,
    trip_id: int,
    service: TripService = Depends(get_trip_service),
):
    snap = await service.get_seat_snapshot(trip_id)
    return ok(
        SeatSnapshotResponse(
            trip_id=trip_id,
            offered_seats=snap.offered_seats,
            reserved_seats=snap.reserved_seats,
            available_seats=snap.available_seats,
            is_full=snap.is_full,
        )
    )


@router.patch(
    "/{trip_id}/preferences",
    response_model=Envelope[TripResponse],
    summary="Update trip preferences",
    description=(
        "Departure may move at most 6 hours from the originally published "
        "time, and is frozen within 36 hours of departure once a passenger "
        "is confirmed."
    ),
)
@limiter.limit(DEFAULT_LIMIT)
async def update_trip_preferences(
    request: Request,
    trip_id: int,
    body: TripPreferencesRequest,
    user: UserModel = Depends(get_current_user),
    service: TripService = Depends(get_trip_service),
):
    trip = await service.update_trip_preferences(
        user.id,
        trip_id,
        departure_time=body.departure_time,
        auto_approve_reservations=body.auto_approve_reservations,
        allow_waitlist=body.allow_waitlist,
        additional_notes=body.additional_notes,
    )
    return ok(trip, "Trip updated")


@router.post(
    "/{trip_id}/cancel",
    response_model=Envelope[TripCancellationResponse],
    summary="Cancel a trip",
)
@limiter.limit(DEFAULT_LIMIT)
async def cancel_trip(
    request: Request,
    trip_id: int,
    body: Optional[ReasonRequest] = None,
    user: UserModel = Depends(get_current_user),
    service: TripService = Depends(get_trip_service),
):
    outcome = await service.cancel_trip(user.id, trip_id, body.reason if body else None)
    return ok(outcome, "Trip cancelled")


@router.post(
    "/{trip_id}/complete",
    response_model=Envelope[TripCompletionResponse],
    summary="Mark a departed trip as completed",
)
@limiter.limit(DEFAULT_LIMIT)
async def complete_trip(
    request: Request,
    trip_id: int,
    user: UserModel = Depends(get_current_user),
    service: TripService = Depends(get_trip_service),
):
    outcome = await service.complete_trip(trip_id, actor_id=user.id)
    return ok(outcome, "Trip completed")
