"""
Admin / operations endpoints
============================

GET  /api/v1/admin/health                        -- health check (DB ping)
POST /api/v1/admin/sweeps/unpaid-reservations    -- expire unpaid approvals
POST /api/v1/admin/sweeps/pending-approvals      -- reject stale pending requests
POST /api/v1/admin/sweeps/completed-trips        -- complete departed trips
POST /api/v1/admin/trips/{trip_id}/reconcile-seats -- repair seat inventory

The sweep endpoints let an external scheduler drive the same jobs the
in-process sweeper runs; they are idempotent.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import (
    get_db,
    get_expiration_sweeper,
    get_trip_service,
    require_admin,
)
from src.api.middleware import DEFAULT_LIMIT, limiter
from src.api.schemas import (
    Envelope,
    HealthResponse,
    PendingApprovalSweepResponse,
    SeatSnapshotResponse,
    TripCompletionSweepResponse,
    UnpaidSweepResponse,
    ok,
)
from src.infrastructure.models import UserModel
from src.services.expiration import ExpirationSweeper
from src.services.trips import TripService

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health(db: AsyncSession = Depends(get_db)):
    await db.execute(text("SELECT 1"))
    return HealthResponse()


@router.post(
    "/sweeps/unpaid-reservations",
    response_model=Envelope[UnpaidSweepResponse],
    summary="Expire approved reservations left unpaid near departure",
)
@limiter.limit(DEFAULT_LIMIT)
async def sweep_unpaid_reservations(
    request: Request,
    admin: UserModel = Depends(require_admin),
    sweeper: ExpirationSweeper = Depends(get_expiration_sweeper),
):
    result = await sweeper.sweep_expired_unpaid()
    return ok(result, f"{result.expired_count} reservation(s) expired")


@router.post(
    "/sweeps/pending-approvals",
    response_model=Envelope[PendingApprovalSweepResponse],
    summary="Reject pending reservations near departure",
)
@limiter.limit(DEFAULT_LIMIT)
async def sweep_pending_approvals(
    request: Request,
    admin: UserModel = Depends(require_admin),
    sweeper: ExpirationSweeper = Depends(get_expiration_sweeper),
):
    result = await sweeper.sweep_expired_pending_approvals()
    return ok(result, f"{result.rejected_count} reservation(s) rejected")


@router.post(
    "/sweeps/completed-trips",
    response_model=Envelope[TripCompletionSweepResponse],
    summary="Complete trips more than 24 h past departure",
)
@limiter.limit(DEFAULT_LIMIT)
async def sweep_completed_trips(
    request: Request,
    admin: UserModel = Depends(require_admin),
    sweeper: ExpirationSweeper = Depends(get_expiration_sweeper),
):
    result = await sweeper.complete_expired_trips()
    return ok(result, f"{result.completed_count} trip(s) completed")


@router.post(
    "/trips/{trip_id}/reconcile-seats",
    response_model=Envelope[SeatSnapshotResponse],
    summary="Recompute a trip's seat inventory from its reservations",
)
@limiter.limit(DEFAULT_LIMIT)
async def reconcile_trip_seats(
    request: Request,
    trip_id: int,
    admin: UserModel = Depends(require_admin),
    service: TripService = Depends(get_trip_service),
):
    snap = await service.reconcile_trip_seats(trip_id, actor_id=admin.id)
    return ok(
        SeatSnapshotResponse(
            trip_id=trip_id,
            offered_seats=snap.offered_seats,
            reserved_seats=snap.reserved_seats,
            available_seats=snap.available_seats,
            is_full=snap.is_full,
        )
    )
