"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, Field

from src.domain.enums import PaymentStatus, ReservationStatus, TripStatus

T = TypeVar("T")


# ── Envelope ──────────────────────────────────────────────────────────


class Envelope(BaseModel, Generic[T]):
    success: bool = True
    data: Optional[T] = None
    message: Optional[str] = None


def ok(data: Any = None, message: Optional[str] = None) -> dict[str, Any]:
    """Success envelope; ``data`` is validated against the route's model."""
    return {"success": True, "data": data, "message": message}


class ErrorBody(BaseModel):
    code: str
    message: str
    details: dict[str, Any] = {}


class ErrorResponse(BaseModel):
    success: bool = False
    error: ErrorBody


# ── Requests ──────────────────────────────────────────────────────────


class TripCreateRequest(BaseModel):
    origin_city: str = Field(..., min_length=1, max_length=120)
    destination_city: str = Field(..., min_length=1, max_length=120)
    departure_time: datetime
    offered_seats: int = Field(..., ge=1, le=8)
    price_per_seat: float = Field(..., gt=0)
    auto_approve_reservations: bool = False
    allow_waitlist: bool = False
    service_fee_percentage: Optional[float] = Field(None, ge=0, le=100)
    additional_notes: Optional[str] = Field(None, max_length=1000)


class TripPreferencesRequest(BaseModel):
    departure_time: Optional[datetime] = None
    auto_approve_reservations: Optional[bool] = None
    allow_waitlist: Optional[bool] = None
    additional_notes: Optional[str] = Field(None, max_length=1000)


class ReservationCreateRequest(BaseModel):
    trip_id: int
    seats_reserved: int = Field(1, ge=1, le=4)
    total_price: float = Field(..., gt=0)
    message: Optional[str] = Field(None, max_length=500)


class ReasonRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class BulkRejectRequest(BaseModel):
    reservation_ids: list[int] = Field(..., description="Reservations in PENDING_APPROVAL")


class PaymentProofRequest(BaseModel):
    proof_file_key: str = Field(
        ...,
        min_length=1,
        max_length=512,
        description="Storage key of the uploaded bank-transfer receipt.",
    )


class PaymentApproveRequest(BaseModel):
    proof_file_key: Optional[str] = Field(
        None,
        max_length=512,
        description="Defaults to the proof the passenger already submitted.",
    )


class PaymentRejectRequest(BaseModel):
    reason: str = Field(..., max_length=1000)


# ── Responses ─────────────────────────────────────────────────────────


class TripResponse(BaseModel):
    id: int
    driver_id: int
    origin_city: str
    destination_city: str
    departure_time: datetime
    original_departure_time: datetime
    offered_seats: int
    remaining_seats: int
    is_full: bool
    price_per_seat: float
    service_fee_percentage: Optional[float] = None
    status: TripStatus
    auto_approve_reservations: bool
    allow_waitlist: bool
    additional_notes: Optional[str] = None

    model_config = {"from_attributes": True}


class SeatSnapshotResponse(BaseModel):
    trip_id: int
    offered_seats: int
    reserved_seats: int
    available_seats: int
    is_full: bool


class BankTransferResponse(BaseModel):
    proof_file_key: Optional[str] = None
    verified_at: Optional[datetime] = None
    verified_by: Optional[int] = None
    failure_reason: Optional[str] = None

    model_config = {"from_attributes": True}


class PaymentResponse(BaseModel):
    id: int
    reservation_id: int
    total_amount: float
    service_fee: float
    currency: str
    status: PaymentStatus
    completed_at: Optional[datetime] = None
    superseded_at: Optional[datetime] = None
    bank_transfer: Optional[BankTransferResponse] = None

    model_config = {"from_attributes": True}


class ReservationResponse(BaseModel):
    id: int
    trip_id: int
    passenger_id: int
    seats_reserved: int
    total_price: float
    status: ReservationStatus
    message: Optional[str] = None
    reserved_at: datetime
    approved_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ReservationDetailResponse(ReservationResponse):
    payment: Optional[PaymentResponse] = None


class CancellationResponse(BaseModel):
    reservation_id: int
    status: ReservationStatus
    refund_percentage: float
    refund_processed: bool
    refund_amount: float

    model_config = {"from_attributes": True}


class RejectionResponse(BaseModel):
    rejected_count: int
    reservation_ids: list[int] = []

    model_config = {"from_attributes": True}


class TripCancellationResponse(BaseModel):
    trip_id: int
    cancelled_reservations: int
    refunds_processed: int

    model_config = {"from_attributes": True}


class TripCompletionResponse(BaseModel):
    trip_id: int
    completed: int
    expired: int
    rejected: int

    model_config = {"from_attributes": True}


class UnpaidSweepResponse(BaseModel):
    checked_count: int
    expired_count: int
    failed_count: int

    model_config = {"from_attributes": True}


class PendingApprovalSweepResponse(BaseModel):
    processed_count: int
    rejected_count: int

    model_config = {"from_attributes": True}


class TripCompletionSweepResponse(BaseModel):
    checked_count: int
    completed_count: int
    failed_count: int

    model_config = {"from_attributes": True}


class HealthResponse(BaseModel):
    status: str = "ok"
    database: str = "ok"
