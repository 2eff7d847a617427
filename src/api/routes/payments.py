"""
Payment endpoints
=================

GET  /api/v1/payments/{id}          -- payment with its bank transfer
POST /api/v1/payments/{id}/proof    -- passenger submits a transfer proof
POST /api/v1/payments/{id}/approve  -- admin verifies the transfer
POST /api/v1/payments/{id}/reject   -- admin rejects the transfer
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request

from src.api.dependencies import get_current_user, get_payment_service, require_admin
from src.api.middleware import DEFAULT_LIMIT, limiter
from src.api.schemas import (
    Envelope,
    PaymentApproveRequest,
    PaymentProofRequest,
    PaymentRejectRequest,
    PaymentResponse,
    ok,
)
from src.infrastructure.models import UserModel
from src.services.payments import PaymentService

router = APIRouter(prefix="/payments", tags=["payments"])


@router.get("/{payment_id}", response_model=Envelope[PaymentResponse], summary="Get a payment")
@limiter.limit(DEFAULT_LIMIT)
async def get_payment(
    request: Request,
    payment_id: int,
    user: UserModel = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    payment = await service.get_payment(payment_id, viewer_id=user.id, is_admin=user.is_admin)
    return ok(payment)


@router.post(
    "/{payment_id}/proof",
    response_model=Envelope[PaymentResponse],
    summary="Submit a bank transfer proof",
)
@limiter.limit(DEFAULT_LIMIT)
async def submit_payment_proof(
    request: Request,
    payment_id: int,
    body: PaymentProofRequest,
    user: UserModel = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    payment = await service.submit_payment_proof(user.id, payment_id, body.proof_file_key)
    return ok(payment, "Proof submitted")


@router.post(
    "/{payment_id}/approve",
    response_model=Envelope[PaymentResponse],
    summary="Approve a payment (admin)",
    description="Completes the payment and confirms the reservation atomically.",
)
@limiter.limit(DEFAULT_LIMIT)
async def approve_payment(
    request: Request,
    payment_id: int,
    body: Optional[PaymentApproveRequest] = None,
    admin: UserModel = Depends(require_admin),
    service: PaymentService = Depends(get_payment_service),
):
    payment = await service.approve_payment(
        admin.id, payment_id, body.proof_file_key if body else None
    )
    return ok(payment, "Payment approved")


@router.post(
    "/{payment_id}/reject",
    response_model=Envelope[PaymentResponse],
    summary="Reject a payment (admin)",
)
@limiter.limit(DEFAULT_LIMIT)
async def reject_payment(
    request: Request,
    payment_id: int,
    body: PaymentRejectRequest,
    admin: UserModel = Depends(require_admin),
    service: PaymentService = Depends(get_payment_service),
):
    payment = await service.reject_payment(admin.id, payment_id, body.reason)
    return ok(payment, "Payment rejected")
