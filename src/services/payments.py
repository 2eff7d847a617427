"""
Payment orchestrator.

Bank-transfer payments move ``PENDING -> PROCESSING`` when the passenger
uploads a proof, and an admin then approves (``COMPLETED``, reservation
``CONFIRMED``) or rejects (``FAILED``, passenger may resubmit).  Approval
writes payment, reservation and bank transfer in one transaction.
"""

from __future__ import annotations

import logging
from typing import Optional

from src.domain.enums import PaymentStatus, ReservationStatus
from src.domain.errors import AuthorizationFailed, NotFound, ValidationFailed
from src.infrastructure.audit import AuditAction
from src.infrastructure.models import PaymentModel
from src.infrastructure.notifications import Notice
from src.infrastructure.repositories import PaymentRepository
from src.services.base import BaseService

logger = logging.getLogger(__name__)

_CLOSED = (PaymentStatus.COMPLETED, PaymentStatus.CANCELLED, PaymentStatus.REFUNDED)


def _link(payment_id: int) -> str:
    return f"/payments/{payment_id}"


class PaymentService(BaseService):
    async def get_payment(
        self, payment_id: int, viewer_id: Optional[int] = None, is_admin: bool = False
    ) -> PaymentModel:
        async with self.session_factory() as session:
            payment = await PaymentRepository(session).get_aggregate(payment_id)
        if payment is None:
            raise NotFound("Payment not found", details={"payment_id": payment_id})
        if viewer_id is not None and not is_admin:
            reservation = payment.reservation
            if viewer_id not in (reservation.passenger_id, reservation.trip.driver_id):
                raise AuthorizationFailed("You cannot view this payment")
        return payment

    async def submit_payment_proof(
        self, passenger_id: int, payment_id: int, proof_ref: str
    ) -> PaymentModel:
        if not proof_ref or not proof_ref.strip():
            raise ValidationFailed("A proof of transfer is required")

        async with self.session_factory() as session, session.begin():
            payments = PaymentRepository(session)
            payment = await self._load(payments, payment_id)
            reservation = payment.reservation
            if reservation.passenger_id != passenger_id:
                raise AuthorizationFailed("You can only pay for your own reservations")
            if reservation.status != ReservationStatus.APPROVED:
                raise ValidationFailed(
                    "Payments can only be made for approved reservations",
                    details={"status": ReservationStatus(reservation.status).value},
                )

            payment.transition_to(PaymentStatus.PROCESSING)
            await payments.upsert_bank_transfer(
                payment, proof_file_key=proof_ref.strip(), failure_reason=None
            )
            driver_id = reservation.trip.driver_id

        logger.info("Payment %s proof submitted", payment_id)
        await self._dispatch(
            [
                Notice(
                    driver_id,
                    "Payment submitted",
                    "A passenger submitted a bank transfer proof; it is pending verification.",
                    event_type="PAYMENT_SUBMITTED",
                    link=_link(payment_id),
                )
            ]
        )
        await self._audit(
            passenger_id, AuditAction.PAYMENT_PROOF_SUBMITTED, {"payment_id": payment_id}
        )
        return payment

    async def approve_payment(
        self, admin_id: int, payment_id: int, proof_ref: Optional[str] = None
    ) -> PaymentModel:
        """Verify a transfer: payment COMPLETED + reservation CONFIRMED.

        ``proof_ref`` falls back to the proof already on file; one of the two
        must exist.
        """
        now = self.now()
        async with self.session_factory() as session, session.begin():
            payments = PaymentRepository(session)
            payment = await self._load(payments, payment_id)
            if payment.status in _CLOSED:
                raise ValidationFailed(
                    f"Payment is already {PaymentStatus(payment.status).value.lower()}",
                    details={"status": PaymentStatus(payment.status).value},
                )

            transfer = payment.bank_transfer
            proof = (proof_ref or "").strip() or (transfer.proof_file_key if transfer else None)
            if not proof:
                raise ValidationFailed("A proof of transfer is required")

            reservation = payment.reservation
            reservation.transition_to(ReservationStatus.CONFIRMED)
            payment.transition_to(PaymentStatus.COMPLETED)
            payment.completed_at = now
            await payments.upsert_bank_transfer(
                payment,
                proof_file_key=proof,
                verified_at=now,
                verified_by=admin_id,
                failure_reason=None,
            )
            passenger_id = reservation.passenger_id
            driver_id = reservation.trip.driver_id

        logger.info(
            "Payment %s approved by admin %s; reservation %s confirmed",
            payment_id,
            admin_id,
            reservation.id,
        )
        await self._dispatch(
            [
                Notice(
                    passenger_id,
                    "Payment approved",
                    "Your payment was verified and your seat is confirmed.",
                    event_type="PAYMENT_APPROVED",
                    link=_link(payment_id),
                ),
                Notice(
                    driver_id,
                    "Passenger confirmed",
                    "A passenger's payment was verified.",
                    event_type="RESERVATION_CONFIRMED",
                    link=f"/reservations/{reservation.id}",
                ),
            ]
        )
        await self._audit(
            admin_id,
            AuditAction.PAYMENT_APPROVED,
            {"payment_id": payment_id, "reservation_id": reservation.id},
        )
        return payment

    async def reject_payment(
        self, admin_id: int, payment_id: int, reason: str
    ) -> PaymentModel:
        min_length = self.settings.payment_rejection_min_reason_length
        reason = (reason or "").strip()
        if len(reason) < min_length:
            raise ValidationFailed(
                f"Rejection reason must be at least {min_length} characters",
                details={"length": len(reason)},
            )

        async with self.session_factory() as session, session.begin():
            payments = PaymentRepository(session)
            payment = await self._load(payments, payment_id)
            if payment.status in _CLOSED:
                raise ValidationFailed(
                    f"Payment is already {PaymentStatus(payment.status).value.lower()}",
                    details={"status": PaymentStatus(payment.status).value},
                )
            if payment.bank_transfer is None:
                raise ValidationFailed("No proof of transfer has been submitted")

            payment.transition_to(PaymentStatus.FAILED)
            await payments.upsert_bank_transfer(payment, failure_reason=reason)
            passenger_id = payment.reservation.passenger_id

        logger.info("Payment %s rejected by admin %s", payment_id, admin_id)
        await self._dispatch(
            [
                Notice(
                    passenger_id,
                    "Payment rejected",
                    f"Your payment could not be verified: {reason}. "
                    "You can submit a new proof of transfer.",
                    event_type="PAYMENT_REJECTED",
                    link=_link(payment_id),
                )
            ]
        )
        await self._audit(
            admin_id,
            AuditAction.PAYMENT_REJECTED,
            {"payment_id": payment_id, "reason": reason},
        )
        return payment

    @staticmethod
    async def _load(payments: PaymentRepository, payment_id: int) -> PaymentModel:
        payment = await payments.get_aggregate(payment_id, for_update=True)
        if payment is None:
            raise NotFound("Payment not found", details={"payment_id": payment_id})
        if payment.superseded_at is not None:
            raise ValidationFailed(
                "Payment was replaced by a newer one for this reservation",
                details={"payment_id": payment_id},
            )
        return payment
