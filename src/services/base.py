"""
Shared plumbing for the per-action orchestrators.

Every public operation has the same shape::

    async with session_factory() as session, session.begin():
        load aggregate -> time gate -> state transition -> persist
        collect notices
    dispatch notices + audit entries      # after commit, best-effort

Validation errors are raised before anything is written; an exception
raised inside the ``begin()`` block rolls the whole unit of work back.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Iterable, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import Settings, settings
from src.domain.cancellation import (
    CancellationPolicy,
    calculate_refund_amounts,
    refund_type_for,
)
from src.domain.enums import OPEN_PAYMENT_STATUSES, PaymentStatus
from src.domain.pricing import PaymentAmountEngine
from src.domain.time_policy import as_utc, utcnow
from src.infrastructure.audit import AuditAction, AuditLogger
from src.infrastructure.models import (
    PaymentModel,
    RefundModel,
    ReservationModel,
    TripModel,
)
from src.infrastructure.notifications import Notice, RedisNotifier
from src.infrastructure.repositories import PaymentRepository, RefundRepository

logger = logging.getLogger(__name__)


class BaseService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: RedisNotifier,
        audit: AuditLogger,
        *,
        clock: Callable[[], datetime] = utcnow,
        config: Settings = settings,
    ):
        self.session_factory = session_factory
        self.notifier = notifier
        self.audit = audit
        self.clock = clock
        self.settings = config
        self.policy = CancellationPolicy.from_settings(config)
        self.amounts = PaymentAmountEngine(
            config.currency, config.default_service_fee_percentage
        )

    def now(self) -> datetime:
        return as_utc(self.clock())

    async def _dispatch(self, notices: Iterable[Notice]) -> None:
        for notice in notices:
            await self.notifier.send(notice)

    async def _audit(
        self,
        actor: Union[int, str],
        action: AuditAction,
        details: Optional[dict[str, Any]] = None,
        status: str = "SUCCESS",
    ) -> None:
        await self.audit.log_action(actor, action, status, details)

    async def _open_payment(
        self, session: AsyncSession, reservation: ReservationModel, trip: TripModel
    ) -> PaymentModel:
        quote = self.amounts.quote(reservation.total_price, trip.service_fee_percentage)
        payment = await PaymentRepository(session).open_for_reservation(
            reservation, quote, self.now()
        )
        logger.info(
            "Payment %s opened for reservation %s (%.2f %s)",
            payment.id,
            reservation.id,
            quote.total_amount,
            quote.currency,
        )
        return payment

    async def _settle_payment(
        self,
        session: AsyncSession,
        reservation: ReservationModel,
        refund_percentage: float,
        now: datetime,
    ) -> Optional[RefundModel]:
        """Refund a completed payment, or cancel one still open.

        ``reservation.payment`` must already be hydrated.
        """
        payment = reservation.payment
        if payment is None:
            return None

        status = PaymentStatus(payment.status)
        if status == PaymentStatus.COMPLETED:
            amounts = calculate_refund_amounts(
                reservation.total_price, payment.service_fee, refund_percentage
            )
            refund = await RefundRepository(session).record(
                payment_id=payment.id,
                refund_amount=amounts.refund_amount,
                driver_compensation=amounts.driver_compensation,
                service_fee_retained=amounts.service_fee_retained,
                refund_type=refund_type_for(refund_percentage),
                processed_at=now,
            )
            payment.transition_to(PaymentStatus.REFUNDED)
            logger.info(
                "Refund %s recorded for payment %s: %.2f (%g%%)",
                refund.id,
                payment.id,
                amounts.refund_amount,
                refund_percentage,
            )
            return refund

        if status in OPEN_PAYMENT_STATUSES:
            payment.transition_to(PaymentStatus.CANCELLED)
        return None

