"""
Best-effort audit trail.

Entries are written in their own session *after* the primary transaction
has committed; a failure here is logged and swallowed.
"""

from __future__ import annotations

import enum
import logging
from typing import Any, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .repositories import AuditLogRepository

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "SYSTEM"


class AuditAction(str, enum.Enum):
    TRIP_CREATED = "TRIP_CREATED"
    TRIP_UPDATED = "TRIP_UPDATED"
    TRIP_CANCELLED = "TRIP_CANCELLED"
    TRIP_COMPLETED = "TRIP_COMPLETED"
    TRIP_SEATS_RECONCILED = "TRIP_SEATS_RECONCILED"
    RESERVATION_CREATED = "RESERVATION_CREATED"
    RESERVATION_APPROVED = "RESERVATION_APPROVED"
    RESERVATION_CANCELLED = "RESERVATION_CANCELLED"
    RESERVATION_PROMOTED = "RESERVATION_PROMOTED"
    PENDING_RESERVATION_REJECTED = "PENDING_RESERVATION_REJECTED"
    PASSENGER_REMOVED = "PASSENGER_REMOVED"
    PASSENGER_NO_SHOW = "PASSENGER_NO_SHOW"
    UNPAID_RESERVATION_EXPIRED = "UNPAID_RESERVATION_EXPIRED"
    PAYMENT_PROOF_SUBMITTED = "PAYMENT_PROOF_SUBMITTED"
    PAYMENT_APPROVED = "PAYMENT_APPROVED"
    PAYMENT_REJECTED = "PAYMENT_REJECTED"


class AuditLogger:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def log_action(
        self,
        user_id: Union[int, str],
        action: AuditAction,
        status: str = "SUCCESS",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        try:
            async with self.session_factory() as session, session.begin():
                await AuditLogRepository(session).add(
                    user_id=str(user_id),
                    action=AuditAction(action).value,
                    status=status,
                    details=details,
                )
        except Exception:
            logger.exception("Failed to write audit entry %s for %s", action, user_id)
