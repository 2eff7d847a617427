"""FastAPI dependency injection helpers."""

from typing import AsyncGenerator, Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.domain.errors import AuthenticationFailed, AuthorizationFailed
from src.infrastructure.audit import AuditLogger
from src.infrastructure.database import async_session_factory
from src.infrastructure.models import UserModel
from src.infrastructure.notifications import RedisNotifier
from src.infrastructure.redis_client import get_redis
from src.infrastructure.repositories import UserRepository
from src.services.expiration import ExpirationSweeper
from src.services.payments import PaymentService
from src.services.reservations import ReservationService
from src.services.trips import TripService


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_session_factory


def get_notifier() -> RedisNotifier:
    return RedisNotifier(get_redis)


def get_audit_logger(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> AuditLogger:
    return AuditLogger(session_factory)


async def get_db(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> AsyncGenerator[AsyncSession, None]:
    """Yield an async DB session; commit on success, rollback on error."""
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ── Services ──────────────────────────────────────────────────────────


def _service(cls):
    def factory(
        session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
        notifier: RedisNotifier = Depends(get_notifier),
        audit: AuditLogger = Depends(get_audit_logger),
    ):
        return cls(session_factory, notifier, audit)

    factory.__name__ = f"get_{cls.__name__}"
    return factory


get_trip_service = _service(TripService)
get_reservation_service = _service(ReservationService)
get_payment_service = _service(PaymentService)
get_expiration_sweeper = _service(ExpirationSweeper)


# ── Identity ──────────────────────────────────────────────────────────


async def get_current_user(
    x_user_id: Optional[int] = Header(None, alias="X-User-Id"),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> UserModel:
    """Resolve the caller from the ``X-User-Id`` header (set by the gateway)."""
    if x_user_id is None:
        raise AuthenticationFailed()
    async with session_factory() as session:
        user = await UserRepository(session).get_by_id(x_user_id)
    if user is None:
        raise AuthenticationFailed()
    return user


async def require_admin(user: UserModel = Depends(get_current_user)) -> UserModel:
    if not user.is_admin:
        raise AuthorizationFailed("Administrator access required")
    return user
