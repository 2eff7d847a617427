"""
FastAPI application factory.

* Registers routes for trips, reservations, payments and admin.
* Starts / stops the background expiration sweeper via lifespan events.
* Renders every ``DomainError`` in the uniform failure envelope.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from src.api.middleware import limiter
from src.api.routes import admin, payments, reservations, trips
from src.api.schemas import ErrorBody, ErrorResponse
from src.config import settings
from src.domain.errors import (
    AuthenticationFailed,
    AuthorizationFailed,
    ConflictFailed,
    DomainError,
    NotFound,
    ValidationFailed,
)
from src.workers import sweeper as _sweeper

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

ERROR_STATUS = (
    (NotFound, 404),
    (ValidationFailed, 422),
    (AuthenticationFailed, 401),
    (AuthorizationFailed, 403),
    (ConflictFailed, 409),
)


def status_for(exc: DomainError) -> int:
    for cls, status in ERROR_STATUS:
        if isinstance(exc, cls):
            return status
    return 500


def _error(status: int, code: str, message: str, details: dict) -> JSONResponse:
    body = ErrorResponse(error=ErrorBody(code=code, message=message, details=details))
    return JSONResponse(status_code=status, content=body.model_dump(mode="json"))


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        logger.error("Unmapped domain error on %s: %s", request.url.path, exc.message)
    return _error(status, exc.code, exc.message, exc.details)


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return _error(
        422,
        ValidationFailed.code,
        "Invalid request",
        {"errors": [{"loc": list(e["loc"]), "msg": e["msg"]} for e in exc.errors()]},
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the sweeper on startup; stop on shutdown."""
    if settings.sweeper_enabled:
        await _sweeper.start_sweeper_loop()
    yield
    if settings.sweeper_enabled:
        await _sweeper.stop_sweeper_loop()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Trip Reservation & Payment API",
        description=(
            "Seat reservations, bank-transfer payments and cancellations for "
            "shared trips.  Time-windowed policies decide which transitions "
            "are legal relative to departure; a background sweeper expires "
            "overdue reservations."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Error envelope
    app.add_exception_handler(DomainError, domain_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    # Routers
    app.include_router(trips.router, prefix="/api/v1")
    app.include_router(reservations.router, prefix="/api/v1")
    app.include_router(payments.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
