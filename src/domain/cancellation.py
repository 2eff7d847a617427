"""
Cancellation Policy Engine
==========================

Turns "hours before departure at the moment of cancelling" into a
terminal reservation status, a refund percentage and a refund type.

Passenger tiers (defaults, configurable through ``Settings``)::

    > 24 h        CANCELLED_EARLY    100 %
    [12 h, 24 h]  CANCELLED_MEDIUM    75 %
    < 12 h        CANCELLED_LATE      50 %

A passenger who cancels within the grace period of reserving (and who
reserved recently) always lands in the early tier.

Driver-initiated cancellations map to ``CANCELLED_BY_DRIVER_EARLY`` when
departure is more than 48 h away, else ``CANCELLED_BY_DRIVER_LATE``;
paid passengers are refunded the full trip price either way.

The service fee is never refunded.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .enums import RefundType, ReservationStatus, TripStatus, TERMINAL_RESERVATION_STATUSES
from .errors import ValidationFailed
from .time_policy import hours_between


@dataclass(frozen=True)
class CancellationDecision:
    hours_before_departure: float
    status: ReservationStatus
    refund_percentage: float
    refund_type: RefundType


@dataclass(frozen=True)
class RefundAmounts:
    refund_amount: float
    driver_compensation: float
    service_fee_retained: float


class CancellationPolicy:
    def __init__(
        self,
        early_hours: float = 24.0,
        medium_hours: float = 12.0,
        early_refund: float = 100.0,
        medium_refund: float = 75.0,
        late_refund: float = 50.0,
        grace_hours: float = 1.0,
        grace_booking_window_hours: float = 24.0,
        driver_early_hours: float = 48.0,
    ):
        if medium_hours > early_hours:
            raise ValueError("medium tier boundary must not exceed the early one")
        if not 100 >= early_refund >= medium_refund >= late_refund >= 0:
            raise ValueError(
                "refund percentages must be non-increasing and within 0-100"
            )
        self.early_hours = early_hours
        self.medium_hours = medium_hours
        self.early_refund = early_refund
        self.medium_refund = medium_refund
        self.late_refund = late_refund
        self.grace_hours = grace_hours
        self.grace_booking_window_hours = grace_booking_window_hours
        self.driver_early_hours = driver_early_hours

    @classmethod
    def from_settings(cls, settings) -> "CancellationPolicy":
        return cls(
            early_hours=settings.cancellation_early_hours,
            medium_hours=settings.cancellation_medium_hours,
            early_refund=settings.refund_early_percentage,
            medium_refund=settings.refund_medium_percentage,
            late_refund=settings.refund_late_percentage,
            grace_hours=settings.cancellation_grace_hours,
            grace_booking_window_hours=settings.cancellation_grace_booking_window_hours,
            driver_early_hours=settings.driver_cancellation_early_hours,
        )

    def for_passenger(
        self,
        departure_time: datetime,
        cancelled_at: datetime,
        reserved_at: Optional[datetime] = None,
    ) -> CancellationDecision:
        hours = hours_between(cancelled_at, departure_time)

        if reserved_at is not None:
            since_booking = hours_between(reserved_at, cancelled_at)
            if (
                since_booking < self.grace_booking_window_hours
                and since_booking < self.grace_hours
            ):
                return self._decision(
                    hours, ReservationStatus.CANCELLED_EARLY, self.early_refund
                )

        if hours > self.early_hours:
            return self._decision(hours, ReservationStatus.CANCELLED_EARLY, self.early_refund)
        if hours >= self.medium_hours:
            return self._decision(
                hours, ReservationStatus.CANCELLED_MEDIUM, self.medium_refund
            )
        return self._decision(hours, ReservationStatus.CANCELLED_LATE, self.late_refund)

    def for_driver(
        self, departure_time: datetime, cancelled_at: datetime
    ) -> CancellationDecision:
        hours = hours_between(cancelled_at, departure_time)
        status = (
            ReservationStatus.CANCELLED_BY_DRIVER_EARLY
            if hours > self.driver_early_hours
            else ReservationStatus.CANCELLED_BY_DRIVER_LATE
        )
        return self._decision(hours, status, 100.0)

    @staticmethod
    def _decision(
        hours: float, status: ReservationStatus, percentage: float
    ) -> CancellationDecision:
        return CancellationDecision(hours, status, percentage, refund_type_for(percentage))


def refund_type_for(percentage: float) -> RefundType:
    if percentage >= 100:
        return RefundType.FULL_REFUND
    if percentage <= 0:
        return RefundType.NO_REFUND
    return RefundType.PARTIAL_REFUND


def calculate_refund_amounts(
    trip_price: float, service_fee: float, refund_percentage: float
) -> RefundAmounts:
    refund = round(trip_price * refund_percentage / 100, 2)
    return RefundAmounts(
        refund_amount=refund,
        driver_compensation=round(trip_price - refund, 2),
        service_fee_retained=service_fee,
    )


def ensure_cancellable(
    reservation_status: ReservationStatus, trip_status: TripStatus
) -> None:
    """Raise ``ValidationFailed`` unless the reservation may still be cancelled."""
    if ReservationStatus(reservation_status) in TERMINAL_RESERVATION_STATUSES:
        raise ValidationFailed(
            f"Reservation is already closed ({ReservationStatus(reservation_status).value})"
        )
    if TripStatus(trip_status) == TripStatus.COMPLETED:
        raise ValidationFailed("Cannot cancel a reservation for a completed trip")
    if TripStatus(trip_status) == TripStatus.CANCELLED:
        raise ValidationFailed("This trip has already been cancelled")
