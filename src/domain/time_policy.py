"""
Time-Policy Evaluator
=====================

Pure functions deciding whether a time-gated action is legal relative to
a trip's departure.  Every function takes the departure instant and an
optional ``now`` (defaults to the current UTC instant) and returns a
``TimeRestrictionResult``.

Windows
-------
* Create / approve a reservation: refused inside 3 h of departure.
* Unpaid ``APPROVED`` reservation: expires inside 2 h of departure.
* Driver removing an approved passenger: protected for a window after
  approval that depends on how far departure is::

      > 24 h        -> 8 h protection
      [12 h, 24 h]  -> 4 h protection
      [3 h, 12 h)   -> 2 h protection
      < 3 h         -> never removable

* Moving departure: at most 6 h away from the originally published time,
  and frozen inside 36 h when confirmed passengers exist.

All arithmetic is done on absolute UTC instants.  Naive datetimes (as
returned by SQLite) are interpreted as UTC.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from .enums import PaymentStatus

RESERVATION_CUTOFF_HOURS = 3.0
APPROVAL_CUTOFF_HOURS = 3.0
UNPAID_EXPIRY_HOURS = 2.0
PENDING_APPROVAL_EXPIRY_HOURS = 2.0
REMOVAL_LOCKOUT_HOURS = 3.0
DEPARTURE_DRIFT_LIMIT_HOURS = 6.0
DEPARTURE_LOCK_HOURS = 36.0
TRIP_COMPLETION_GRACE_HOURS = 24.0

REMOVAL_PROTECTION_LONG_HOURS = 8.0  # departure more than 24 h away
REMOVAL_PROTECTION_MEDIUM_HOURS = 4.0  # departure 12-24 h away
REMOVAL_PROTECTION_SHORT_HOURS = 2.0  # departure 3-12 h away


@dataclass(frozen=True)
class TimeRestrictionResult:
    is_allowed: bool
    hours_until_departure: float
    reason: Optional[str] = None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def hours_between(start: datetime, end: datetime) -> float:
    return (as_utc(end) - as_utc(start)).total_seconds() / 3600


def hours_until_departure(
    departure_time: datetime, now: Optional[datetime] = None
) -> float:
    return hours_between(now or utcnow(), departure_time)


def can_create_reservation(
    departure_time: datetime, now: Optional[datetime] = None
) -> TimeRestrictionResult:
    hours = hours_until_departure(departure_time, now)
    if hours < RESERVATION_CUTOFF_HOURS:
        return TimeRestrictionResult(
            False,
            hours,
            "Reservations cannot be created within 3 hours of departure",
        )
    return TimeRestrictionResult(True, hours)


def can_approve_reservation(
    departure_time: datetime, now: Optional[datetime] = None
) -> TimeRestrictionResult:
    hours = hours_until_departure(departure_time, now)
    if hours < APPROVAL_CUTOFF_HOURS:
        return TimeRestrictionResult(
            False,
            hours,
            "Reservations cannot be approved within 3 hours of departure",
        )
    return TimeRestrictionResult(True, hours)


def should_expire_unpaid_reservation(
    departure_time: datetime,
    payment_status: PaymentStatus,
    now: Optional[datetime] = None,
) -> TimeRestrictionResult:
    """``is_allowed`` here means *must expire*, not permission."""
    hours = hours_until_departure(departure_time, now)
    status = PaymentStatus(payment_status)

    if status == PaymentStatus.COMPLETED:
        return TimeRestrictionResult(False, hours, "Payment already completed")

    if status == PaymentStatus.PENDING and hours < UNPAID_EXPIRY_HOURS:
        return TimeRestrictionResult(
            True,
            hours,
            "Reservation without confirmed payment within 2 hours of departure",
        )
    return TimeRestrictionResult(False, hours)


def removal_protection_hours(hours_to_departure: float) -> Optional[float]:
    """Protection window for the tier, or ``None`` when removal is locked."""
    if hours_to_departure > 24:
        return REMOVAL_PROTECTION_LONG_HOURS
    if hours_to_departure >= 12:
        return REMOVAL_PROTECTION_MEDIUM_HOURS
    if hours_to_departure >= REMOVAL_LOCKOUT_HOURS:
        return REMOVAL_PROTECTION_SHORT_HOURS
    return None


def can_driver_remove_approved_passenger(
    departure_time: datetime,
    approved_at: Optional[datetime],
    now: Optional[datetime] = None,
) -> TimeRestrictionResult:
    now = now or utcnow()
    hours = hours_until_departure(departure_time, now)
    protection = removal_protection_hours(hours)

    if protection is None:
        return TimeRestrictionResult(
            False,
            hours,
            "Approved passengers cannot be removed within 3 hours of departure",
        )

    # No approval timestamp means there is nothing to protect.
    if approved_at is None:
        return TimeRestrictionResult(True, hours)

    since_approval = hours_between(approved_at, now)
    if since_approval < protection:
        return TimeRestrictionResult(
            False,
            hours,
            f"Passenger is protected for {protection:g} hours after approval "
            f"({since_approval:.1f} hours elapsed)",
        )
    return TimeRestrictionResult(True, hours)


def can_modify_departure_time(
    original_departure_time: datetime,
    current_departure_time: datetime,
    new_departure_time: datetime,
    has_confirmed_passengers: bool,
    now: Optional[datetime] = None,
) -> TimeRestrictionResult:
    now = now or utcnow()
    hours = hours_until_departure(current_departure_time, now)

    if as_utc(new_departure_time) <= as_utc(now):
        return TimeRestrictionResult(False, hours, "Departure time must be in the future")

    if has_confirmed_passengers and hours < DEPARTURE_LOCK_HOURS:
        return TimeRestrictionResult(
            False,
            hours,
            "Departure time is locked within 36 hours of departure "
            "when passengers are confirmed",
        )

    drift = abs(hours_between(original_departure_time, new_departure_time))
    if drift > DEPARTURE_DRIFT_LIMIT_HOURS:
        return TimeRestrictionResult(
            False,
            hours,
            "Departure time cannot move more than 6 hours from the original time",
        )
    return TimeRestrictionResult(True, hours)


def format_time_restriction_error(result: TimeRestrictionResult) -> str:
    total_minutes = int(abs(result.hours_until_departure) * 60)
    hours, minutes = divmod(total_minutes, 60)
    return f"{result.reason}. Time remaining: {hours}h {minutes}m"
