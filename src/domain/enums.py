"""Domain enumerations and state-transition rules."""

import enum


class TripStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class ReservationStatus(str, enum.Enum):
    # seat-holding
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    CONFIRMED = "CONFIRMED"
    WAITLISTED = "WAITLISTED"
    # terminal, re-reservable
    REJECTED = "REJECTED"
    CANCELLED_EARLY = "CANCELLED_EARLY"
    CANCELLED_BY_DRIVER_EARLY = "CANCELLED_BY_DRIVER_EARLY"
    # terminal, final
    CANCELLED_MEDIUM = "CANCELLED_MEDIUM"
    CANCELLED_LATE = "CANCELLED_LATE"
    CANCELLED_BY_DRIVER_LATE = "CANCELLED_BY_DRIVER_LATE"
    NO_SHOW = "NO_SHOW"
    EXPIRED = "EXPIRED"
    COMPLETED = "COMPLETED"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class CancelledBy(str, enum.Enum):
    PASSENGER = "PASSENGER"
    DRIVER = "DRIVER"
    SYSTEM = "SYSTEM"


class RefundType(str, enum.Enum):
    FULL_REFUND = "FULL_REFUND"
    PARTIAL_REFUND = "PARTIAL_REFUND"
    NO_REFUND = "NO_REFUND"


class RefundStatus(str, enum.Enum):
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"


# ── Reservation status groupings ──────────────────────────────────────

# Count against trip capacity.
CAPACITY_HOLDING_STATUSES = frozenset(
    {
        ReservationStatus.PENDING_APPROVAL,
        ReservationStatus.APPROVED,
        ReservationStatus.CONFIRMED,
    }
)

# Block a second reservation by the same passenger on the same trip.
ACTIVE_RESERVATION_STATUSES = CAPACITY_HOLDING_STATUSES | {
    ReservationStatus.WAITLISTED
}

RE_RESERVABLE_STATUSES = frozenset(
    {
        ReservationStatus.REJECTED,
        ReservationStatus.CANCELLED_EARLY,
        ReservationStatus.CANCELLED_BY_DRIVER_EARLY,
    }
)

PASSENGER_CANCELLED_STATUSES = frozenset(
    {
        ReservationStatus.CANCELLED_EARLY,
        ReservationStatus.CANCELLED_MEDIUM,
        ReservationStatus.CANCELLED_LATE,
    }
)

DRIVER_CANCELLED_STATUSES = frozenset(
    {
        ReservationStatus.CANCELLED_BY_DRIVER_EARLY,
        ReservationStatus.CANCELLED_BY_DRIVER_LATE,
    }
)

TERMINAL_RESERVATION_STATUSES = frozenset(ReservationStatus) - ACTIVE_RESERVATION_STATUSES

_CANCELLATIONS = PASSENGER_CANCELLED_STATUSES | DRIVER_CANCELLED_STATUSES

# Initial states a re-reservable row may be reset to (update in place).
_REENTRY = {
    ReservationStatus.PENDING_APPROVAL,
    ReservationStatus.APPROVED,
    ReservationStatus.WAITLISTED,
}


# State machine: maps current status -> set of valid next statuses
RESERVATION_TRANSITIONS: dict[ReservationStatus, frozenset[ReservationStatus]] = {
    ReservationStatus.PENDING_APPROVAL: frozenset(
        {ReservationStatus.APPROVED, ReservationStatus.REJECTED} | _CANCELLATIONS
    ),
    ReservationStatus.WAITLISTED: frozenset(
        {
            ReservationStatus.PENDING_APPROVAL,
            ReservationStatus.APPROVED,
            ReservationStatus.REJECTED,
        }
        | _CANCELLATIONS
    ),
    ReservationStatus.APPROVED: frozenset(
        {
            ReservationStatus.CONFIRMED,
            ReservationStatus.EXPIRED,
            ReservationStatus.NO_SHOW,
        }
        | _CANCELLATIONS
    ),
    ReservationStatus.CONFIRMED: frozenset(
        {ReservationStatus.COMPLETED, ReservationStatus.NO_SHOW} | _CANCELLATIONS
    ),
    ReservationStatus.REJECTED: frozenset(_REENTRY),
    ReservationStatus.CANCELLED_EARLY: frozenset(_REENTRY),
    ReservationStatus.CANCELLED_BY_DRIVER_EARLY: frozenset(_REENTRY),
    ReservationStatus.CANCELLED_MEDIUM: frozenset(),
    ReservationStatus.CANCELLED_LATE: frozenset(),
    ReservationStatus.CANCELLED_BY_DRIVER_LATE: frozenset(),
    ReservationStatus.NO_SHOW: frozenset(),
    ReservationStatus.EXPIRED: frozenset(),
    ReservationStatus.COMPLETED: frozenset(),
}


PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset(
        {
            PaymentStatus.PROCESSING,
            PaymentStatus.COMPLETED,
            PaymentStatus.FAILED,
            PaymentStatus.CANCELLED,
        }
    ),
    PaymentStatus.PROCESSING: frozenset(
        {PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.CANCELLED}
    ),
    # A rejected proof may be resubmitted, re-rejected or approved directly.
    PaymentStatus.FAILED: frozenset(
        {
            PaymentStatus.PROCESSING,
            PaymentStatus.COMPLETED,
            PaymentStatus.FAILED,
            PaymentStatus.CANCELLED,
        }
    ),
    PaymentStatus.COMPLETED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.CANCELLED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}

OPEN_PAYMENT_STATUSES = frozenset(
    {PaymentStatus.PENDING, PaymentStatus.PROCESSING, PaymentStatus.FAILED}
)
