"""
Lifecycle guards for reservations and payments.

Patterns used
-------------
- **State Pattern**: ``ReservationLifecycle`` and ``PaymentLifecycle`` are
  mixins that give any object with a ``status`` attribute a
  ``transition_to`` method enforcing the transition tables in
  ``enums``.  The ORM models inherit them, so every write path goes
  through the same guard.
"""

from __future__ import annotations

from typing import Mapping, TypeVar

from .enums import (
    PAYMENT_TRANSITIONS,
    RESERVATION_TRANSITIONS,
    PaymentStatus,
    ReservationStatus,
)
from .errors import ValidationFailed

S = TypeVar("S")


class InvalidStateTransition(ValidationFailed):
    """Raised when a status change violates the state machine."""


def can_transition(
    transitions: Mapping[S, frozenset], current: S, new_status: S
) -> bool:
    return new_status in transitions.get(current, frozenset())


def ensure_transition(
    transitions: Mapping[S, frozenset], current: S, new_status: S, label: str
) -> None:
    if not can_transition(transitions, current, new_status):
        raise InvalidStateTransition(
            f"Cannot transition {label} from {_name(current)} to {_name(new_status)}",
            details={"from": _name(current), "to": _name(new_status)},
        )


def _name(status) -> str:
    return status.value if hasattr(status, "value") else str(status)


class ReservationLifecycle:
    """Mixin for objects carrying a ``ReservationStatus`` in ``status``."""

    def can_transition_to(self, new_status: ReservationStatus) -> bool:
        return can_transition(
            RESERVATION_TRANSITIONS, ReservationStatus(self.status), new_status
        )

    def transition_to(self, new_status: ReservationStatus) -> None:
        """Move to *new_status* if the transition is legal, else raise."""
        ensure_transition(
            RESERVATION_TRANSITIONS,
            ReservationStatus(self.status),
            new_status,
            "reservation",
        )
        self.status = new_status


class PaymentLifecycle:
    """Mixin for objects carrying a ``PaymentStatus`` in ``status``."""

    def can_transition_to(self, new_status: PaymentStatus) -> bool:
        return can_transition(PAYMENT_TRANSITIONS, PaymentStatus(self.status), new_status)

    def transition_to(self, new_status: PaymentStatus) -> None:
        ensure_transition(
            PAYMENT_TRANSITIONS, PaymentStatus(self.status), new_status, "payment"
        )
        self.status = new_status
