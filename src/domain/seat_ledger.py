"""
Seat Inventory Ledger.

Derives a trip's seat availability from its reservations::

    reserved  = sum(seats_reserved  for r in reservations if r.status holds capacity)
    available = offered_seats - reserved
    is_full   = reserved >= offered_seats

``WAITLISTED`` reservations never count toward capacity.  The persisted
``trips.remaining_seats`` column is kept equal to ``available`` by the
repositories; ``snapshot`` is the source of truth used to reconcile it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Protocol

from .enums import CAPACITY_HOLDING_STATUSES, ReservationStatus


class SeatHolder(Protocol):
    seats_reserved: int
    status: ReservationStatus


def holds_capacity(status: ReservationStatus) -> bool:
    return ReservationStatus(status) in CAPACITY_HOLDING_STATUSES


def reserved_seats(reservations: Iterable[SeatHolder]) -> int:
    return sum(r.seats_reserved for r in reservations if holds_capacity(r.status))


@dataclass(frozen=True)
class SeatSnapshot:
    offered_seats: int
    reserved_seats: int

    @property
    def available_seats(self) -> int:
        return max(0, self.offered_seats - self.reserved_seats)

    @property
    def is_full(self) -> bool:
        return self.reserved_seats >= self.offered_seats

    def can_accommodate(self, seats: int) -> bool:
        return seats <= self.available_seats


def snapshot(offered_seats: int, reservations: Iterable[SeatHolder]) -> SeatSnapshot:
    return SeatSnapshot(offered_seats, reserved_seats(reservations))
