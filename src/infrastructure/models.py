"""
SQLAlchemy ORM models  (maps to PostgreSQL).

Tables
------
* ``users``           -- drivers, passengers and admins
* ``trips``           -- published ride offers with their seat inventory
* ``reservations``    -- a passenger's claim on seats of a trip
* ``payments``        -- opened on approval; older rows kept as history
* ``bank_transfers``  -- proof-of-transfer record, one per payment
* ``cancellations``   -- who cancelled what, when, with which refund tier
* ``refunds``         -- refund computed for a cancelled paid reservation
* ``audit_logs``      -- best-effort action history

Constraints
-----------
* ``0 <= remaining_seats <= offered_seats`` backs the conditional seat
  decrement used against the last-seat race.
* ``UNIQUE (trip_id, passenger_id)`` on reservations: a passenger's row is
  reused in place on re-reservation, never duplicated.
* One current payment per reservation (partial unique index on
  ``reservation_id`` where ``superseded_at IS NULL``).  A re-reservation
  supersedes the old payment; it is never reset, and its bank transfer and
  refunds stay attached to it.

Indexes
-------
* **B-Tree** on ``status`` / ``departure_time`` columns used by the
  sweepers, and on foreign keys.
"""

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import relationship

from .database import Base
from src.domain.enums import (
    CancelledBy,
    PaymentStatus,
    RefundStatus,
    RefundType,
    ReservationStatus,
    TripStatus,
)
from src.domain.state_machine import PaymentLifecycle, ReservationLifecycle


class UserModel(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    is_admin = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class TripModel(Base):
    __tablename__ = "trips"

    id = Column(Integer, primary_key=True, autoincrement=True)
    driver_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    origin_city = Column(String(120), nullable=False)
    destination_city = Column(String(120), nullable=False)

    departure_time = Column(DateTime(timezone=True), nullable=False)
    # Set once at publication; bounds how far the driver may move departure.
    original_departure_time = Column(DateTime(timezone=True), nullable=False)

    offered_seats = Column(Integer, nullable=False)
    remaining_seats = Column(Integer, nullable=False)
    is_full = Column(Boolean, default=False, nullable=False)
    price_per_seat = Column(Float, nullable=False)
    service_fee_percentage = Column(Float, nullable=True)

    status = Column(Enum(TripStatus), default=TripStatus.ACTIVE, nullable=False)
    auto_approve_reservations = Column(Boolean, default=False, nullable=False)
    allow_waitlist = Column(Boolean, default=False, nullable=False)
    additional_notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    reservations = relationship(
        "ReservationModel", back_populates="trip", order_by="ReservationModel.id"
    )

    __table_args__ = (
        CheckConstraint("offered_seats > 0", name="ck_trips_offered_positive"),
        CheckConstraint(
            "remaining_seats >= 0 AND remaining_seats <= offered_seats",
            name="ck_trips_remaining_in_range",
        ),
        Index("idx_trips_status_departure", "status", "departure_time"),
        Index("idx_trips_driver", "driver_id"),
    )


class ReservationModel(ReservationLifecycle, Base):
    __tablename__ = "reservations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    trip_id = Column(Integer, ForeignKey("trips.id"), nullable=False)
    passenger_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    seats_reserved = Column(Integer, nullable=False)
    total_price = Column(Float, nullable=False)
    status = Column(
        Enum(ReservationStatus),
        default=ReservationStatus.PENDING_APPROVAL,
        nullable=False,
    )
    message = Column(Text, nullable=True)

    # Reset whenever a re-reservable row is reused.
    reserved_at = Column(DateTime(timezone=True), nullable=False)
    approved_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    trip = relationship("TripModel", back_populates="reservations")
    passenger = relationship("UserModel")
    payments = relationship(
        "PaymentModel", back_populates="reservation", order_by="PaymentModel.id"
    )
    # Current payment only; superseded rows are reachable through ``payments``.
    payment = relationship(
        "PaymentModel",
        primaryjoin="and_(ReservationModel.id == PaymentModel.reservation_id, "
        "PaymentModel.superseded_at.is_(None))",
        uselist=False,
        viewonly=True,
    )

    __table_args__ = (
        UniqueConstraint("trip_id", "passenger_id", name="uq_reservations_trip_passenger"),
        CheckConstraint(
            "seats_reserved >= 1 AND seats_reserved <= 4",
            name="ck_reservations_seats_range",
        ),
        Index("idx_reservations_status", "status"),
        Index("idx_reservations_trip", "trip_id"),
        Index("idx_reservations_passenger", "passenger_id"),
    )


class PaymentModel(PaymentLifecycle, Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    reservation_id = Column(Integer, ForeignKey("reservations.id"), nullable=False)
    total_amount = Column(Float, nullable=False)
    service_fee = Column(Float, nullable=False, default=0.0)
    currency = Column(String(3), nullable=False)
    status = Column(Enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    superseded_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    reservation = relationship("ReservationModel", back_populates="payments")
    bank_transfer = relationship(
        "BankTransferModel", back_populates="payment", uselist=False
    )
    refunds = relationship("RefundModel", back_populates="payment")

    __table_args__ = (
        Index(
            "uq_payments_current_reservation",
            "reservation_id",
            unique=True,
            postgresql_where=text("superseded_at IS NULL"),
            sqlite_where=text("superseded_at IS NULL"),
        ),
        Index("idx_payments_status", "status"),
    )


class BankTransferModel(Base):
    __tablename__ = "bank_transfers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    payment_id = Column(Integer, ForeignKey("payments.id"), unique=True, nullable=False)
    proof_file_key = Column(String(512), nullable=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    verified_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    failure_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    payment = relationship("PaymentModel", back_populates="bank_transfer")


class CancellationModel(Base):
    __tablename__ = "cancellations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    reservation_id = Column(Integer, ForeignKey("reservations.id"), nullable=True)
    trip_id = Column(Integer, ForeignKey("trips.id"), nullable=True)
    cancelled_by = Column(Enum(CancelledBy), nullable=False)
    reason = Column(Text, nullable=True)
    hours_before_departure = Column(Float, nullable=False)
    refund_percentage = Column(Float, nullable=False, default=0.0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_cancellations_reservation", "reservation_id"),
        Index("idx_cancellations_trip", "trip_id"),
    )


class RefundModel(Base):
    __tablename__ = "refunds"

    id = Column(Integer, primary_key=True, autoincrement=True)
    payment_id = Column(Integer, ForeignKey("payments.id"), nullable=False)
    refund_amount = Column(Float, nullable=False)
    driver_compensation = Column(Float, nullable=False)
    service_fee_retained = Column(Float, nullable=False)
    refund_type = Column(Enum(RefundType), nullable=False)
    status = Column(Enum(RefundStatus), default=RefundStatus.PROCESSING, nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    payment = relationship("PaymentModel", back_populates="refunds")

    __table_args__ = (Index("idx_refunds_payment", "payment_id"),)


class AuditLogModel(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False)  # user id or "SYSTEM"
    action = Column(String(64), nullable=False)
    status = Column(String(16), nullable=False)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_audit_logs_user", "user_id"),
        Index("idx_audit_logs_action", "action"),
    )
