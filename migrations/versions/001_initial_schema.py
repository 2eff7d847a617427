"""Initial schema: users, trips, reservations, payments and their history.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "001"
down_revision = None
branch_labels = None
depends_on = None


TRIP_STATUS = sa.Enum("PENDING", "ACTIVE", "COMPLETED", "CANCELLED", name="tripstatus")
RESERVATION_STATUS = sa.Enum(
    "PENDING_APPROVAL",
    "APPROVED",
    "CONFIRMED",
    "WAITLISTED",
    "REJECTED",
    "CANCELLED_EARLY",
    "CANCELLED_MEDIUM",
    "CANCELLED_LATE",
    "CANCELLED_BY_DRIVER_EARLY",
    "CANCELLED_BY_DRIVER_LATE",
    "NO_SHOW",
    "EXPIRED",
    "COMPLETED",
    name="reservationstatus",
)
PAYMENT_STATUS = sa.Enum(
    "PENDING",
    "PROCESSING",
    "COMPLETED",
    "FAILED",
    "CANCELLED",
    "REFUNDED",
    name="paymentstatus",
)
CANCELLED_BY = sa.Enum("PASSENGER", "DRIVER", "SYSTEM", name="cancelledby")
REFUND_TYPE = sa.Enum("FULL_REFUND", "PARTIAL_REFUND", "NO_REFUND", name="refundtype")
REFUND_STATUS = sa.Enum("PROCESSING", "COMPLETED", name="refundstatus")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    ]


def upgrade() -> None:
    # ── users ─────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column("is_admin", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )

    # ── trips ─────────────────────────────────────────────────────────
    op.create_table(
        "trips",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("driver_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("origin_city", sa.String(120), nullable=False),
        sa.Column("destination_city", sa.String(120), nullable=False),
        sa.Column("departure_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("original_departure_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("offered_seats", sa.Integer, nullable=False),
        sa.Column("remaining_seats", sa.Integer, nullable=False),
        sa.Column("is_full", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("price_per_seat", sa.Float, nullable=False),
        sa.Column("service_fee_percentage", sa.Float, nullable=True),
        sa.Column("status", TRIP_STATUS, nullable=False, server_default="ACTIVE"),
        sa.Column(
            "auto_approve_reservations",
            sa.Boolean,
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column("allow_waitlist", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("additional_notes", sa.Text, nullable=True),
        *_timestamps(),
        sa.CheckConstraint("offered_seats > 0", name="ck_trips_offered_positive"),
        sa.CheckConstraint(
            "remaining_seats >= 0 AND remaining_seats <= offered_seats",
            name="ck_trips_remaining_in_range",
        ),
    )
    op.create_index("idx_trips_status_departure", "trips", ["status", "departure_time"])
    op.create_index("idx_trips_driver", "trips", ["driver_id"])

    # ── reservations ──────────────────────────────────────────────────
    op.create_table(
        "reservations",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("trip_id", sa.Integer, sa.ForeignKey("trips.id"), nullable=False),
        sa.Column("passenger_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("seats_reserved", sa.Integer, nullable=False),
        sa.Column("total_price", sa.Float, nullable=False),
        sa.Column(
            "status",
            RESERVATION_STATUS,
            nullable=False,
            server_default="PENDING_APPROVAL",
        ),
        sa.Column("message", sa.Text, nullable=True),
        sa.Column("reserved_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "trip_id", "passenger_id", name="uq_reservations_trip_passenger"
        ),
        sa.CheckConstraint(
            "seats_reserved >= 1 AND seats_reserved <= 4",
            name="ck_reservations_seats_range",
        ),
    )
    op.create_index("idx_reservations_status", "reservations", ["status"])
    op.create_index("idx_reservations_trip", "reservations", ["trip_id"])
    op.create_index("idx_reservations_passenger", "reservations", ["passenger_id"])

    # ── payments ──────────────────────────────────────────────────────
    op.create_table(
        "payments",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "reservation_id",
            sa.Integer,
            sa.ForeignKey("reservations.id"),
            nullable=False,
        ),
        sa.Column("total_amount", sa.Float, nullable=False),
        sa.Column("service_fee", sa.Float, nullable=False, server_default="0"),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("status", PAYMENT_STATUS, nullable=False, server_default="PENDING"),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("superseded_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    # One current payment per reservation; superseded rows are history.
    op.create_index(
        "uq_payments_current_reservation",
        "payments",
        ["reservation_id"],
        unique=True,
        postgresql_where=sa.text("superseded_at IS NULL"),
    )
    op.create_index("idx_payments_status", "payments", ["status"])

    # ── bank_transfers ────────────────────────────────────────────────
    op.create_table(
        "bank_transfers",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "payment_id",
            sa.Integer,
            sa.ForeignKey("payments.id"),
            unique=True,
            nullable=False,
        ),
        sa.Column("proof_file_key", sa.String(512), nullable=True),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("verified_by", sa.Integer, sa.ForeignKey("users.id"), nullable=True),
        sa.Column("failure_reason", sa.Text, nullable=True),
        *_timestamps(),
    )

    # ── cancellations ─────────────────────────────────────────────────
    op.create_table(
        "cancellations",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "reservation_id", sa.Integer, sa.ForeignKey("reservations.id"), nullable=True
        ),
        sa.Column("trip_id", sa.Integer, sa.ForeignKey("trips.id"), nullable=True),
        sa.Column("cancelled_by", CANCELLED_BY, nullable=False),
        sa.Column("reason", sa.Text, nullable=True),
        sa.Column("hours_before_departure", sa.Float, nullable=False),
        sa.Column("refund_percentage", sa.Float, nullable=False, server_default="0"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_cancellations_reservation", "cancellations", ["reservation_id"])
    op.create_index("idx_cancellations_trip", "cancellations", ["trip_id"])

    # ── refunds ───────────────────────────────────────────────────────
    op.create_table(
        "refunds",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("payment_id", sa.Integer, sa.ForeignKey("payments.id"), nullable=False),
        sa.Column("refund_amount", sa.Float, nullable=False),
        sa.Column("driver_compensation", sa.Float, nullable=False),
        sa.Column("service_fee_retained", sa.Float, nullable=False),
        sa.Column("refund_type", REFUND_TYPE, nullable=False),
        sa.Column("status", REFUND_STATUS, nullable=False, server_default="PROCESSING"),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_refunds_payment", "refunds", ["payment_id"])

    # ── audit_logs ────────────────────────────────────────────────────
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("details", sa.JSON, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_audit_logs_user", "audit_logs", ["user_id"])
    op.create_index("idx_audit_logs_action", "audit_logs", ["action"])


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("refunds")
    op.drop_table("cancellations")
    op.drop_table("bank_transfers")
    op.drop_table("payments")
    op.drop_table("reservations")
    op.drop_table("trips")
    op.drop_table("users")
    for enum_type in (
        "refundstatus",
        "refundtype",
        "cancelledby",
        "paymentstatus",
        "reservationstatus",
        "tripstatus",
    ):
        op.execute(f"DROP TYPE IF EXISTS {enum_type}")
