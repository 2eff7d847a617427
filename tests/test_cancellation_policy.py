"""Unit tests for cancellation tiers and refund amounts."""

from datetime import datetime, timedelta, timezone

import pytest

from src.config import Settings
from src.domain.cancellation import (
    CancellationPolicy,
    calculate_refund_amounts,
    ensure_cancellable,
    refund_type_for,
)
from src.domain.enums import RefundType, ReservationStatus, TripStatus
from src.domain.errors import ValidationFailed

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
LONG_AGO = NOW - timedelta(days=2)


def at(hours: float) -> datetime:
    return NOW + timedelta(hours=hours)


class TestPassengerTiers:
    def setup_method(self):
        self.policy = CancellationPolicy()

    def test_early_tier(self):
        decision = self.policy.for_passenger(at(30), NOW, LONG_AGO)
        assert decision.status == ReservationStatus.CANCELLED_EARLY
        assert decision.refund_percentage == 100
        assert decision.refund_type == RefundType.FULL_REFUND

    def test_exactly_24h_is_medium(self):
        decision = self.policy.for_passenger(at(24), NOW, LONG_AGO)
        assert decision.status == ReservationStatus.CANCELLED_MEDIUM
        assert decision.refund_percentage == 75
        assert decision.refund_type == RefundType.PARTIAL_REFUND

    def test_exactly_12h_is_medium(self):
        assert (
            self.policy.for_passenger(at(12), NOW, LONG_AGO).status
            == ReservationStatus.CANCELLED_MEDIUM
        )

    def test_late_tier(self):
        decision = self.policy.for_passenger(at(5), NOW, LONG_AGO)
        assert decision.status == ReservationStatus.CANCELLED_LATE
        assert decision.refund_percentage == 50
        assert decision.hours_before_departure == pytest.approx(5)

    def test_grace_period_after_booking_is_early(self):
        decision = self.policy.for_passenger(at(5), NOW, NOW - timedelta(minutes=30))
        assert decision.status == ReservationStatus.CANCELLED_EARLY
        assert decision.refund_percentage == 100

    def test_grace_period_expired(self):
        decision = self.policy.for_passenger(at(5), NOW, NOW - timedelta(hours=2))
        assert decision.status == ReservationStatus.CANCELLED_LATE

    def test_custom_tiers(self):
        policy = CancellationPolicy(early_hours=48, medium_hours=6, medium_refund=60, late_refund=0)
        assert policy.for_passenger(at(30), NOW, LONG_AGO).refund_percentage == 60
        late = policy.for_passenger(at(3), NOW, LONG_AGO)
        assert late.refund_percentage == 0
        assert late.refund_type == RefundType.NO_REFUND

    def test_from_settings(self):
        policy = CancellationPolicy.from_settings(Settings(refund_medium_percentage=80))
        assert policy.for_passenger(at(20), NOW, LONG_AGO).refund_percentage == 80

    # ── Validation ──

    def test_rejects_inverted_boundaries(self):
        with pytest.raises(ValueError):
            CancellationPolicy(early_hours=12, medium_hours=24)

    def test_rejects_increasing_percentages(self):
        with pytest.raises(ValueError):
            CancellationPolicy(medium_refund=40, late_refund=50)


class TestDriverTiers:
    def setup_method(self):
        self.policy = CancellationPolicy()

    def test_early_driver_cancellation(self):
        decision = self.policy.for_driver(at(60), NOW)
        assert decision.status == ReservationStatus.CANCELLED_BY_DRIVER_EARLY
        assert decision.refund_percentage == 100

    def test_late_driver_cancellation_still_full_refund(self):
        decision = self.policy.for_driver(at(48), NOW)
        assert decision.status == ReservationStatus.CANCELLED_BY_DRIVER_LATE
        assert decision.refund_type == RefundType.FULL_REFUND


class TestRefundAmounts:
    def test_partial_refund_splits_price(self):
        amounts = calculate_refund_amounts(2000.0, 200.0, 75)
        assert amounts.refund_amount == 1500.0
        assert amounts.driver_compensation == 500.0
        assert amounts.service_fee_retained == 200.0

    def test_full_refund_keeps_fee(self):
        amounts = calculate_refund_amounts(1000.0, 100.0, 100)
        assert amounts.refund_amount == 1000.0
        assert amounts.driver_compensation == 0.0
        assert amounts.service_fee_retained == 100.0

    def test_rounding(self):
        amounts = calculate_refund_amounts(1234.5, 0, 10)
        assert amounts.refund_amount == 123.45
        assert amounts.driver_compensation == 1111.05

    def test_refund_type_for(self):
        assert refund_type_for(100) == RefundType.FULL_REFUND
        assert refund_type_for(50) == RefundType.PARTIAL_REFUND
        assert refund_type_for(0) == RefundType.NO_REFUND


class TestCancellability:
    def test_active_reservation_on_open_trip(self):
        ensure_cancellable(ReservationStatus.CONFIRMED, TripStatus.ACTIVE)

    def test_closed_reservation(self):
        with pytest.raises(ValidationFailed, match="already closed"):
            ensure_cancellable(ReservationStatus.CANCELLED_LATE, TripStatus.ACTIVE)

    def test_completed_trip(self):
        with pytest.raises(ValidationFailed, match="completed trip"):
            ensure_cancellable(ReservationStatus.APPROVED, TripStatus.COMPLETED)

    def test_cancelled_trip(self):
        with pytest.raises(ValidationFailed, match="already been cancelled"):
            ensure_cancellable(ReservationStatus.APPROVED, TripStatus.CANCELLED)
