"""Trip publishing, preference edits, cancellation, completion and seat repair."""

from datetime import timedelta

import pytest
from sqlalchemy import update

from src.domain.enums import (
    CancelledBy,
    PaymentStatus,
    ReservationStatus,
    TripStatus,
)
from src.domain.errors import AuthorizationFailed, NotFound, ValidationFailed
from src.domain.time_policy import as_utc
from src.infrastructure.models import TripModel


async def confirm(services, fetch, admin, reservation):
    payment_id = (await fetch.reservation(reservation.id)).payment.id
    await services.payments.approve_payment(admin.id, payment_id, "proofs/transfer.pdf")
    return payment_id


# ── Publishing ────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_create_trip(services, fetch, clock, make_user):
    driver = await make_user()
    departure = clock.now + timedelta(days=2)

    trip = await services.trips.create_trip(
        driver.id, "Córdoba", "Mendoza", departure, 3, 8500.0, allow_waitlist=True
    )

    stored = await fetch.trip(trip.id)
    assert stored.status == TripStatus.ACTIVE
    assert stored.remaining_seats == 3
    assert not stored.is_full
    assert as_utc(stored.original_departure_time) == departure
    assert stored.allow_waitlist
    assert len(await fetch.audit_entries("TRIP_CREATED")) == 1


@pytest.mark.asyncio
async def test_create_trip_validation(services, clock, make_user):
    driver = await make_user()
    tomorrow = clock.now + timedelta(days=1)

    with pytest.raises(ValidationFailed, match="future"):
        await services.trips.create_trip(
            driver.id, "A", "B", clock.now - timedelta(minutes=1), 3, 100.0
        )
    with pytest.raises(ValidationFailed, match="at least one seat"):
        await services.trips.create_trip(driver.id, "A", "B", tomorrow, 0, 100.0)
    with pytest.raises(ValidationFailed, match="Price"):
        await services.trips.create_trip(driver.id, "A", "B", tomorrow, 3, 0)


@pytest.mark.asyncio
async def test_seat_snapshot(services, make_user, make_trip):
    driver, p1, p2 = await make_user(), await make_user(), await make_user()
    trip = await make_trip(driver, offered_seats=4)
    await services.reservations.create_reservation(p1.id, trip.id, 3, 3000.0)
    r2 = await services.reservations.create_reservation(p2.id, trip.id, 1, 1000.0)
    await services.reservations.cancel_reservation(p2.id, r2.id)

    snap = await services.trips.get_seat_snapshot(trip.id)
    assert snap.reserved_seats == 3
    assert snap.available_seats == 1
    assert not snap.is_full

    with pytest.raises(NotFound):
        await services.trips.get_seat_snapshot(9999)


# ── Preferences ───────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_move_departure_within_drift(services, fetch, fake_redis, make_user, make_trip):
    driver, passenger = await make_user(), await make_user()
    trip = await make_trip(driver, hours_until_departure=72)
    await services.reservations.create_reservation(passenger.id, trip.id, 1, 1000.0)
    new_departure = as_utc(trip.departure_time) + timedelta(hours=4)

    await services.trips.update_trip_preferences(
        driver.id, trip.id, departure_time=new_departure, additional_notes="Leaving later"
    )

    stored = await fetch.trip(trip.id)
    assert as_utc(stored.departure_time) == new_departure
    assert as_utc(stored.original_departure_time) == as_utc(trip.departure_time)
    assert stored.additional_notes == "Leaving later"
    channel = fake_redis.publish.await_args_list[-1].args[0]
    assert channel == f"notifications:{passenger.id}"


@pytest.mark.asyncio
async def test_move_departure_beyond_drift_fails(services, make_user, make_trip):
    driver = await make_user()
    trip = await make_trip(driver, hours_until_departure=72)

    with pytest.raises(ValidationFailed, match="6 hours"):
        await services.trips.update_trip_preferences(
            driver.id,
            trip.id,
            departure_time=as_utc(trip.departure_time) + timedelta(hours=7),
        )


@pytest.mark.asyncio
async def test_departure_locked_with_confirmed_passengers(
    services, fetch, make_user, make_trip
):
    driver, passenger = await make_user(), await make_user()
    admin = await make_user(is_admin=True)
    trip = await make_trip(driver, hours_until_departure=30, auto_approve_reservations=True)
    reservation = await services.reservations.create_reservation(
        passenger.id, trip.id, 1, 1000.0
    )
    await confirm(services, fetch, admin, reservation)

    with pytest.raises(ValidationFailed, match="36 hours"):
        await services.trips.update_trip_preferences(
            driver.id,
            trip.id,
            departure_time=as_utc(trip.departure_time) + timedelta(hours=1),
        )

    # non-time preferences stay editable
    updated = await services.trips.update_trip_preferences(
        driver.id, trip.id, auto_approve_reservations=False
    )
    assert not updated.auto_approve_reservations


@pytest.mark.asyncio
async def test_only_driver_edits_trip(services, make_user, make_trip):
    driver, stranger = await make_user(), await make_user()
    trip = await make_trip(driver)

    with pytest.raises(AuthorizationFailed):
        await services.trips.update_trip_preferences(stranger.id, trip.id, allow_waitlist=True)


# ── Cancellation ──────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_cancel_trip_refunds_paid_passengers(
    services, fetch, clock, make_user, make_trip
):
    driver, paid, unpaid, pending = (
        await make_user(),
        await make_user(),
        await make_user(),
        await make_user(),
    )
    admin = await make_user(is_admin=True)
    trip = await make_trip(driver, hours_until_departure=30, auto_approve_reservations=True)
    r_paid = await services.reservations.create_reservation(paid.id, trip.id, 2, 2000.0)
    r_unpaid = await services.reservations.create_reservation(unpaid.id, trip.id, 1, 1000.0)
    payment_id = await confirm(services, fetch, admin, r_paid)
    await services.trips.update_trip_preferences(
        driver.id, trip.id, auto_approve_reservations=False
    )
    r_pending = await services.reservations.create_reservation(pending.id, trip.id, 1, 1000.0)

    outcome = await services.trips.cancel_trip(driver.id, trip.id, reason="Car broke down")

    assert outcome.cancelled_reservations == 3
    assert outcome.refunds_processed == 1
    for reservation in (r_paid, r_unpaid, r_pending):
        stored = await fetch.reservation(reservation.id)
        assert stored.status == ReservationStatus.CANCELLED_BY_DRIVER_LATE

    [refund] = await fetch.refunds()
    assert refund.payment_id == payment_id
    assert refund.refund_amount == 2000.0
    assert (await fetch.payment(payment_id)).status == PaymentStatus.REFUNDED
    assert (await fetch.reservation(r_unpaid.id)).payment.status == PaymentStatus.CANCELLED

    stored_trip = await fetch.trip(trip.id)
    assert stored_trip.status == TripStatus.CANCELLED
    assert stored_trip.remaining_seats == stored_trip.offered_seats

    records = await fetch.cancellations()
    assert len(records) == 4
    assert all(r.cancelled_by == CancelledBy.DRIVER for r in records)
    assert [r.reservation_id for r in records].count(None) == 1


@pytest.mark.asyncio
async def test_early_trip_cancellation_tier(services, fetch, make_user, make_trip):
    driver, passenger = await make_user(), await make_user()
    trip = await make_trip(driver, hours_until_departure=72)
    reservation = await services.reservations.create_reservation(
        passenger.id, trip.id, 1, 1000.0
    )

    await services.trips.cancel_trip(driver.id, trip.id)

    stored = await fetch.reservation(reservation.id)
    assert stored.status == ReservationStatus.CANCELLED_BY_DRIVER_EARLY


@pytest.mark.asyncio
async def test_cancelled_trip_cannot_be_cancelled_again(services, make_user, make_trip):
    driver = await make_user()
    trip = await make_trip(driver)
    await services.trips.cancel_trip(driver.id, trip.id)

    with pytest.raises(ValidationFailed, match="CANCELLED"):
        await services.trips.cancel_trip(driver.id, trip.id)


@pytest.mark.asyncio
async def test_no_reservations_on_cancelled_trip(services, make_user, make_trip):
    driver, passenger = await make_user(), await make_user()
    trip = await make_trip(driver)
    await services.trips.cancel_trip(driver.id, trip.id)

    with pytest.raises(ValidationFailed, match="not open"):
        await services.reservations.create_reservation(passenger.id, trip.id, 1, 1000.0)


# ── Completion ────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_complete_trip_settles_reservations(
    services, fetch, clock, make_user, make_trip
):
    driver, p1, p2, p3 = await make_user(), await make_user(), await make_user(), await make_user()
    admin = await make_user(is_admin=True)
    trip = await make_trip(driver, hours_until_departure=30, auto_approve_reservations=True)
    confirmed = await services.reservations.create_reservation(p1.id, trip.id, 1, 1000.0)
    unpaid = await services.reservations.create_reservation(p2.id, trip.id, 1, 1000.0)
    await confirm(services, fetch, admin, confirmed)
    await services.trips.update_trip_preferences(
        driver.id, trip.id, auto_approve_reservations=False
    )
    pending = await services.reservations.create_reservation(p3.id, trip.id, 1, 1000.0)

    with pytest.raises(ValidationFailed, match="not departed"):
        await services.trips.complete_trip(trip.id, actor_id=driver.id)

    clock.advance(hours=31)
    outcome = await services.trips.complete_trip(trip.id, actor_id=driver.id)

    assert (outcome.completed, outcome.expired, outcome.rejected) == (1, 1, 1)
    assert (await fetch.reservation(confirmed.id)).status == ReservationStatus.COMPLETED
    expired = await fetch.reservation(unpaid.id)
    assert expired.status == ReservationStatus.EXPIRED
    assert expired.payment.status == PaymentStatus.CANCELLED
    assert (await fetch.reservation(pending.id)).status == ReservationStatus.REJECTED
    stored = await fetch.trip(trip.id)
    assert stored.status == TripStatus.COMPLETED
    assert stored.remaining_seats == stored.offered_seats


@pytest.mark.asyncio
async def test_automated_completion_waits_24h(services, clock, make_user, make_trip):
    driver = await make_user()
    trip = await make_trip(driver, hours_until_departure=1)
    clock.advance(hours=10)

    with pytest.raises(ValidationFailed, match="less than 24 hours"):
        await services.trips.complete_trip(trip.id, is_automated=True)

    clock.advance(hours=16)
    outcome = await services.trips.complete_trip(trip.id, is_automated=True)
    assert outcome.completed == 0


# ── Seat repair ───────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_reconcile_repairs_drift(services, fetch, session_factory, make_user, make_trip):
    driver, passenger, admin = await make_user(), await make_user(), await make_user(is_admin=True)
    trip = await make_trip(driver, offered_seats=4)
    await services.reservations.create_reservation(passenger.id, trip.id, 2, 2000.0)
    async with session_factory() as session, session.begin():
        await session.execute(
            update(TripModel).where(TripModel.id == trip.id).values(remaining_seats=0, is_full=True)
        )

    snap = await services.trips.reconcile_trip_seats(trip.id, actor_id=admin.id)

    assert snap.available_seats == 2
    stored = await fetch.trip(trip.id)
    assert stored.remaining_seats == 2
    assert not stored.is_full
    [entry] = await fetch.audit_entries("TRIP_SEATS_RECONCILED")
    assert entry.details == {"trip_id": trip.id, "remaining_before": 0, "remaining_after": 2}
