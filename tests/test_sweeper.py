"""
Expiration sweeper tests.

The sweeps run against the in-memory database; the per-job Redis lock is
exercised with the mocked client from ``conftest``.
"""

from unittest.mock import AsyncMock

import pytest

from src.domain.enums import PaymentStatus, ReservationStatus, TripStatus
from src.workers.sweeper import JOBS, run_sweep_cycle


# ── Unpaid reservations ───────────────────────────────────────────────


@pytest.mark.asyncio
async def test_unpaid_reservation_expires_near_departure(
    services, fetch, clock, make_user, make_trip
):
    driver, passenger = await make_user(), await make_user()
    trip = await make_trip(driver, hours_until_departure=5, auto_approve_reservations=True)
    reservation = await services.reservations.create_reservation(
        passenger.id, trip.id, 2, 2000.0
    )
    clock.advance(hours=3.5)  # 90 minutes to departure

    result = await services.sweeper.sweep_expired_unpaid()

    assert (result.checked_count, result.expired_count, result.failed_count) == (1, 1, 0)
    stored = await fetch.reservation(reservation.id)
    assert stored.status == ReservationStatus.EXPIRED
    assert stored.payment.status == PaymentStatus.CANCELLED
    assert (await fetch.trip(trip.id)).remaining_seats == 4
    [entry] = await fetch.audit_entries("UNPAID_RESERVATION_EXPIRED")
    assert entry.user_id == "SYSTEM"


@pytest.mark.asyncio
async def test_unpaid_sweep_is_idempotent(services, fetch, clock, make_user, make_trip):
    driver, passenger = await make_user(), await make_user()
    trip = await make_trip(driver, hours_until_departure=5, auto_approve_reservations=True)
    await services.reservations.create_reservation(passenger.id, trip.id, 1, 1000.0)
    clock.advance(hours=3.5)

    await services.sweeper.sweep_expired_unpaid()
    second = await services.sweeper.sweep_expired_unpaid()

    assert second.checked_count == 0
    assert second.expired_count == 0
    assert (await fetch.trip(trip.id)).remaining_seats == 4


@pytest.mark.asyncio
async def test_unpaid_sweep_leaves_other_reservations(
    services, fetch, clock, make_user, make_trip
):
    driver, paid, pending, far_away = (
        await make_user(),
        await make_user(),
        await make_user(),
        await make_user(),
    )
    admin = await make_user(is_admin=True)
    trip = await make_trip(driver, hours_until_departure=5, auto_approve_reservations=True)
    later = await make_trip(driver, hours_until_departure=30, auto_approve_reservations=True)
    r_paid = await services.reservations.create_reservation(paid.id, trip.id, 1, 1000.0)
    r_proc = await services.reservations.create_reservation(pending.id, trip.id, 1, 1000.0)
    r_later = await services.reservations.create_reservation(far_away.id, later.id, 1, 1000.0)

    paid_payment = (await fetch.reservation(r_paid.id)).payment.id
    await services.payments.approve_payment(admin.id, paid_payment, "proofs/ok.pdf")
    proc_payment = (await fetch.reservation(r_proc.id)).payment.id
    await services.payments.submit_payment_proof(pending.id, proc_payment, "proofs/wait.pdf")
    clock.advance(hours=3.5)

    result = await services.sweeper.sweep_expired_unpaid()

    assert result.expired_count == 0
    assert (await fetch.reservation(r_paid.id)).status == ReservationStatus.CONFIRMED
    assert (await fetch.reservation(r_proc.id)).status == ReservationStatus.APPROVED
    assert (await fetch.reservation(r_later.id)).status == ReservationStatus.APPROVED


# ── Pending approvals ─────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_pending_approvals_rejected_near_departure(
    services, fetch, clock, make_user, make_trip
):
    driver, p1, p2 = await make_user(), await make_user(), await make_user()
    near = await make_trip(driver, hours_until_departure=4)
    far = await make_trip(driver, hours_until_departure=48)
    r_near = await services.reservations.create_reservation(p1.id, near.id, 1, 1000.0)
    r_far = await services.reservations.create_reservation(p2.id, far.id, 1, 1000.0)
    clock.advance(hours=2.5)

    result = await services.sweeper.sweep_expired_pending_approvals()

    assert (result.processed_count, result.rejected_count) == (1, 1)
    assert (await fetch.reservation(r_near.id)).status == ReservationStatus.REJECTED
    assert (await fetch.reservation(r_far.id)).status == ReservationStatus.PENDING_APPROVAL


@pytest.mark.asyncio
async def test_pending_sweep_with_nothing_to_do(services):
    result = await services.sweeper.sweep_expired_pending_approvals()
    assert (result.processed_count, result.rejected_count) == (0, 0)


# ── Trip completion ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_departed_trips_completed_after_24h(
    services, fetch, clock, make_user, make_trip
):
    driver = await make_user()
    old = await make_trip(driver, hours_until_departure=1)
    recent = await make_trip(driver, hours_until_departure=20)
    clock.advance(hours=26)

    result = await services.sweeper.complete_expired_trips()

    assert (result.checked_count, result.completed_count, result.failed_count) == (1, 1, 0)
    assert (await fetch.trip(old.id)).status == TripStatus.COMPLETED
    assert (await fetch.trip(recent.id)).status == TripStatus.ACTIVE


# ── Sweep cycle + lock ────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_cycle_runs_every_job(services, fake_redis):
    results = await run_sweep_cycle(services.sweeper, fake_redis)

    assert set(results) == set(JOBS)
    assert results["unpaid_reservations"] == {
        "checked_count": 0,
        "expired_count": 0,
        "failed_count": 0,
    }
    assert fake_redis.set.await_count == len(JOBS)
    assert fake_redis.eval.await_count == len(JOBS)
    assert fake_redis.set.await_args_list[0].args[0] == "lock:sweeper:unpaid_reservations"


@pytest.mark.asyncio
async def test_cycle_skips_jobs_whose_lock_is_held(
    services, fetch, clock, fake_redis, make_user, make_trip
):
    driver, passenger = await make_user(), await make_user()
    trip = await make_trip(driver, hours_until_departure=5, auto_approve_reservations=True)
    reservation = await services.reservations.create_reservation(
        passenger.id, trip.id, 1, 1000.0
    )
    clock.advance(hours=3.5)
    fake_redis.set = AsyncMock(return_value=None)

    results = await run_sweep_cycle(services.sweeper, fake_redis)

    assert all(value is None for value in results.values())
    fake_redis.eval.assert_not_awaited()
    assert (await fetch.reservation(reservation.id)).status == ReservationStatus.APPROVED
