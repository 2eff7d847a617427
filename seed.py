"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 8 sample users (3 drivers, 4 passengers, 1 admin)
  - 4 sample trips departing over the next days
  - 5 sample reservations (mix of PENDING_APPROVAL, APPROVED, CONFIRMED)
    with their payments, and seat inventory kept consistent
"""

import asyncio
from datetime import timedelta

from sqlalchemy import text

from src.config import settings
from src.domain import seat_ledger
from src.domain.enums import PaymentStatus, ReservationStatus, TripStatus
from src.domain.pricing import PaymentAmountEngine
from src.domain.time_policy import utcnow
from src.infrastructure.database import async_session_factory, engine
from src.infrastructure.models import (
    BankTransferModel,
    PaymentModel,
    ReservationModel,
    TripModel,
    UserModel,
)

USERS = [
    {"name": "Lucía Fernández", "email": "lucia@example.com"},
    {"name": "Martín Gómez", "email": "martin@example.com"},
    {"name": "Sofía Romero", "email": "sofia@example.com"},
    {"name": "Tomás Álvarez", "email": "tomas@example.com"},
    {"name": "Valentina Díaz", "email": "valentina@example.com"},
    {"name": "Joaquín Torres", "email": "joaquin@example.com"},
    {"name": "Camila Ruiz", "email": "camila@example.com"},
    {"name": "Admin", "email": "admin@example.com", "is_admin": True},
]

# (driver index, origin, destination, hours from now, seats, price, auto-approve, waitlist)
TRIPS = [
    (0, "Buenos Aires", "Rosario", 30, 4, 9000.0, False, True),
    (1, "Córdoba", "Villa Carlos Paz", 6, 3, 4500.0, True, False),
    (2, "Mendoza", "San Rafael", 60, 4, 12000.0, False, False),
    (0, "Rosario", "Buenos Aires", 80, 2, 9000.0, True, False),
]

# (trip index, passenger index, seats, status)
RESERVATIONS = [
    (0, 3, 2, ReservationStatus.PENDING_APPROVAL),
    (0, 4, 1, ReservationStatus.APPROVED),
    (1, 5, 1, ReservationStatus.APPROVED),
    (2, 6, 2, ReservationStatus.CONFIRMED),
    (3, 3, 2, ReservationStatus.CONFIRMED),
]


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM users"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        now = utcnow()
        amounts = PaymentAmountEngine(
            settings.currency, settings.default_service_fee_percentage
        )

        # ── Users ─────────────────────────────────────────────────────
        users = [UserModel(**u) for u in USERS]
        session.add_all(users)
        await session.flush()
        print(f"  Created {len(users)} users")

        # ── Trips ─────────────────────────────────────────────────────
        trips = []
        for driver, origin, dest, hours, seats, price, auto, waitlist in TRIPS:
            departure = now + timedelta(hours=hours)
            trips.append(
                TripModel(
                    driver_id=users[driver].id,
                    origin_city=origin,
                    destination_city=dest,
                    departure_time=departure,
                    original_departure_time=departure,
                    offered_seats=seats,
                    remaining_seats=seats,
                    is_full=False,
                    price_per_seat=price,
                    status=TripStatus.ACTIVE,
                    auto_approve_reservations=auto,
                    allow_waitlist=waitlist,
                )
            )
        session.add_all(trips)
        await session.flush()
        print(f"  Created {len(trips)} trips")

        # ── Reservations + payments ───────────────────────────────────
        by_trip: dict[int, list[ReservationModel]] = {t.id: [] for t in trips}
        for trip_idx, passenger_idx, seats, status in RESERVATIONS:
            trip = trips[trip_idx]
            reservation = ReservationModel(
                trip_id=trip.id,
                passenger_id=users[passenger_idx].id,
                seats_reserved=seats,
                total_price=trip.price_per_seat * seats,
                status=status,
                reserved_at=now - timedelta(hours=12),
                approved_at=None
                if status == ReservationStatus.PENDING_APPROVAL
                else now - timedelta(hours=10),
            )
            session.add(reservation)
            await session.flush()
            by_trip[trip.id].append(reservation)

            if status == ReservationStatus.PENDING_APPROVAL:
                continue
            quote = amounts.quote(reservation.total_price, trip.service_fee_percentage)
            confirmed = status == ReservationStatus.CONFIRMED
            payment = PaymentModel(
                reservation_id=reservation.id,
                total_amount=quote.total_amount,
                service_fee=quote.service_fee,
                currency=quote.currency,
                status=PaymentStatus.COMPLETED if confirmed else PaymentStatus.PENDING,
                completed_at=now - timedelta(hours=8) if confirmed else None,
            )
            session.add(payment)
            await session.flush()
            if confirmed:
                session.add(
                    BankTransferModel(
                        payment_id=payment.id,
                        proof_file_key=f"proofs/{payment.id}.pdf",
                        verified_at=now - timedelta(hours=8),
                        verified_by=users[-1].id,
                    )
                )
        print(f"  Created {len(RESERVATIONS)} reservations")

        # ── Seat inventory ────────────────────────────────────────────
        for trip in trips:
            snap = seat_ledger.snapshot(trip.offered_seats, by_trip[trip.id])
            trip.remaining_seats = snap.available_seats
            trip.is_full = snap.is_full

        await session.commit()
        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
