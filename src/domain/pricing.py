"""
Payment Amount Engine  (Strategy Pattern)
=========================================

Formula
-------
Total_Amount = Trip_Price + Service_Fee

* **Trip_Price** is what the passenger agreed to at reservation time
  (``reservations.total_price``).
* **Service_Fee** is the platform commission, a percentage of the trip
  price (per trip, falling back to the configured default).

The service fee is retained on every refund.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


# ── Strategy hierarchy ────────────────────────────────────────────────


class ServiceFeeStrategy(ABC):
    @abstractmethod
    def calculate(self, trip_price: float) -> float: ...


class PercentageServiceFee(ServiceFeeStrategy):
    def __init__(self, percentage: float):
        if percentage < 0:
            raise ValueError("service fee percentage cannot be negative")
        self.percentage = percentage

    def calculate(self, trip_price: float) -> float:
        return round(trip_price * self.percentage / 100, 2)


# ── Engine facade ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class PaymentQuote:
    trip_price: float
    service_fee: float
    currency: str

    @property
    def total_amount(self) -> float:
        return round(self.trip_price + self.service_fee, 2)


class PaymentAmountEngine:
    """High-level API used when a reservation opens its payment."""

    def __init__(self, currency: str = "ARS", default_fee_percentage: float = 10.0):
        self.currency = currency
        self.default_fee_percentage = default_fee_percentage

    def quote(
        self, trip_price: float, fee_percentage: float | None = None
    ) -> PaymentQuote:
        pct = self.default_fee_percentage if fee_percentage is None else fee_percentage
        strategy = PercentageServiceFee(pct)
        return PaymentQuote(
            trip_price=round(trip_price, 2),
            service_fee=strategy.calculate(trip_price),
            currency=self.currency,
        )
