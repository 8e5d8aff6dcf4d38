"""
Cancellation fee evaluation.

Pure functions of (type details, booking total, now). Nothing here reads or
writes payment state, so the fee for any booking can be recomputed at any
time from its snapshot and the moment it was cancelled.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from ..models.money import ZERO, Amount, round_money, to_decimal
from ..models.type_details import (
    CarDetails,
    FlightDetails,
    HotelDetails,
    TypeDetails,
    ensure_utc,
)

DEFAULT_FEE_RATE = Decimal("0.10")
FLIGHT_FREE_CANCELLATION_WINDOW = timedelta(hours=24)


@dataclass(frozen=True)
class CancellationQuote:
    fee: Decimal
    free_until: Optional[datetime]
    policy_basis: str

    @property
    def is_free(self) -> bool:
        return self.fee == ZERO


def free_cancellation_until(details: Optional[TypeDetails]) -> Optional[datetime]:
    """
    End of the free-cancellation window for a booking.

    Flights: 24 hours before outbound departure. Hotels and cars: the policy
    snapshot taken at booking time. Other kinds have no free window.
    """
    if isinstance(details, FlightDetails):
        departure = ensure_utc(details.departure_at)
        return departure - FLIGHT_FREE_CANCELLATION_WINDOW if departure else None
    if isinstance(details, (HotelDetails, CarDetails)):
        return ensure_utc(details.free_cancellation_until)
    return None


def quote_cancellation(
    details: Optional[TypeDetails],
    pricing_total: Amount,
    now: datetime,
    currency: str = "USD",
) -> CancellationQuote:
    total = to_decimal(pricing_total)
    now = ensure_utc(now)  # type: ignore[assignment]
    free_until = free_cancellation_until(details)

    if free_until is not None and now < free_until:
        return CancellationQuote(
            fee=round_money(ZERO, currency),
            free_until=free_until,
            policy_basis="Within free-cancellation window: no fee",
        )

    if isinstance(details, HotelDetails) and details.non_refundable:
        return CancellationQuote(
            fee=round_money(total, currency),
            free_until=free_until,
            policy_basis="Non-refundable rate: fee equals total",
        )

    return CancellationQuote(
        fee=round_money(total * DEFAULT_FEE_RATE, currency),
        free_until=free_until,
        policy_basis="Default cancellation fee: 10% of total",
    )


def evaluate_fee(
    details: Optional[TypeDetails],
    pricing_total: Amount,
    now: datetime,
    currency: str = "USD",
) -> Decimal:
    """Cancellation fee for ``details`` cancelled at ``now``."""
    return quote_cancellation(details, pricing_total, now, currency).fee
