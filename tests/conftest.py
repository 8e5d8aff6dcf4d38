# tests/conftest.py
"""
Pytest configuration for the booking core.

Settings are pinned through the environment BEFORE any nexvoy import so the
suite always runs against the in-memory repository, local locks and a
mock-mode payment gateway.
"""

import os

os.environ["ENVIRONMENT"] = "test"
os.environ["REPOSITORY_BACKEND"] = "memory"
os.environ["LOCK_BACKEND"] = "local"
os.environ["STRIPE_SECRET_KEY"] = ""
os.environ["DATABASE_URL"] = "sqlite:///:memory:"

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import MagicMock

import pytest

from nexvoy.core.booking_lock import LocalBookingLockManager
from nexvoy.core.exceptions import PaymentServiceUnavailableException
from nexvoy.database import build_engine, build_session_factory, init_db
from nexvoy.models.booking import Booking
from nexvoy.models.ledger import refund_idempotency_key
from nexvoy.models.money import to_minor_units
from nexvoy.models.type_details import (
    BookingKind,
    CarDetails,
    FlightDetails,
    FlightSegment,
    HotelDetails,
)
from nexvoy.repositories.memory_booking_repository import InMemoryBookingRepository
from nexvoy.repositories.sql_booking_repository import SqlAlchemyBookingRepository
from nexvoy.services.booking_service import BookingService
from nexvoy.services.notification_service import BookingNotifier
from nexvoy.services.payment_gateway import RefundReceipt

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakePaymentGateway:
    """In-memory PaymentGateway that records calls and can be told to fail."""

    def __init__(self) -> None:
        self.captures: List[Dict[str, Any]] = []
        self.refunds: List[Dict[str, Any]] = []
        self.fail_refunds = False
        self.fail_captures = False

    def capture(self, booking_id: str, amount: Decimal, currency: str) -> str:
        if self.fail_captures:
            raise PaymentServiceUnavailableException("capture timed out", code="PAYMENT_SERVICE_UNAVAILABLE")
        self.captures.append({"booking_id": booking_id, "amount": amount, "currency": currency})
        return f"pi_{booking_id}"

    def refund(
        self,
        payment_reference: str,
        amount: Decimal,
        currency: str,
        *,
        booking_id: str,
    ) -> RefundReceipt:
        if self.fail_refunds:
            raise PaymentServiceUnavailableException("refund timed out", code="PAYMENT_SERVICE_UNAVAILABLE")
        self.refunds.append(
            {
                "payment_reference": payment_reference,
                "amount": amount,
                "currency": currency,
                "booking_id": booking_id,
            }
        )
        return RefundReceipt(
            refund_reference=f"re_{len(self.refunds)}",
            amount_minor=to_minor_units(amount, currency),
            status="succeeded",
            idempotency_key=refund_idempotency_key(booking_id, amount, currency),
        )


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def lock_manager() -> LocalBookingLockManager:
    return LocalBookingLockManager(timeout_s=2.0)


@pytest.fixture
def memory_repository(lock_manager: LocalBookingLockManager) -> InMemoryBookingRepository:
    return InMemoryBookingRepository(lock_manager=lock_manager)


@pytest.fixture
def sql_session_factory():
    engine = build_engine("sqlite:///:memory:")
    init_db(engine)
    yield build_session_factory(engine)
    engine.dispose()


@pytest.fixture
def sql_repository(sql_session_factory, lock_manager: LocalBookingLockManager) -> SqlAlchemyBookingRepository:
    return SqlAlchemyBookingRepository(sql_session_factory, lock_manager=lock_manager)


@pytest.fixture
def payment_gateway() -> FakePaymentGateway:
    return FakePaymentGateway()


@pytest.fixture
def notification_sender() -> MagicMock:
    return MagicMock()


@pytest.fixture
def booking_service(
    memory_repository: InMemoryBookingRepository,
    payment_gateway: FakePaymentGateway,
    notification_sender: MagicMock,
) -> BookingService:
    return BookingService(
        memory_repository,
        payment_gateway=payment_gateway,
        notifier=BookingNotifier(notification_sender),
    )


@pytest.fixture
def hotel_details() -> Callable[..., HotelDetails]:
    def _make(
        *,
        free_until: Optional[datetime] = None,
        non_refundable: bool = False,
        check_in: datetime = NOW + timedelta(days=10),
        nights: int = 3,
    ) -> HotelDetails:
        return HotelDetails(
            check_in=check_in,
            check_out=check_in + timedelta(days=nights),
            free_cancellation_until=free_until,
            non_refundable=non_refundable,
            property_name="Harbour View",
        )

    return _make


@pytest.fixture
def flight_details() -> Callable[..., FlightDetails]:
    def _make(*, departs_in: timedelta = timedelta(days=5), duration: timedelta = timedelta(hours=3)) -> FlightDetails:
        departure = NOW + departs_in
        return FlightDetails(
            outbound=FlightSegment(
                departure_at=departure,
                arrival_at=departure + duration,
                origin="LIS",
                destination="JFK",
                flight_number="NV101",
            )
        )

    return _make


@pytest.fixture
def car_details() -> Callable[..., CarDetails]:
    def _make(*, free_until: Optional[datetime] = None) -> CarDetails:
        return CarDetails(
            pickup_at=NOW + timedelta(days=2),
            dropoff_at=NOW + timedelta(days=6),
            free_cancellation_until=free_until,
            company="Sixt",
            vehicle_name="Golf",
        )

    return _make


@pytest.fixture
def make_booking(hotel_details) -> Callable[..., Booking]:
    """Build (not store) a pending booking, hotel by default."""

    def _make(
        *,
        kind: BookingKind = BookingKind.HOTEL,
        total: Any = "1000.00",
        details: Any = "default",
        owner_id: str = "user-1",
        created_at: datetime = NOW,
        **kwargs: Any,
    ) -> Booking:
        if details == "default":
            details = hotel_details() if kind is BookingKind.HOTEL else None
        return Booking.new(
            owner_id=owner_id,
            kind=kind,
            total=total,
            type_details=details,
            now=created_at,
            **kwargs,
        )

    return _make
