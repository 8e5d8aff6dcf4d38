# nexvoy/services/dependencies.py
"""
Dependency wiring for the booking services.

Each getter builds its component once per process from ``settings``; tests
call ``reset_dependencies()`` to drop the cached instances.
"""

from functools import lru_cache

from ..core.config import settings
from ..repositories.base_repository import IBookingRepository
from ..repositories.factory import RepositoryFactory
from .booking_service import BookingService
from .expiry_reaper import ExpiryReaper
from .notification_service import BookingNotifier
from .payment_gateway import PaymentGateway, StripePaymentGateway


@lru_cache(maxsize=1)
def get_booking_repository() -> IBookingRepository:
    return RepositoryFactory.create_booking_repository(settings)


@lru_cache(maxsize=1)
def get_payment_gateway() -> PaymentGateway:
    return StripePaymentGateway(settings)


@lru_cache(maxsize=1)
def get_booking_service() -> BookingService:
    """
    Shared BookingService.

    Usage in routes:
        booking_service: BookingService = Depends(get_booking_service)
    """
    return BookingService(
        get_booking_repository(),
        payment_gateway=get_payment_gateway(),
        notifier=BookingNotifier(),
        config=settings,
    )


@lru_cache(maxsize=1)
def get_expiry_reaper() -> ExpiryReaper:
    return ExpiryReaper(
        get_booking_service(),
        batch_size=settings.reaper_batch_size,
        interval_seconds=settings.reaper_interval_seconds,
    )


def reset_dependencies() -> None:
    for getter in (
        get_expiry_reaper,
        get_booking_service,
        get_payment_gateway,
        get_booking_repository,
    ):
        getter.cache_clear()
