# nexvoy/repositories/base_repository.py
"""
Booking Repository interface.

The repository is the persistence boundary and the concurrency-control
boundary of the booking core:
- atomic create / read / whole-aggregate replace
- secondary lookups by booking reference and by owner
- ``mutate``: a read-modify-write executed inside the booking's exclusive
  critical section, so two operations on the same booking serialize while
  operations on different bookings proceed in parallel.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
import logging
from typing import Callable, Dict, List, Optional, Tuple, TypeVar

from ..core.booking_lock import BookingLockManager, LocalBookingLockManager
from ..core.exceptions import ValidationException
from ..models.booking import Booking, BookingStatus
from ..models.money import ZERO
from ..models.type_details import BookingKind

T = TypeVar("T")

logger = logging.getLogger(__name__)

IMMUTABLE_FIELDS = ("id", "booking_reference", "owner_id", "kind")

REVENUE_STATUSES = frozenset({BookingStatus.CONFIRMED, BookingStatus.COMPLETED})


@dataclass
class BookingStats:
    total: int = 0
    by_kind: Dict[str, int] = field(default_factory=dict)
    by_status: Dict[str, int] = field(default_factory=dict)
    revenue_by_currency: Dict[str, Decimal] = field(default_factory=dict)

    def add(self, booking: Booking) -> None:
        self.total += 1
        self.by_kind[booking.kind.value] = self.by_kind.get(booking.kind.value, 0) + 1
        self.by_status[booking.status.value] = self.by_status.get(booking.status.value, 0) + 1
        if booking.status in REVENUE_STATUSES:
            currency = booking.pricing.currency
            self.revenue_by_currency[currency] = (
                self.revenue_by_currency.get(currency, ZERO) + booking.pricing.total
            )


def check_immutable_fields(current: Booking, replacement: Booking) -> None:
    changed = [
        name for name in IMMUTABLE_FIELDS if getattr(current, name) != getattr(replacement, name)
    ]
    if changed:
        raise ValidationException(
            f"Immutable booking fields cannot change: {', '.join(changed)}",
            errors=[f"{name} is immutable" for name in changed],
        )


class IBookingRepository(ABC):
    """
    Abstract booking repository.

    Implementations return detached aggregates: mutating a returned Booking
    has no effect until it is written back through ``update`` or ``mutate``.
    """

    def __init__(self, lock_manager: Optional[BookingLockManager] = None) -> None:
        self.lock_manager = lock_manager or LocalBookingLockManager()
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @abstractmethod
    def create(self, booking: Booking) -> Booking:
        """
        Store a new booking.

        Raises:
            ReferenceConflictException: id or booking reference already taken
            RepositoryException: storage failure
        """

    @abstractmethod
    def find_by_id(self, booking_id: str) -> Optional[Booking]:
        """Return the booking with this id, or None."""

    @abstractmethod
    def find_by_reference(self, booking_reference: str) -> Optional[Booking]:
        """Return the booking with this NVY- reference, or None."""

    @abstractmethod
    def find_by_owner(
        self,
        owner_id: str,
        *,
        status: Optional[BookingStatus] = None,
        kind: Optional[BookingKind] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Booking]:
        """Owner's bookings, newest first, optionally filtered by status and kind."""

    @abstractmethod
    def find_expired(self, now: datetime, limit: int = 200) -> List[Booking]:
        """Pending bookings whose ``expires_at`` is before ``now``."""

    @abstractmethod
    def find_refund_pending(self, limit: int = 100) -> List[Booking]:
        """Cancelled bookings that still owe the customer a refund."""

    @abstractmethod
    def get_stats(self, start: datetime, end: datetime) -> BookingStats:
        """Counts and revenue for bookings created within [start, end]."""

    @abstractmethod
    def _replace(self, booking: Booking) -> Booking:
        """Whole-aggregate replace. Caller holds the booking lock."""

    @abstractmethod
    def _mutate_locked(
        self, booking_id: str, fn: Callable[[Booking], T]
    ) -> Tuple[Booking, T]:
        """Load, apply ``fn`` and persist. Caller holds the booking lock."""

    def update(self, booking: Booking) -> Booking:
        """
        Replace the stored aggregate with ``booking``.

        Raises:
            NotFoundException: booking does not exist
            ValidationException: an immutable field changed
        """
        with self.lock_manager.lock(booking.id):
            return self._replace(booking)

    def mutate(self, booking_id: str, fn: Callable[[Booking], T]) -> Tuple[Booking, T]:
        """
        Run ``fn`` against the current booking inside its critical section
        and persist the result.

        Returns the updated booking and whatever ``fn`` returned. If ``fn``
        raises, nothing is written.

        Raises:
            NotFoundException: booking does not exist
            ServiceUnavailableException: lock could not be acquired in time
        """
        with self.lock_manager.lock(booking_id):
            return self._mutate_locked(booking_id, fn)
