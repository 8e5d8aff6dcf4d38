"""In-memory booking repository with owner and reference indices."""

import copy
from datetime import datetime
import threading
from typing import Callable, Dict, List, Optional, Set, Tuple, TypeVar

from ..core.booking_lock import BookingLockManager
from ..core.exceptions import NotFoundException, ReferenceConflictException
from ..models.booking import Booking, BookingStatus, PaymentStatus
from ..models.money import ZERO
from ..models.type_details import BookingKind, ensure_utc
from .base_repository import BookingStats, IBookingRepository, check_immutable_fields

T = TypeVar("T")


class InMemoryBookingRepository(IBookingRepository):
    """
    Dict-backed repository.

    Aggregates are deep-copied on the way in and out, so callers never share
    mutable state with the store. ``_index_lock`` guards the maps themselves;
    per-booking serialization comes from the lock manager.
    """

    def __init__(self, lock_manager: Optional[BookingLockManager] = None) -> None:
        super().__init__(lock_manager)
        self._bookings: Dict[str, Booking] = {}
        self._by_owner: Dict[str, Set[str]] = {}
        self._by_reference: Dict[str, str] = {}
        self._index_lock = threading.RLock()

    def create(self, booking: Booking) -> Booking:
        with self._index_lock:
            if booking.id in self._bookings:
                raise ReferenceConflictException(
                    f"Booking id {booking.id} already exists",
                    code="DUPLICATE_BOOKING_ID",
                    details={"field": "id"},
                )
            if booking.booking_reference in self._by_reference:
                raise ReferenceConflictException(
                    f"Booking reference {booking.booking_reference} already exists",
                    code="DUPLICATE_BOOKING_REFERENCE",
                    details={"field": "booking_reference"},
                )
            stored = copy.deepcopy(booking)
            self._bookings[stored.id] = stored
            self._by_owner.setdefault(stored.owner_id, set()).add(stored.id)
            self._by_reference[stored.booking_reference] = stored.id
        self.logger.debug(
            "booking_stored",
            extra={"booking_id": booking.id, "booking_reference": booking.booking_reference},
        )
        return copy.deepcopy(stored)

    def find_by_id(self, booking_id: str) -> Optional[Booking]:
        with self._index_lock:
            booking = self._bookings.get(booking_id)
            return copy.deepcopy(booking) if booking else None

    def find_by_reference(self, booking_reference: str) -> Optional[Booking]:
        with self._index_lock:
            booking_id = self._by_reference.get(booking_reference)
            if booking_id is None:
                return None
            return copy.deepcopy(self._bookings[booking_id])

    def find_by_owner(
        self,
        owner_id: str,
        *,
        status: Optional[BookingStatus] = None,
        kind: Optional[BookingKind] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Booking]:
        with self._index_lock:
            bookings = [self._bookings[i] for i in self._by_owner.get(owner_id, ())]
            if status is not None:
                bookings = [b for b in bookings if b.status == status]
            if kind is not None:
                bookings = [b for b in bookings if b.kind == kind]
            bookings.sort(key=lambda b: (b.created_at, b.id), reverse=True)
            return [copy.deepcopy(b) for b in bookings[offset : offset + limit]]

    def find_expired(self, now: datetime, limit: int = 200) -> List[Booking]:
        now = ensure_utc(now)  # type: ignore[assignment]
        with self._index_lock:
            expired = [
                b
                for b in self._bookings.values()
                if b.status is BookingStatus.PENDING and b.expires_at is not None and b.expires_at < now
            ]
            expired.sort(key=lambda b: b.expires_at)  # type: ignore[arg-type,return-value]
            return [copy.deepcopy(b) for b in expired[:limit]]

    def find_refund_pending(self, limit: int = 100) -> List[Booking]:
        with self._index_lock:
            pending = [
                b
                for b in self._bookings.values()
                if b.status is BookingStatus.CANCELLED
                and b.pricing.payment_status in (PaymentStatus.PAID, PaymentStatus.PARTIALLY_REFUNDED)
                and b.refund_due() > ZERO
            ]
            pending.sort(key=lambda b: b.cancelled_at or b.updated_at)
            return [copy.deepcopy(b) for b in pending[:limit]]

    def get_stats(self, start: datetime, end: datetime) -> BookingStats:
        start, end = ensure_utc(start), ensure_utc(end)  # type: ignore[assignment]
        stats = BookingStats()
        with self._index_lock:
            for booking in self._bookings.values():
                if start <= booking.created_at <= end:
                    stats.add(booking)
        return stats

    def _replace(self, booking: Booking) -> Booking:
        with self._index_lock:
            current = self._bookings.get(booking.id)
            if current is None:
                raise NotFoundException(f"Booking {booking.id} not found", code="BOOKING_NOT_FOUND")
            check_immutable_fields(current, booking)
            self._bookings[booking.id] = copy.deepcopy(booking)
        return copy.deepcopy(booking)

    def _mutate_locked(self, booking_id: str, fn: Callable[[Booking], T]) -> Tuple[Booking, T]:
        booking = self.find_by_id(booking_id)
        if booking is None:
            raise NotFoundException(f"Booking {booking_id} not found", code="BOOKING_NOT_FOUND")
        result = fn(booking)
        return self._replace(booking), result
