"""
SQLAlchemy booking repository.

Bookings live in ``bookings`` with the payment ledger in the
``booking_payment_ledgers`` satellite table. ``mutate`` holds the booking
lock and additionally reads the row ``FOR UPDATE`` (a no-op on SQLite), so
it stays correct when several processes share one database.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, List, Optional, Tuple, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..core.booking_lock import BookingLockManager
from ..core.exceptions import (
    NotFoundException,
    ReferenceConflictException,
    RepositoryException,
)
from ..database import session_scope
from ..models.booking import Booking, BookingStatus, PaymentStatus, Pricing
from ..models.ledger import LedgerStatus, PaymentLedgerEntry, RefundRecord
from ..models.money import ZERO, round_money
from ..models.records import BookingRecord, PaymentLedgerRecord
from ..models.type_details import BookingKind, ensure_utc, type_details_from_dict
from .base_repository import BookingStats, IBookingRepository, check_immutable_fields

T = TypeVar("T")


def _money(value: Any, currency: str) -> Decimal:
    return round_money(value if value is not None else 0, currency)


def record_to_booking(record: BookingRecord) -> Booking:
    currency = record.currency or "USD"
    ledger: Optional[PaymentLedgerEntry] = None
    if record.ledger is not None:
        row = record.ledger
        ledger = PaymentLedgerEntry(
            booking_id=row.booking_id,
            provider_reference=row.provider_reference,
            amount_captured=_money(row.amount_captured, row.currency),
            currency=row.currency,
            amount_refunded=_money(row.amount_refunded, row.currency),
            status=LedgerStatus(row.status),
            refunds=[RefundRecord.from_dict(r) for r in (row.refunds or [])],
            created_at=ensure_utc(row.created_at),
            updated_at=ensure_utc(row.updated_at),
        )
    return Booking(
        id=record.id,
        booking_reference=record.booking_reference,
        owner_id=record.owner_id,
        kind=BookingKind(record.kind),
        status=BookingStatus(record.status),
        type_details=type_details_from_dict(record.type_details),
        pricing=Pricing(
            total=_money(record.total, currency),
            currency=currency,
            paid_amount=_money(record.paid_amount, currency),
            refunded_amount=_money(record.refunded_amount, currency),
            payment_status=PaymentStatus(record.payment_status),
        ),
        created_at=ensure_utc(record.created_at),  # type: ignore[arg-type]
        updated_at=ensure_utc(record.updated_at),  # type: ignore[arg-type]
        confirmed_at=ensure_utc(record.confirmed_at),
        cancelled_at=ensure_utc(record.cancelled_at),
        completed_at=ensure_utc(record.completed_at),
        expires_at=ensure_utc(record.expires_at),
        cancellation_reason=record.cancellation_reason,
        cancellation_fee=(
            _money(record.cancellation_fee, currency) if record.cancellation_fee is not None else None
        ),
        ledger=ledger,
    )


def apply_booking_to_record(booking: Booking, record: BookingRecord) -> BookingRecord:
    record.id = booking.id
    record.booking_reference = booking.booking_reference
    record.owner_id = booking.owner_id
    record.kind = booking.kind.value
    record.status = booking.status.value
    record.type_details = booking.type_details.to_dict() if booking.type_details else None
    record.currency = booking.pricing.currency
    record.total = booking.pricing.total
    record.paid_amount = booking.pricing.paid_amount
    record.refunded_amount = booking.pricing.refunded_amount
    record.payment_status = booking.pricing.payment_status.value
    record.created_at = booking.created_at
    record.updated_at = booking.updated_at
    record.confirmed_at = booking.confirmed_at
    record.cancelled_at = booking.cancelled_at
    record.completed_at = booking.completed_at
    record.expires_at = booking.expires_at
    record.cancellation_reason = booking.cancellation_reason
    record.cancellation_fee = booking.cancellation_fee

    if booking.ledger is not None:
        entry = booking.ledger
        row = record.ledger or PaymentLedgerRecord(booking_id=booking.id)
        row.provider_reference = entry.provider_reference
        row.currency = entry.currency
        row.amount_captured = entry.amount_captured
        row.amount_refunded = entry.amount_refunded
        row.status = entry.status.value
        row.refunds = [r.to_dict() for r in entry.refunds]
        row.created_at = entry.created_at
        row.updated_at = entry.updated_at
        record.ledger = row
    return record


class SqlAlchemyBookingRepository(IBookingRepository):
    """Booking repository over a SQLAlchemy session factory (one session per call)."""

    def __init__(
        self,
        session_factory: sessionmaker,
        lock_manager: Optional[BookingLockManager] = None,
    ) -> None:
        super().__init__(lock_manager)
        self.session_factory = session_factory

    def _query(self, session: Session):  # type: ignore[no-untyped-def]
        return session.query(BookingRecord)

    def create(self, booking: Booking) -> Booking:
        try:
            with session_scope(self.session_factory) as session:
                session.add(apply_booking_to_record(booking, BookingRecord()))
                session.flush()
        except IntegrityError as exc:
            self.logger.info(
                "booking_create_conflict",
                extra={"booking_id": booking.id, "booking_reference": booking.booking_reference},
            )
            raise ReferenceConflictException(
                "Booking id or reference already exists",
                code="DUPLICATE_BOOKING",
                details={"booking_reference": booking.booking_reference},
            ) from exc
        except SQLAlchemyError as exc:
            self.logger.error(f"Error creating booking {booking.id}: {str(exc)}")
            raise RepositoryException(f"Failed to create booking: {str(exc)}") from exc
        return booking

    def _find_one(self, **filters: Any) -> Optional[Booking]:
        try:
            with session_scope(self.session_factory) as session:
                record = self._query(session).filter_by(**filters).one_or_none()
                return record_to_booking(record) if record else None
        except SQLAlchemyError as exc:
            self.logger.error(f"Error loading booking {filters}: {str(exc)}")
            raise RepositoryException(f"Failed to load booking: {str(exc)}") from exc

    def find_by_id(self, booking_id: str) -> Optional[Booking]:
        return self._find_one(id=booking_id)

    def find_by_reference(self, booking_reference: str) -> Optional[Booking]:
        return self._find_one(booking_reference=booking_reference)

    def find_by_owner(
        self,
        owner_id: str,
        *,
        status: Optional[BookingStatus] = None,
        kind: Optional[BookingKind] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Booking]:
        try:
            with session_scope(self.session_factory) as session:
                query = self._query(session).filter(BookingRecord.owner_id == owner_id)
                if status is not None:
                    query = query.filter(BookingRecord.status == BookingStatus(status).value)
                if kind is not None:
                    query = query.filter(BookingRecord.kind == BookingKind(kind).value)
                records = (
                    query.order_by(BookingRecord.created_at.desc(), BookingRecord.id.desc())
                    .offset(offset)
                    .limit(limit)
                    .all()
                )
                return [record_to_booking(r) for r in records]
        except SQLAlchemyError as exc:
            self.logger.error(f"Error listing bookings for owner {owner_id}: {str(exc)}")
            raise RepositoryException(f"Failed to list bookings: {str(exc)}") from exc

    def find_expired(self, now: datetime, limit: int = 200) -> List[Booking]:
        try:
            with session_scope(self.session_factory) as session:
                records = (
                    self._query(session)
                    .filter(
                        BookingRecord.status == BookingStatus.PENDING.value,
                        BookingRecord.expires_at.isnot(None),
                        BookingRecord.expires_at < ensure_utc(now),
                    )
                    .order_by(BookingRecord.expires_at.asc())
                    .limit(limit)
                    .all()
                )
                return [record_to_booking(r) for r in records]
        except SQLAlchemyError as exc:
            self.logger.error(f"Error finding expired bookings: {str(exc)}")
            raise RepositoryException(f"Failed to find expired bookings: {str(exc)}") from exc

    def find_refund_pending(self, limit: int = 100) -> List[Booking]:
        try:
            with session_scope(self.session_factory) as session:
                records = (
                    self._query(session)
                    .filter(
                        BookingRecord.status == BookingStatus.CANCELLED.value,
                        BookingRecord.payment_status.in_(
                            [PaymentStatus.PAID.value, PaymentStatus.PARTIALLY_REFUNDED.value]
                        ),
                    )
                    .order_by(BookingRecord.cancelled_at.asc())
                    .all()
                )
                bookings = [record_to_booking(r) for r in records]
        except SQLAlchemyError as exc:
            self.logger.error(f"Error finding refund-pending bookings: {str(exc)}")
            raise RepositoryException(f"Failed to find refund-pending bookings: {str(exc)}") from exc
        return [b for b in bookings if b.refund_due() > ZERO][:limit]

    def get_stats(self, start: datetime, end: datetime) -> BookingStats:
        stats = BookingStats()
        try:
            with session_scope(self.session_factory) as session:
                records = (
                    self._query(session)
                    .filter(
                        BookingRecord.created_at >= ensure_utc(start),
                        BookingRecord.created_at <= ensure_utc(end),
                    )
                    .all()
                )
                for record in records:
                    stats.add(record_to_booking(record))
        except SQLAlchemyError as exc:
            self.logger.error(f"Error computing booking stats: {str(exc)}")
            raise RepositoryException(f"Failed to compute booking stats: {str(exc)}") from exc
        return stats

    def _save(self, session: Session, booking: Booking, *, for_update: bool) -> Booking:
        query = self._query(session).filter(BookingRecord.id == booking.id)
        if for_update:
            query = query.with_for_update(of=BookingRecord)
        record = query.one_or_none()
        if record is None:
            raise NotFoundException(f"Booking {booking.id} not found", code="BOOKING_NOT_FOUND")
        check_immutable_fields(record_to_booking(record), booking)
        apply_booking_to_record(booking, record)
        return booking

    def _replace(self, booking: Booking) -> Booking:
        try:
            with session_scope(self.session_factory) as session:
                return self._save(session, booking, for_update=True)
        except SQLAlchemyError as exc:
            self.logger.error(f"Error updating booking {booking.id}: {str(exc)}")
            raise RepositoryException(f"Failed to update booking: {str(exc)}") from exc

    def _mutate_locked(self, booking_id: str, fn: Callable[[Booking], T]) -> Tuple[Booking, T]:
        try:
            with session_scope(self.session_factory) as session:
                record = (
                    self._query(session)
                    .filter(BookingRecord.id == booking_id)
                    .with_for_update(of=BookingRecord)
                    .one_or_none()
                )
                if record is None:
                    raise NotFoundException(
                        f"Booking {booking_id} not found", code="BOOKING_NOT_FOUND"
                    )
                booking = record_to_booking(record)
                result = fn(booking)
                check_immutable_fields(record_to_booking(record), booking)
                apply_booking_to_record(booking, record)
                return booking, result
        except SQLAlchemyError as exc:
            self.logger.error(f"Error mutating booking {booking_id}: {str(exc)}")
            raise RepositoryException(f"Failed to update booking: {str(exc)}") from exc
