from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from nexvoy.core.exceptions import RepositoryException
from nexvoy.models.booking import BookingStatus
from nexvoy.models.records import BookingRecord
from nexvoy.models.type_details import BookingKind
from nexvoy.repositories.sql_booking_repository import (
    SqlAlchemyBookingRepository,
    apply_booking_to_record,
    record_to_booking,
)


class TestRecordMapping:
    def test_booking_survives_record_mapping(self, make_booking, now):
        booking = make_booking()
        booking.confirm(now, payment_reference="pi_1")
        booking.cancel(now=now)
        booking.apply_refund("900", "re_1", now)

        record = apply_booking_to_record(booking, BookingRecord())
        restored = record_to_booking(record)

        assert restored == booking
        assert record.ledger.refunds[0]["refund_reference"] == "re_1"

    def test_naive_timestamps_are_read_as_utc(self, make_booking, now):
        booking = make_booking()
        record = apply_booking_to_record(booking, BookingRecord())
        record.created_at = now.replace(tzinfo=None)

        assert record_to_booking(record).created_at == now

    def test_amounts_rounded_to_currency(self, make_booking):
        record = apply_booking_to_record(make_booking(), BookingRecord())
        record.total = Decimal("1000.000")

        assert str(record_to_booking(record).pricing.total) == "1000.00"


class TestSqlRepository:
    def test_insurance_without_details(self, sql_repository, make_booking, now):
        booking = make_booking(kind=BookingKind.INSURANCE, details=None, total="30.00")
        sql_repository.create(booking)

        updated, _ = sql_repository.mutate(booking.id, lambda b: b.confirm(now))

        stored = sql_repository.find_by_id(booking.id)
        assert stored.type_details is None
        assert stored.status is BookingStatus.CONFIRMED
        assert stored.ledger is None

    def test_expiry_is_persisted(self, sql_repository, make_booking, now):
        booking = make_booking(created_at=now - timedelta(hours=1))
        sql_repository.create(booking)

        sql_repository.mutate(booking.id, lambda b: b.mark_expired(now))

        stored = sql_repository.find_by_id(booking.id)
        assert stored.status is BookingStatus.FAILED
        assert stored.expires_at is None
        assert stored.cancellation_reason == "expired"
        assert sql_repository.find_expired(now) == []

    def test_storage_errors_become_repository_exceptions(self, lock_manager):
        session = MagicMock()
        session.query.side_effect = OperationalError("SELECT", {}, Exception("database is locked"))
        repository = SqlAlchemyBookingRepository(MagicMock(return_value=session), lock_manager=lock_manager)

        with pytest.raises(RepositoryException):
            repository.find_by_id("b1")

        session.rollback.assert_called_once()
        session.close.assert_called_once()
