"""
Tests for BookingService: lifecycle operations, refunds and notifications
over the in-memory repository and a fake payment gateway.
"""

from datetime import timedelta
from decimal import Decimal
import threading
from unittest.mock import MagicMock, patch

import pytest

from nexvoy.core.exceptions import (
    AlreadyFinalException,
    InvalidTransitionException,
    NotFoundException,
    PaymentServiceUnavailableException,
    RepositoryException,
    ServiceUnavailableException,
    ValidationException,
)
from nexvoy.models.booking import BookingStatus, PaymentStatus, TransitionError
from nexvoy.models.type_details import BookingKind
from nexvoy.schemas.booking import BookingCreate, BookingListQuery
from nexvoy.services.booking_service import BookingService


def hotel_request(now, *, total="1000.00", free_until=None, owner_id="user-1", **details):
    type_details = {
        "kind": "hotel",
        "check_in": now + timedelta(days=10),
        "check_out": now + timedelta(days=13),
        "property_name": "Harbour View",
        "free_cancellation_until": free_until,
    }
    type_details.update(details)
    return BookingCreate(owner_id=owner_id, kind="hotel", total=total, type_details=type_details)


def storage_fails_after(repository, successful_mutations):
    """Let ``successful_mutations`` calls to ``mutate`` through, then fail like a dropped DB."""
    real_mutate = repository.mutate
    calls = []

    def mutate(booking_id, fn):
        calls.append(booking_id)
        if len(calls) > successful_mutations:
            raise RepositoryException("db down")
        return real_mutate(booking_id, fn)

    return patch.object(repository, "mutate", side_effect=mutate)


@pytest.fixture
def confirmed_booking(booking_service, now):
    """A confirmed 1000.00 hotel booking past its free-cancellation window."""
    booking = booking_service.create_booking(hotel_request(now, free_until=now - timedelta(days=1)), now=now)
    booking_service.capture_and_confirm(booking.id, now=now)
    return booking_service.get_booking(booking.id)


class TestCreateBooking:
    def test_creates_pending_booking(self, booking_service, now):
        booking = booking_service.create_booking(hotel_request(now), now=now)

        assert booking.status is BookingStatus.PENDING
        assert booking.expires_at == now + timedelta(minutes=15)
        assert booking.booking_reference.startswith("NVY-")
        assert booking_service.get_booking(booking.id).owner_id == "user-1"

    def test_reference_collision_is_retried(self, booking_service, now):
        with patch(
            "nexvoy.models.booking.generate_booking_reference",
            side_effect=["NVY-AAAAA1", "NVY-AAAAA1", "NVY-BBBBB2"],
        ):
            first = booking_service.create_booking(hotel_request(now), now=now)
            second = booking_service.create_booking(hotel_request(now), now=now)

        assert first.booking_reference == "NVY-AAAAA1"
        assert second.booking_reference == "NVY-BBBBB2"

    def test_reference_exhaustion(self, booking_service, now):
        with patch("nexvoy.models.booking.generate_booking_reference", return_value="NVY-AAAAA1"):
            booking_service.create_booking(hotel_request(now), now=now)
            with pytest.raises(ServiceUnavailableException) as exc_info:
                booking_service.create_booking(hotel_request(now), now=now)

        assert exc_info.value.code == "REFERENCE_EXHAUSTED"

    def test_insurance_without_details(self, booking_service, now):
        data = BookingCreate(owner_id="user-1", kind="insurance", total="45.00")

        booking = booking_service.create_booking(data, now=now)

        assert booking.kind is BookingKind.INSURANCE
        assert booking.type_details is None

    def test_storage_failure_is_service_unavailable(self, now):
        repository = MagicMock()
        repository.create.side_effect = RepositoryException("database is locked")
        service = BookingService(repository, payment_gateway=MagicMock())

        with pytest.raises(ServiceUnavailableException) as exc_info:
            service.create_booking(hotel_request(now), now=now)

        assert exc_info.value.code == "STORAGE_UNAVAILABLE"


class TestLookups:
    def test_missing_booking(self, booking_service):
        with pytest.raises(NotFoundException) as exc_info:
            booking_service.get_booking("missing")
        assert exc_info.value.code == "BOOKING_NOT_FOUND"

    def test_lookup_by_reference_normalizes(self, booking_service, now):
        booking = booking_service.create_booking(hotel_request(now), now=now)

        found = booking_service.get_booking_by_reference(f"  {booking.booking_reference.lower()} ")

        assert found.id == booking.id

    def test_list_bookings_filters(self, booking_service, now):
        kept = booking_service.create_booking(hotel_request(now), now=now)
        dropped = booking_service.create_booking(hotel_request(now), now=now)
        booking_service.cancel_booking(dropped.id, now=now)
        booking_service.create_booking(hotel_request(now, owner_id="user-2"), now=now)

        pending = booking_service.list_bookings("user-1", BookingListQuery(status="pending"))

        assert [b.id for b in pending] == [kept.id]
        assert len(booking_service.list_bookings("user-1")) == 2

    def test_stats_window_validation(self, booking_service, now):
        with pytest.raises(ValidationException):
            booking_service.get_booking_stats(now, now - timedelta(days=1))


class TestConfirm:
    def test_capture_and_confirm(self, booking_service, payment_gateway, notification_sender, now):
        booking = booking_service.create_booking(hotel_request(now), now=now)

        result = booking_service.capture_and_confirm(booking.id, now=now)

        assert result.changed
        stored = booking_service.get_booking(booking.id)
        assert stored.status is BookingStatus.CONFIRMED
        assert stored.ledger.provider_reference == f"pi_{booking.id}"
        assert payment_gateway.captures == [
            {"booking_id": booking.id, "amount": Decimal("1000.00"), "currency": "USD"}
        ]
        notification_sender.notify_confirmed.assert_called_once()

    def test_confirm_is_idempotent(self, booking_service, notification_sender, now):
        booking = booking_service.create_booking(hotel_request(now), now=now)

        first = booking_service.confirm_booking(booking.id, payment_reference="pi_1", now=now)
        second = booking_service.confirm_booking(booking.id, payment_reference="pi_1", now=now)

        assert first.changed and second.succeeded and not second.changed
        notification_sender.notify_confirmed.assert_called_once()

    def test_confirm_requires_payment_reference(self, booking_service, now):
        booking = booking_service.create_booking(hotel_request(now), now=now)
        with pytest.raises(ValidationException):
            booking_service.confirm_booking(booking.id, payment_reference="")

    def test_confirm_cancelled_booking_is_rejected(self, booking_service, now):
        booking = booking_service.create_booking(hotel_request(now), now=now)
        booking_service.cancel_booking(booking.id, now=now)

        result = booking_service.confirm_booking(booking.id, payment_reference="pi_1", now=now)

        assert result.error is TransitionError.INVALID_TRANSITION
        assert booking_service.get_booking(booking.id).status is BookingStatus.CANCELLED

    def test_capture_failure_leaves_booking_pending(self, booking_service, payment_gateway, now):
        booking = booking_service.create_booking(hotel_request(now), now=now)
        payment_gateway.fail_captures = True

        with pytest.raises(PaymentServiceUnavailableException):
            booking_service.capture_and_confirm(booking.id, now=now)

        assert booking_service.get_booking(booking.id).status is BookingStatus.PENDING

    def test_capture_skipped_for_confirmed_booking(self, booking_service, payment_gateway, confirmed_booking, now):
        result = booking_service.capture_and_confirm(confirmed_booking.id, now=now)

        assert result.succeeded and not result.changed
        assert len(payment_gateway.captures) == 1

    def test_capture_for_booking_expired_mid_flight_is_refunded(
        self, booking_service, payment_gateway, notification_sender, now
    ):
        created_at = now - timedelta(minutes=20)
        booking = booking_service.create_booking(hotel_request(created_at), now=created_at)
        real_capture = payment_gateway.capture

        def capture_while_reaper_runs(booking_id, amount, currency):
            booking_service.expire_booking(booking_id, now)
            return real_capture(booking_id, amount, currency)

        with patch.object(payment_gateway, "capture", side_effect=capture_while_reaper_runs):
            result = booking_service.capture_and_confirm(booking.id, now=now)

        assert result.error is TransitionError.INVALID_TRANSITION
        assert booking_service.get_booking(booking.id).status is BookingStatus.FAILED
        assert payment_gateway.refunds == [
            {
                "payment_reference": f"pi_{booking.id}",
                "amount": Decimal("1000.00"),
                "currency": "USD",
                "booking_id": booking.id,
            }
        ]
        notification_sender.notify_confirmed.assert_not_called()

    def test_failed_release_of_rejected_capture_is_raised(self, booking_service, payment_gateway, now):
        booking = booking_service.create_booking(hotel_request(now), now=now)
        real_capture = payment_gateway.capture

        def capture_while_cancelled(booking_id, amount, currency):
            booking_service.cancel_booking(booking_id, now=now)
            return real_capture(booking_id, amount, currency)

        payment_gateway.fail_refunds = True
        with patch.object(payment_gateway, "capture", side_effect=capture_while_cancelled):
            with pytest.raises(PaymentServiceUnavailableException):
                booking_service.capture_and_confirm(booking.id, now=now)

        assert booking_service.get_booking(booking.id).status is BookingStatus.CANCELLED
        assert len(payment_gateway.captures) == 1

    def test_notification_failure_does_not_block_confirm(self, booking_service, notification_sender, now):
        notification_sender.notify_confirmed.side_effect = RuntimeError("smtp down")
        booking = booking_service.create_booking(hotel_request(now), now=now)

        result = booking_service.confirm_booking(booking.id, payment_reference="pi_1", now=now)

        assert result.changed
        assert booking_service.get_booking(booking.id).status is BookingStatus.CONFIRMED


class TestCancel:
    def test_cancel_after_free_window_refunds_total_minus_fee(
        self, booking_service, payment_gateway, notification_sender, confirmed_booking, now
    ):
        outcome = booking_service.cancel_booking(confirmed_booking.id, now=now + timedelta(hours=1))

        assert outcome.fee == Decimal("100.00")
        assert outcome.refund_amount == Decimal("900.00")
        assert not outcome.refund_pending
        assert payment_gateway.refunds[0]["amount"] == Decimal("900.00")
        assert payment_gateway.refunds[0]["payment_reference"] == f"pi_{confirmed_booking.id}"

        stored = booking_service.get_booking(confirmed_booking.id)
        assert stored.status is BookingStatus.CANCELLED
        assert stored.pricing.refunded_amount == Decimal("900.00")
        assert stored.pricing.payment_status is PaymentStatus.PARTIALLY_REFUNDED
        notification_sender.notify_cancelled.assert_called_once()
        assert notification_sender.notify_cancelled.call_args.args[1] == Decimal("900.00")

    def test_cancel_inside_free_window_fully_refunds(self, booking_service, now):
        booking = booking_service.create_booking(hotel_request(now, free_until=now + timedelta(days=2)), now=now)
        booking_service.capture_and_confirm(booking.id, now=now)

        outcome = booking_service.cancel_booking(booking.id, now=now)

        assert outcome.fee == Decimal("0.00")
        assert outcome.booking.status is BookingStatus.REFUNDED
        assert outcome.booking.pricing.payment_status is PaymentStatus.FULLY_REFUNDED

    def test_cancel_non_refundable_moves_no_money(self, booking_service, payment_gateway, now):
        booking = booking_service.create_booking(hotel_request(now, non_refundable=True), now=now)
        booking_service.capture_and_confirm(booking.id, now=now)

        outcome = booking_service.cancel_booking(booking.id, now=now)

        assert outcome.fee == Decimal("1000.00")
        assert outcome.refund_amount == Decimal("0")
        assert payment_gateway.refunds == []
        assert outcome.booking.pricing.payment_status is PaymentStatus.PAID

    def test_cancel_pending_booking_without_payment(self, booking_service, payment_gateway, now):
        booking = booking_service.create_booking(hotel_request(now), now=now)

        outcome = booking_service.cancel_booking(booking.id, "changed plans", now=now)

        assert outcome.result.changed
        assert outcome.booking.cancellation_reason == "changed plans"
        assert payment_gateway.refunds == []

    def test_second_cancel_is_already_final(self, booking_service, payment_gateway, confirmed_booking, now):
        booking_service.cancel_booking(confirmed_booking.id, now=now)

        again = booking_service.cancel_booking(confirmed_booking.id, now=now)

        assert again.result.error is TransitionError.ALREADY_FINAL
        assert len(payment_gateway.refunds) == 1

    def test_refund_failure_keeps_cancellation_and_retries_later(
        self, booking_service, payment_gateway, confirmed_booking, now
    ):
        payment_gateway.fail_refunds = True

        outcome = booking_service.cancel_booking(confirmed_booking.id, now=now)

        assert outcome.refund_pending
        assert outcome.refund_error.code == "PAYMENT_SERVICE_UNAVAILABLE"
        stored = booking_service.get_booking(confirmed_booking.id)
        assert stored.status is BookingStatus.CANCELLED
        assert stored.pricing.payment_status is PaymentStatus.PAID
        assert stored.pricing.refunded_amount == Decimal("0")

        payment_gateway.fail_refunds = False
        report = booking_service.retry_pending_refunds(now=now)

        assert (report.attempted, report.refunded, report.failed) == (1, 1, 0)
        stored = booking_service.get_booking(confirmed_booking.id)
        assert stored.pricing.refunded_amount == Decimal("900.00")
        assert stored.pricing.payment_status is PaymentStatus.PARTIALLY_REFUNDED
        assert booking_service.retry_pending_refunds(now=now).attempted == 0

    def test_storage_failure_while_recording_refund_defers_it(
        self, booking_service, payment_gateway, notification_sender, confirmed_booking, now
    ):
        # First mutate commits the cancel, the second (recording the refund) fails
        with storage_fails_after(booking_service.repository, 1):
            outcome = booking_service.cancel_booking(confirmed_booking.id, now=now)

        assert outcome.result.changed
        assert outcome.refund_pending
        assert isinstance(outcome.refund_error, ServiceUnavailableException)
        assert outcome.refund_error.code == "REFUND_NOT_RECORDED"
        assert outcome.refund_amount == Decimal("0")
        notification_sender.notify_cancelled.assert_called_once()
        stored = booking_service.get_booking(confirmed_booking.id)
        assert stored.status is BookingStatus.CANCELLED
        assert stored.pricing.refunded_amount == Decimal("0")

        report = booking_service.retry_pending_refunds(now=now)

        assert (report.attempted, report.refunded, report.failed) == (1, 1, 0)
        stored = booking_service.get_booking(confirmed_booking.id)
        assert stored.pricing.refunded_amount == Decimal("900.00")
        assert len(stored.ledger.refunds) == 1
        assert [r["amount"] for r in payment_gateway.refunds] == [Decimal("900.00"), Decimal("900.00")]

    def test_retry_reports_failures(self, booking_service, payment_gateway, confirmed_booking, now):
        payment_gateway.fail_refunds = True
        booking_service.cancel_booking(confirmed_booking.id, now=now)

        report = booking_service.retry_pending_refunds(now=now)

        assert report.failed == 1
        assert report.failed_booking_ids == [confirmed_booking.id]

    @pytest.mark.concurrency
    def test_concurrent_cancels_refund_once(self, booking_service, payment_gateway, confirmed_booking, now):
        results = []
        barrier = threading.Barrier(4)

        def cancel():
            barrier.wait()
            results.append(booking_service.cancel_booking(confirmed_booking.id, now=now))

        threads = [threading.Thread(target=cancel) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sum(1 for r in results if r.result.changed) == 1
        assert sum(1 for r in results if r.result.error is TransitionError.ALREADY_FINAL) == 3
        assert len(payment_gateway.refunds) == 1
        assert booking_service.get_booking(confirmed_booking.id).pricing.refunded_amount == Decimal("900.00")


class TestRefundBooking:
    def test_partial_refund_on_confirmed(self, booking_service, confirmed_booking, now):
        outcome = booking_service.refund_booking(confirmed_booking.id, "250.00", now=now)

        assert outcome.amount == Decimal("250.00")
        assert outcome.booking.status is BookingStatus.CONFIRMED
        assert outcome.booking.pricing.payment_status is PaymentStatus.PARTIALLY_REFUNDED

    def test_refund_capped_at_paid(self, booking_service, confirmed_booking, payment_gateway, now):
        outcome = booking_service.refund_booking(confirmed_booking.id, "5000", now=now)

        assert outcome.amount == Decimal("1000.00")
        assert payment_gateway.refunds[0]["amount"] == Decimal("1000.00")
        assert outcome.booking.status is BookingStatus.REFUNDED

    def test_refund_after_full_refund_is_already_final(self, booking_service, confirmed_booking, now):
        booking_service.refund_booking(confirmed_booking.id, "1000", now=now)

        with pytest.raises(AlreadyFinalException):
            booking_service.refund_booking(confirmed_booking.id, "1", now=now)

    def test_refund_pending_booking_is_invalid(self, booking_service, payment_gateway, now):
        booking = booking_service.create_booking(hotel_request(now), now=now)

        with pytest.raises(InvalidTransitionException):
            booking_service.refund_booking(booking.id, "10", now=now)

        assert payment_gateway.refunds == []

    @pytest.mark.parametrize("amount", ["0", "-5", "0.001"])
    def test_non_positive_amount(self, booking_service, confirmed_booking, amount):
        with pytest.raises(ValidationException):
            booking_service.refund_booking(confirmed_booking.id, amount)

    def test_provider_failure_records_nothing(self, booking_service, payment_gateway, confirmed_booking, now):
        payment_gateway.fail_refunds = True

        with pytest.raises(PaymentServiceUnavailableException):
            booking_service.refund_booking(confirmed_booking.id, "100", now=now)

        assert booking_service.get_booking(confirmed_booking.id).pricing.refunded_amount == Decimal("0")

    def test_storage_failure_after_provider_refund_is_service_unavailable(
        self, booking_service, payment_gateway, confirmed_booking, now
    ):
        with storage_fails_after(booking_service.repository, 0):
            with pytest.raises(ServiceUnavailableException) as exc_info:
                booking_service.refund_booking(confirmed_booking.id, "100", now=now)

        assert exc_info.value.code == "REFUND_NOT_RECORDED"
        assert exc_info.value.details["refund_reference"] == "re_1"
        assert len(payment_gateway.refunds) == 1

        # Retrying with the same amount reuses the idempotency key and records it once
        outcome = booking_service.refund_booking(confirmed_booking.id, "100", now=now)

        assert outcome.booking.pricing.refunded_amount == Decimal("100.00")


class TestCompleteAndExpire:
    def test_complete_after_checkout(self, booking_service, confirmed_booking, now):
        result = booking_service.complete_booking(confirmed_booking.id, now=now + timedelta(days=14))

        assert result.changed
        assert booking_service.get_booking(confirmed_booking.id).status is BookingStatus.COMPLETED

    def test_complete_before_checkout_is_rejected(self, booking_service, confirmed_booking, now):
        result = booking_service.complete_booking(confirmed_booking.id, now=now)
        assert result.error is TransitionError.INVALID_TRANSITION

    def test_expire_overdue_pending(self, booking_service, now):
        booking = booking_service.create_booking(hotel_request(now), now=now - timedelta(minutes=20))

        assert [b.id for b in booking_service.find_expired_bookings(now, 10)] == [booking.id]
        assert booking_service.expire_booking(booking.id, now).changed
        assert booking_service.get_booking(booking.id).status is BookingStatus.FAILED
