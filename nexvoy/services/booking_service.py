# nexvoy/services/booking_service.py
"""
Booking Service for the Nexvoy booking core.

Wraps the Booking state machine with persistence, payments and
notifications:
- every transition runs through ``repository.mutate`` so operations on the
  same booking serialize while different bookings proceed in parallel
- payment provider calls happen outside the booking lock
- a cancellation stands even when the follow-up refund fails; the refund is
  retried later by ``retry_pending_refunds``
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, List, Optional, Tuple, TypeVar

from ..core.config import Settings, settings as default_settings
from ..core.exceptions import (
    DomainException,
    NotFoundException,
    PaymentServiceUnavailableException,
    ReferenceConflictException,
    RepositoryException,
    ServiceUnavailableException,
    ValidationException,
)
from ..models.booking import (
    Booking,
    BookingStatus,
    TransitionResult,
    utcnow,
)
from ..models.money import ZERO, round_money
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.base_repository import BookingStats, IBookingRepository
from ..schemas.booking import BookingCreate, BookingListQuery
from .base import BaseService
from .notification_service import BookingNotifier
from .payment_gateway import PaymentGateway, StripePaymentGateway
from .refund_service import RefundOutcome, RefundService

T = TypeVar("T")


@dataclass(frozen=True)
class CancellationOutcome:
    """Result of a cancellation and its (possibly deferred) refund."""

    booking: Booking
    result: TransitionResult
    refund_amount: Decimal = ZERO
    refund_error: Optional[DomainException] = None

    @property
    def fee(self) -> Optional[Decimal]:
        return self.result.fee

    @property
    def refund_pending(self) -> bool:
        return self.refund_error is not None


@dataclass
class RefundRetryReport:
    attempted: int = 0
    refunded: int = 0
    failed: int = 0
    failed_booking_ids: List[str] = field(default_factory=list)


class BookingService(BaseService):
    """
    Service layer for booking operations.

    State-machine operations return ``TransitionResult`` values for expected
    outcomes (invalid transition, already final, validation). Missing
    bookings raise NotFoundException; storage and lock failures raise
    ServiceUnavailableException.
    """

    def __init__(
        self,
        repository: IBookingRepository,
        *,
        payment_gateway: Optional[PaymentGateway] = None,
        notifier: Optional[BookingNotifier] = None,
        refund_service: Optional[RefundService] = None,
        config: Optional[Settings] = None,
    ) -> None:
        super().__init__()
        config = config or default_settings
        self.repository = repository
        self.payment_gateway = payment_gateway or StripePaymentGateway(config)
        self.notifier = notifier or BookingNotifier()
        self.refund_service = refund_service or RefundService(repository, self.payment_gateway)
        self.pending_ttl = timedelta(minutes=config.booking_pending_ttl_minutes)
        self.reference_max_attempts = config.reference_max_attempts
        self.refund_retry_batch_size = config.refund_retry_batch_size

    # Storage helpers

    def _storage(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        try:
            return fn(*args, **kwargs)
        except RepositoryException as exc:
            self.logger.error(f"Booking storage failure: {str(exc)}")
            raise ServiceUnavailableException(
                "Booking storage unavailable", code="STORAGE_UNAVAILABLE"
            ) from exc

    def _transition(
        self, booking_id: str, operation: str, fn: Callable[[Booking], TransitionResult]
    ) -> Tuple[Booking, TransitionResult]:
        booking, result = self._storage(self.repository.mutate, booking_id, fn)
        if result.error is not None:
            outcome = result.error.value
        else:
            outcome = "success" if result.changed else "noop"
        prometheus_metrics.record_transition(operation, outcome)
        return booking, result

    # Create / read

    @BaseService.measure_operation("create_booking")
    def create_booking(self, data: BookingCreate, *, now: Optional[datetime] = None) -> Booking:
        """
        Create a pending booking with its expiry deadline.

        A booking reference collision is retried with a fresh reference and
        never surfaces to the caller unless every attempt collides.

        Raises:
            ValidationException: required fields missing or inconsistent
            ServiceUnavailableException: storage unavailable or references exhausted
        """
        details = data.to_type_details()
        for attempt in range(1, self.reference_max_attempts + 1):
            booking = Booking.new(
                owner_id=data.owner_id,
                kind=data.kind,
                total=data.total,
                currency=data.currency,
                type_details=details,
                now=now,
                pending_ttl=self.pending_ttl,
            )
            errors = booking.validate()
            if errors:
                raise ValidationException("Invalid booking data", errors=errors)
            try:
                created = self._storage(self.repository.create, booking)
            except ReferenceConflictException as exc:
                self.logger.info(
                    "booking_reference_collision",
                    extra={"attempt": attempt, "code": exc.code},
                )
                continue
            self.logger.info(
                "booking_created",
                extra={
                    "booking_id": created.id,
                    "booking_reference": created.booking_reference,
                    "kind": created.kind.value,
                },
            )
            return created

        raise ServiceUnavailableException(
            "Could not allocate a unique booking reference",
            code="REFERENCE_EXHAUSTED",
            details={"attempts": self.reference_max_attempts},
        )

    def get_booking(self, booking_id: str) -> Booking:
        booking = self._storage(self.repository.find_by_id, booking_id)
        if booking is None:
            raise NotFoundException(f"Booking {booking_id} not found", code="BOOKING_NOT_FOUND")
        return booking

    def get_booking_by_reference(self, booking_reference: str) -> Booking:
        booking = self._storage(self.repository.find_by_reference, booking_reference.strip().upper())
        if booking is None:
            raise NotFoundException(
                f"Booking {booking_reference} not found", code="BOOKING_NOT_FOUND"
            )
        return booking

    def list_bookings(self, owner_id: str, query: Optional[BookingListQuery] = None) -> List[Booking]:
        query = query or BookingListQuery()
        return self._storage(
            self.repository.find_by_owner,
            owner_id,
            status=query.status,
            kind=query.kind,
            limit=query.limit,
            offset=query.offset,
        )

    # Lifecycle

    @BaseService.measure_operation("confirm_booking")
    def confirm_booking(
        self,
        booking_id: str,
        *,
        payment_reference: str,
        amount_paid: Optional[Any] = None,
        now: Optional[datetime] = None,
    ) -> TransitionResult:
        """
        Confirm a booking whose payment has been captured.

        Safe to call repeatedly (payment webhooks retry): a second call on a
        confirmed booking is a successful no-op.
        """
        if not payment_reference:
            raise ValidationException("Payment reference is required", errors=["payment_reference"])
        booking, result = self._transition(
            booking_id,
            "confirm",
            lambda b: b.confirm(now, payment_reference=payment_reference, amount_paid=amount_paid),
        )
        if result.changed:
            self.notifier.booking_confirmed(booking)
        return result

    @BaseService.measure_operation("capture_and_confirm")
    def capture_and_confirm(self, booking_id: str, now: Optional[datetime] = None) -> TransitionResult:
        """
        Capture the booking total with the payment provider, then confirm.

        If the booking left ``pending`` while the capture was in flight (the
        reaper expired it, or it was cancelled) the confirm is rejected and the
        captured amount is refunded in full.

        Raises:
            PaymentServiceUnavailableException: capture failed; booking stays pending,
                or the refund of a rejected capture failed
        """
        booking = self.get_booking(booking_id)
        if booking.status is not BookingStatus.PENDING:
            return self._transition(booking_id, "confirm", lambda b: b.confirm(now))[1]

        reference = self.payment_gateway.capture(
            booking.id, booking.pricing.total, booking.pricing.currency
        )
        result = self.confirm_booking(
            booking_id, payment_reference=reference, amount_paid=booking.pricing.total, now=now
        )
        if result.error is not None:
            self._release_capture(booking, reference, result)
        return result

    def _release_capture(self, booking: Booking, payment_reference: str, result: TransitionResult) -> None:
        """Refund a capture whose booking could not be confirmed."""
        log_extra = {
            "booking_id": booking.id,
            "payment_reference": payment_reference,
            "status": result.status.value,
            "amount": str(booking.pricing.total),
        }
        try:
            receipt = self.payment_gateway.refund(
                payment_reference,
                booking.pricing.total,
                booking.pricing.currency,
                booking_id=booking.id,
            )
        except PaymentServiceUnavailableException:
            prometheus_metrics.record_refund("capture_release_failed")
            self.logger.error("captured_payment_not_released", extra=log_extra)
            raise
        prometheus_metrics.record_refund("capture_released")
        self.logger.warning(
            "captured_payment_released",
            extra={**log_extra, "refund_reference": receipt.refund_reference},
        )

    @BaseService.measure_operation("cancel_booking")
    def cancel_booking(
        self,
        booking_id: str,
        reason: str = "user_request",
        *,
        now: Optional[datetime] = None,
    ) -> CancellationOutcome:
        """
        Cancel a booking and refund ``total - fee`` of what was paid.

        The cancellation is committed before the refund is attempted. If the
        payment provider is unavailable, or the issued refund cannot be
        recorded, the booking stays cancelled with its payment status
        unchanged and ``refund_error`` is set.
        """
        now = now or utcnow()
        booking, result = self._transition(booking_id, "cancel", lambda b: b.cancel(reason, now))
        if result.error is not None:
            return CancellationOutcome(booking=booking, result=result)

        refund_amount = ZERO
        refund_error: Optional[DomainException] = None
        if booking.refund_due() > ZERO and booking.ledger is not None:
            try:
                outcome = self.refund_service.refund_cancellation(booking, now=now)
                booking = outcome.booking
                refund_amount = outcome.amount
            except (PaymentServiceUnavailableException, ServiceUnavailableException) as exc:
                refund_error = exc
                self.logger.warning(
                    "cancellation_refund_deferred",
                    extra={
                        "booking_id": booking_id,
                        "refund_due": str(booking.refund_due()),
                        "code": exc.code,
                    },
                )
        elif booking.refund_due() > ZERO:
            self.logger.warning(
                "cancellation_refund_without_ledger",
                extra={"booking_id": booking_id, "refund_due": str(booking.refund_due())},
            )

        self.notifier.booking_cancelled(booking, refund_amount)
        return CancellationOutcome(
            booking=booking,
            result=result,
            refund_amount=refund_amount,
            refund_error=refund_error,
        )

    @BaseService.measure_operation("complete_booking")
    def complete_booking(self, booking_id: str, now: Optional[datetime] = None) -> TransitionResult:
        return self._transition(booking_id, "complete", lambda b: b.complete(now))[1]

    def find_expired_bookings(self, now: datetime, limit: int) -> List[Booking]:
        return self._storage(self.repository.find_expired, now, limit)

    def expire_booking(self, booking_id: str, now: Optional[datetime] = None) -> TransitionResult:
        """Fail a pending booking past its deadline. A no-op error result if it already moved on."""
        return self._transition(booking_id, "mark_expired", lambda b: b.mark_expired(now))[1]

    # Refunds

    @BaseService.measure_operation("refund_booking")
    def refund_booking(
        self, booking_id: str, amount: Any, *, now: Optional[datetime] = None
    ) -> RefundOutcome:
        """
        Explicit refund of ``amount`` on a confirmed or cancelled booking.

        Raises:
            ValidationException: amount is not positive
            InvalidTransitionException / AlreadyFinalException: booking not refundable
            PaymentServiceUnavailableException: provider call failed (retryable)
            ServiceUnavailableException: refund issued but not recorded (retryable)
        """
        booking = self.get_booking(booking_id)
        requested = round_money(amount, booking.pricing.currency)
        if requested <= ZERO:
            raise ValidationException("Refund amount must be positive", errors=["amount"])
        if booking.status not in (BookingStatus.CONFIRMED, BookingStatus.CANCELLED):
            prometheus_metrics.record_transition("refund", "rejected")
            # Surface the state-machine error without touching the provider
            booking.apply_refund(requested, "", now).raise_for_error()

        outcome = self.refund_service.issue_refund(booking, requested, now=now)
        outcome.result.raise_for_error()
        prometheus_metrics.record_transition("refund", "success" if outcome.result.changed else "noop")
        return outcome

    @BaseService.measure_operation("retry_pending_refunds")
    def retry_pending_refunds(
        self, limit: Optional[int] = None, now: Optional[datetime] = None
    ) -> RefundRetryReport:
        """Re-attempt refunds for cancelled bookings that still owe money."""
        report = RefundRetryReport()
        pending = self._storage(
            self.repository.find_refund_pending, limit or self.refund_retry_batch_size
        )
        for booking in pending:
            report.attempted += 1
            try:
                outcome = self.refund_service.refund_cancellation(booking, now=now)
            except (DomainException, RepositoryException) as exc:
                report.failed += 1
                report.failed_booking_ids.append(booking.id)
                self.logger.warning(
                    "refund_retry_failed",
                    extra={"booking_id": booking.id, "error_type": type(exc).__name__},
                )
                continue
            if outcome.result.changed:
                report.refunded += 1
        if report.attempted:
            self.logger.info(
                "refund_retry_completed",
                extra={
                    "attempted": report.attempted,
                    "refunded": report.refunded,
                    "failed": report.failed,
                },
            )
        return report

    # Reporting

    def get_booking_stats(self, start: datetime, end: datetime) -> BookingStats:
        if end < start:
            raise ValidationException("Stats window end precedes start", errors=["end"])
        return self._storage(self.repository.get_stats, start, end)
