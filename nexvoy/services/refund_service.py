# nexvoy/services/refund_service.py
"""
Refund application.

Moving money and recording it are two separate steps:

1. read the booking and decide the amount (no lock held),
2. call the payment gateway (no lock held; may be slow or fail),
3. re-enter the booking's critical section and apply the refund.

If step 2 fails nothing is recorded and the booking keeps its current
payment status, so the refund can be retried. The gateway and the ledger
share one idempotency key per (booking, amount), which makes a retry after
an ambiguous timeout safe at both ends.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from ..core.exceptions import (
    InvalidTransitionException,
    PaymentServiceUnavailableException,
    RepositoryException,
    ServiceUnavailableException,
)
from ..models.booking import Booking, TransitionResult, utcnow
from ..models.money import ZERO, round_money
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.base_repository import IBookingRepository
from .base import BaseService
from .payment_gateway import PaymentGateway


@dataclass(frozen=True)
class RefundOutcome:
    booking: Booking
    result: TransitionResult
    refund_reference: Optional[str] = None

    @property
    def amount(self) -> Decimal:
        return self.result.refund_amount or ZERO


class RefundService(BaseService):
    def __init__(self, repository: IBookingRepository, gateway: PaymentGateway) -> None:
        super().__init__()
        self.repository = repository
        self.gateway = gateway

    @BaseService.measure_operation("refund_cancellation")
    def refund_cancellation(self, booking: Booking, now: Optional[datetime] = None) -> RefundOutcome:
        """Refund what a cancelled booking still owes (``total - fee``, capped at paid)."""
        return self.issue_refund(booking, booking.refund_due(), now=now)

    @BaseService.measure_operation("issue_refund")
    def issue_refund(
        self,
        booking: Booking,
        amount: Any,
        now: Optional[datetime] = None,
    ) -> RefundOutcome:
        """
        Refund ``amount`` for ``booking`` through the gateway, then record it.

        ``booking`` is a snapshot; the amount is re-capped against the stored
        booking when the refund is applied.

        Raises:
            InvalidTransitionException: no captured payment to refund
            PaymentServiceUnavailableException: gateway call failed (retryable)
            ServiceUnavailableException: refund issued but storage failed while
                recording it (retryable under the same idempotency key)
        """
        if booking.ledger is None:
            prometheus_metrics.record_refund("no_payment")
            raise InvalidTransitionException(
                "No captured payment recorded for this booking",
                booking_id=booking.id,
                current_status=booking.status.value,
                operation="refund",
            )

        currency = booking.pricing.currency
        requested = round_money(min(round_money(amount, currency), booking.pricing.refundable_amount), currency)
        if requested <= ZERO:
            prometheus_metrics.record_refund("nothing_due")
            return RefundOutcome(
                booking=booking,
                result=TransitionResult(
                    operation="refund",
                    booking_id=booking.id,
                    status=booking.status,
                    changed=False,
                    refund_amount=ZERO,
                ),
            )

        try:
            receipt = self.gateway.refund(
                booking.ledger.provider_reference,
                requested,
                currency,
                booking_id=booking.id,
            )
        except PaymentServiceUnavailableException:
            prometheus_metrics.record_refund("provider_unavailable")
            self.logger.warning(
                "refund_deferred",
                extra={"booking_id": booking.id, "amount": str(requested)},
            )
            raise

        applied_at = now or utcnow()
        try:
            updated, result = self.repository.mutate(
                booking.id,
                lambda b: b.apply_refund(
                    requested,
                    receipt.refund_reference,
                    applied_at,
                    idempotency_key=receipt.idempotency_key,
                ),
            )
        except RepositoryException as exc:
            # Money has moved; a retry re-sends the same idempotency key and records it then
            prometheus_metrics.record_refund("unrecorded")
            self.logger.error(
                "refund_record_failed",
                extra={
                    "booking_id": booking.id,
                    "refund_reference": receipt.refund_reference,
                    "amount": str(requested),
                    "error": str(exc),
                },
            )
            raise ServiceUnavailableException(
                "Refund issued but could not be recorded",
                code="REFUND_NOT_RECORDED",
                details={"booking_id": booking.id, "refund_reference": receipt.refund_reference},
            ) from exc
        if result.error is not None:
            prometheus_metrics.record_refund("rejected")
            self.logger.error(
                "refund_not_recorded",
                extra={
                    "booking_id": booking.id,
                    "refund_reference": receipt.refund_reference,
                    "status": updated.status.value,
                    "error": result.error.value,
                },
            )
        else:
            prometheus_metrics.record_refund("applied" if result.changed else "duplicate")
        return RefundOutcome(booking=updated, result=result, refund_reference=receipt.refund_reference)
