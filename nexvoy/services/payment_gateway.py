# nexvoy/services/payment_gateway.py
"""
Payment provider gateway.

``PaymentGateway`` is the contract the booking core consumes. The Stripe
implementation captures PaymentIntents and issues refunds with idempotency
keys derived from the booking id (and refund amount), so a call repeated
after a timeout cannot move money twice.
"""

from dataclasses import dataclass
from decimal import Decimal
import logging
from typing import Any, Optional, Protocol

import stripe

from ..core.config import Settings, settings as default_settings
from ..core.exceptions import PaymentServiceUnavailableException
from ..models.ledger import refund_idempotency_key
from ..models.money import to_minor_units


def capture_idempotency_key(booking_id: str) -> str:
    return f"capture:{booking_id}"


@dataclass(frozen=True)
class RefundReceipt:
    refund_reference: str
    amount_minor: int
    status: str
    idempotency_key: str


class PaymentGateway(Protocol):
    def capture(self, booking_id: str, amount: Decimal, currency: str) -> str:
        """Capture ``amount`` for the booking and return the payment reference."""
        ...

    def refund(
        self,
        payment_reference: str,
        amount: Decimal,
        currency: str,
        *,
        booking_id: str,
    ) -> RefundReceipt:
        """Refund ``amount`` against a captured payment."""
        ...


class StripePaymentGateway:
    """
    Stripe-backed gateway.

    Without a configured secret key the gateway runs in mock mode and returns
    deterministic references, mirroring what tests and local runs need.
    """

    def __init__(self, config: Optional[Settings] = None) -> None:
        config = config or default_settings
        self.logger = logging.getLogger(__name__)
        self.stripe_configured = config.stripe_configured
        self.timeout_seconds = config.payment_timeout_seconds

        if self.stripe_configured:
            stripe.api_key = config.stripe_secret_key.get_secret_value()
            stripe.default_http_client = stripe.RequestsClient(timeout=config.payment_timeout_seconds)
            stripe.max_network_retries = config.payment_max_network_retries
            self.logger.info("Stripe payment gateway configured")
        else:
            self.logger.warning(
                "Stripe secret key not configured - payment gateway will operate in mock mode"
            )

    def _unavailable(self, action: str, booking_id: str, exc: Exception) -> PaymentServiceUnavailableException:
        self.logger.error(
            f"Stripe error during {action}: {str(exc)}",
            extra={
                "booking_id": booking_id,
                "error_type": type(exc).__name__,
                "http_status": getattr(exc, "http_status", None),
            },
        )
        return PaymentServiceUnavailableException(
            f"Payment provider unavailable during {action}",
            code="PAYMENT_SERVICE_UNAVAILABLE",
            details={"booking_id": booking_id, "action": action},
        )

    def capture(self, booking_id: str, amount: Decimal, currency: str) -> str:
        amount_minor = to_minor_units(amount, currency)
        if not self.stripe_configured:
            return f"mock_pi_{booking_id}"

        try:
            intent: Any = stripe.PaymentIntent.create(
                amount=amount_minor,
                currency=currency.lower(),
                confirm=True,
                automatic_payment_methods={"enabled": True, "allow_redirects": "never"},
                metadata={"booking_id": booking_id},
                idempotency_key=capture_idempotency_key(booking_id),
            )
        except stripe.StripeError as exc:
            raise self._unavailable("capture", booking_id, exc) from exc

        self.logger.info(
            "payment_captured",
            extra={"booking_id": booking_id, "amount_minor": amount_minor, "status": intent.get("status")},
        )
        return str(intent["id"])

    def refund(
        self,
        payment_reference: str,
        amount: Decimal,
        currency: str,
        *,
        booking_id: str,
    ) -> RefundReceipt:
        amount_minor = to_minor_units(amount, currency)
        key = refund_idempotency_key(booking_id, amount, currency)
        if not self.stripe_configured:
            return RefundReceipt(
                refund_reference=f"mock_re_{booking_id}_{amount_minor}",
                amount_minor=amount_minor,
                status="succeeded",
                idempotency_key=key,
            )

        try:
            refund: Any = stripe.Refund.create(
                payment_intent=payment_reference,
                amount=amount_minor,
                reason="requested_by_customer",
                metadata={"booking_id": booking_id},
                idempotency_key=key,
            )
        except stripe.StripeError as exc:
            raise self._unavailable("refund", booking_id, exc) from exc

        status = str(refund.get("status") or "pending")
        if status in ("failed", "canceled"):
            self.logger.error(
                "refund_rejected_by_provider",
                extra={"booking_id": booking_id, "refund_id": refund.get("id"), "status": status},
            )
            raise PaymentServiceUnavailableException(
                f"Refund {status} at payment provider",
                code="REFUND_FAILED",
                details={"booking_id": booking_id, "status": status},
            )

        self.logger.info(
            "refund_issued",
            extra={"booking_id": booking_id, "amount_minor": amount_minor, "status": status},
        )
        return RefundReceipt(
            refund_reference=str(refund["id"]),
            amount_minor=amount_minor,
            status=status,
            idempotency_key=key,
        )
