# nexvoy/models/booking.py
"""
Booking aggregate for the Nexvoy booking core.

A Booking is the unit of consistency: its status, pricing and payment ledger
entry change together, and only through the state-machine methods below.

    pending ──confirm──▶ confirmed ──complete──▶ completed
       │                    │
       │ mark_expired       │ cancel            (full refund)
       ▼                    ▼                  ─────────────▶ refunded
     failed    pending ──cancel──▶ cancelled ─┘

Expected rejections (wrong state, missing details) come back as a
TransitionResult carrying an error kind; nothing here raises for them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
import logging
import secrets
from typing import Any, Dict, List, Optional

from ..core.exceptions import (
    AlreadyFinalException,
    InvalidTransitionException,
    ValidationException,
)
from ..core.ulid_helper import generate_ulid
from ..domain.cancellation_policy import evaluate_fee
from .ledger import PaymentLedgerEntry, refund_idempotency_key
from .money import ZERO, round_money, to_decimal
from .type_details import (
    KINDS_REQUIRING_DETAILS,
    BookingKind,
    CarDetails,
    FlightDetails,
    HotelDetails,
    TypeDetails,
    ensure_utc,
    isoformat_or_none,
    parse_datetime,
    type_details_from_dict,
)

logger = logging.getLogger(__name__)

REFERENCE_PREFIX = "NVY-"
REFERENCE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
REFERENCE_LENGTH = 6

EXPIRED_REASON = "expired"


def generate_booking_reference() -> str:
    """Human-readable booking reference: ``NVY-`` + 6 upper-alphanumeric characters."""
    suffix = "".join(secrets.choice(REFERENCE_ALPHABET) for _ in range(REFERENCE_LENGTH))
    return f"{REFERENCE_PREFIX}{suffix}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    REFUNDED = "refunded"
    FAILED = "failed"


# Statuses from which cancel() reports AlreadyFinal.
FINAL_STATUSES = frozenset(
    {
        BookingStatus.CANCELLED,
        BookingStatus.COMPLETED,
        BookingStatus.REFUNDED,
        BookingStatus.FAILED,
    }
)

# Statuses nothing can leave.
TERMINAL_STATUSES = frozenset(
    {BookingStatus.COMPLETED, BookingStatus.REFUNDED, BookingStatus.FAILED}
)


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    PARTIALLY_REFUNDED = "partially_refunded"
    FULLY_REFUNDED = "fully_refunded"
    FAILED = "failed"


class TransitionError(str, Enum):
    INVALID_TRANSITION = "invalid_transition"
    ALREADY_FINAL = "already_final"
    VALIDATION = "validation"


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of one state-machine operation on a booking."""

    operation: str
    booking_id: str
    status: BookingStatus
    changed: bool
    error: Optional[TransitionError] = None
    message: Optional[str] = None
    fee: Optional[Decimal] = None
    refund_amount: Optional[Decimal] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def raise_for_error(self) -> "TransitionResult":
        if self.error is None:
            return self
        message = self.message or f"Cannot {self.operation} booking in status {self.status.value}"
        if self.error is TransitionError.ALREADY_FINAL:
            raise AlreadyFinalException(
                message,
                booking_id=self.booking_id,
                current_status=self.status.value,
                operation=self.operation,
            )
        if self.error is TransitionError.VALIDATION:
            raise ValidationException(message, errors=[message])
        raise InvalidTransitionException(
            message,
            booking_id=self.booking_id,
            current_status=self.status.value,
            operation=self.operation,
        )


@dataclass
class Pricing:
    total: Decimal
    currency: str = "USD"
    paid_amount: Decimal = ZERO
    refunded_amount: Decimal = ZERO
    payment_status: PaymentStatus = PaymentStatus.PENDING

    @property
    def refundable_amount(self) -> Decimal:
        return max(ZERO, self.paid_amount - self.refunded_amount)

    def check_invariants(self) -> None:
        if not (ZERO <= self.refunded_amount <= self.paid_amount <= self.total):
            raise ValueError(
                "pricing invariant violated: "
                f"refunded={self.refunded_amount} paid={self.paid_amount} total={self.total}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currency": self.currency,
            "total": str(self.total),
            "paid_amount": str(self.paid_amount),
            "refunded_amount": str(self.refunded_amount),
            "payment_status": self.payment_status.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Pricing":
        return cls(
            total=to_decimal(data["total"]),
            currency=data.get("currency") or "USD",
            paid_amount=to_decimal(data.get("paid_amount") or "0"),
            refunded_amount=to_decimal(data.get("refunded_amount") or "0"),
            payment_status=PaymentStatus(data.get("payment_status") or "pending"),
        )


@dataclass
class Booking:
    """
    One reservation with its own lifecycle and pricing.

    ``id``, ``booking_reference``, ``owner_id`` and ``kind`` are fixed at
    creation; repositories reject updates that change them.
    """

    id: str
    booking_reference: str
    owner_id: str
    kind: BookingKind
    pricing: Pricing
    type_details: Optional[TypeDetails] = None
    status: BookingStatus = BookingStatus.PENDING
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    cancellation_fee: Optional[Decimal] = None
    ledger: Optional[PaymentLedgerEntry] = None

    @classmethod
    def new(
        cls,
        *,
        owner_id: str,
        kind: BookingKind,
        total: Any,
        currency: str = "USD",
        type_details: Optional[TypeDetails] = None,
        now: Optional[datetime] = None,
        pending_ttl: timedelta = timedelta(minutes=15),
        booking_id: Optional[str] = None,
        booking_reference: Optional[str] = None,
    ) -> "Booking":
        """Build a new pending booking with its expiry deadline."""
        created = ensure_utc(now) or utcnow()
        code = (currency or "USD").upper()
        return cls(
            id=booking_id or generate_ulid(),
            booking_reference=booking_reference or generate_booking_reference(),
            owner_id=owner_id,
            kind=BookingKind(kind),
            pricing=Pricing(total=round_money(total, code), currency=code),
            type_details=type_details,
            status=BookingStatus.PENDING,
            created_at=created,
            updated_at=created,
            expires_at=created + pending_ttl,
        )

    def __repr__(self) -> str:
        return (
            f"<Booking {self.id}: ref={self.booking_reference}, owner={self.owner_id}, "
            f"kind={self.kind.value}, status={self.status.value}>"
        )

    # Validation

    def validate(self) -> List[str]:
        """Return the list of problems that prevent this booking from being stored."""
        errors: List[str] = []
        if not self.owner_id:
            errors.append("Owner ID is required")
        if not self.kind:
            errors.append("Booking kind is required")
        if self.pricing is None or self.pricing.total is None or self.pricing.total <= ZERO:
            errors.append("Total price is required")
        if self.pricing is not None and len(self.pricing.currency or "") != 3:
            errors.append("Currency must be a 3-letter ISO code")
        if self.kind in KINDS_REQUIRING_DETAILS and self.type_details is None:
            errors.append(f"{self.kind.value.capitalize()} details required for {self.kind.value} booking")
        if self.type_details is not None and self.type_details.kind != self.kind:
            errors.append(
                f"Details of kind {self.type_details.kind.value} do not match booking kind {self.kind.value}"
            )
        if self.booking_reference and not is_valid_reference(self.booking_reference):
            errors.append("Booking reference must match NVY-XXXXXX")
        return errors

    @property
    def details_complete(self) -> bool:
        if self.kind not in KINDS_REQUIRING_DETAILS:
            return True
        return self.type_details is not None and self.type_details.is_complete

    @property
    def is_cancellable(self) -> bool:
        return self.status in (BookingStatus.PENDING, BookingStatus.CONFIRMED)

    @property
    def is_final(self) -> bool:
        return self.status in FINAL_STATUSES

    # State machine

    def _result(
        self,
        operation: str,
        changed: bool,
        error: Optional[TransitionError] = None,
        message: Optional[str] = None,
        **extra: Any,
    ) -> TransitionResult:
        if error is not None:
            logger.info(
                "booking_transition_rejected",
                extra={
                    "booking_id": self.id,
                    "operation": operation,
                    "status": self.status.value,
                    "error": error.value,
                },
            )
        return TransitionResult(
            operation=operation,
            booking_id=self.id,
            status=self.status,
            changed=changed,
            error=error,
            message=message,
            **extra,
        )

    def confirm(
        self,
        now: Optional[datetime] = None,
        *,
        payment_reference: Optional[str] = None,
        amount_paid: Optional[Any] = None,
    ) -> TransitionResult:
        """
        Confirm after successful payment.

        Confirming an already-confirmed booking is a successful no-op so that
        retried payment webhooks are harmless.
        """
        if self.status is BookingStatus.CONFIRMED:
            return self._result("confirm", changed=False)
        if self.status is not BookingStatus.PENDING:
            return self._result(
                "confirm",
                changed=False,
                error=TransitionError.INVALID_TRANSITION,
                message=f"Cannot confirm booking in status {self.status.value}",
            )
        if self.pricing.total <= ZERO:
            return self._result(
                "confirm",
                changed=False,
                error=TransitionError.VALIDATION,
                message="Booking total must be greater than zero",
            )
        if not self.details_complete:
            return self._result(
                "confirm",
                changed=False,
                error=TransitionError.VALIDATION,
                message=f"{self.kind.value} details must be complete before confirmation",
            )

        paid = self.pricing.total if amount_paid is None else round_money(amount_paid, self.pricing.currency)
        if paid <= ZERO or paid > self.pricing.total:
            return self._result(
                "confirm",
                changed=False,
                error=TransitionError.VALIDATION,
                message=f"Paid amount {paid} must be within (0, {self.pricing.total}]",
            )

        now = ensure_utc(now) or utcnow()
        self.status = BookingStatus.CONFIRMED
        self.confirmed_at = now
        self.updated_at = now
        self.expires_at = None
        self.pricing.paid_amount = paid
        self.pricing.payment_status = PaymentStatus.PAID
        if payment_reference:
            self.ledger = PaymentLedgerEntry(
                booking_id=self.id,
                provider_reference=payment_reference,
                amount_captured=paid,
                currency=self.pricing.currency,
                created_at=now,
                updated_at=now,
            )
        logger.info(
            "booking_confirmed",
            extra={"booking_id": self.id, "booking_reference": self.booking_reference},
        )
        return self._result("confirm", changed=True)

    def cancel(self, reason: Optional[str] = "user_request", now: Optional[datetime] = None) -> TransitionResult:
        """
        Cancel a pending or confirmed booking and compute the cancellation fee.

        Money is not moved here; the returned fee drives the refund step.
        """
        if self.status in FINAL_STATUSES:
            return self._result(
                "cancel",
                changed=False,
                error=TransitionError.ALREADY_FINAL,
                message=f"Booking is already {self.status.value}",
            )

        now = ensure_utc(now) or utcnow()
        fee = evaluate_fee(self.type_details, self.pricing.total, now, self.pricing.currency)
        self.status = BookingStatus.CANCELLED
        self.cancelled_at = now
        self.updated_at = now
        self.expires_at = None
        self.cancellation_reason = reason
        self.cancellation_fee = fee
        logger.info(
            "booking_cancelled",
            extra={"booking_id": self.id, "reason": reason, "fee": str(fee)},
        )
        return self._result("cancel", changed=True, fee=fee)

    def complete(self, now: Optional[datetime] = None) -> TransitionResult:
        """Mark a confirmed booking completed once its service date has passed."""
        if self.status is not BookingStatus.CONFIRMED:
            error = (
                TransitionError.ALREADY_FINAL
                if self.status in FINAL_STATUSES
                else TransitionError.INVALID_TRANSITION
            )
            return self._result(
                "complete",
                changed=False,
                error=error,
                message=f"Cannot complete booking in status {self.status.value}",
            )

        now = ensure_utc(now) or utcnow()
        service_end = ensure_utc(self.type_details.service_end_at) if self.type_details else None
        if service_end is None and self.kind in KINDS_REQUIRING_DETAILS:
            return self._result(
                "complete",
                changed=False,
                error=TransitionError.VALIDATION,
                message="Service end date unknown",
            )
        if service_end is not None and now < service_end:
            return self._result(
                "complete",
                changed=False,
                error=TransitionError.INVALID_TRANSITION,
                message=f"Service has not ended yet (ends {service_end.isoformat()})",
            )

        self.status = BookingStatus.COMPLETED
        self.completed_at = now
        self.updated_at = now
        logger.info("booking_completed", extra={"booking_id": self.id})
        return self._result("complete", changed=True)

    def mark_expired(self, now: Optional[datetime] = None) -> TransitionResult:
        """Fail a pending booking whose expiry deadline has passed."""
        if self.status is not BookingStatus.PENDING:
            return self._result(
                "mark_expired",
                changed=False,
                error=TransitionError.INVALID_TRANSITION,
                message=f"Only pending bookings expire (status {self.status.value})",
            )
        now = ensure_utc(now) or utcnow()
        expires_at = ensure_utc(self.expires_at)
        if expires_at is None or now <= expires_at:
            return self._result(
                "mark_expired",
                changed=False,
                error=TransitionError.INVALID_TRANSITION,
                message="Booking has not reached its expiry deadline",
            )

        self.status = BookingStatus.FAILED
        self.cancellation_reason = EXPIRED_REASON
        self.expires_at = None
        self.updated_at = now
        logger.info("booking_expired", extra={"booking_id": self.id})
        return self._result("mark_expired", changed=True)

    # Refunds

    def refund_due(self) -> Decimal:
        """
        Refund still owed for a cancellation: ``total - fee``, capped at what
        was paid and not yet refunded.
        """
        if self.status is not BookingStatus.CANCELLED or self.cancellation_fee is None:
            return ZERO
        owed = self.pricing.total - self.cancellation_fee
        already = self.pricing.refunded_amount
        return max(ZERO, min(owed - already, self.pricing.refundable_amount))

    def apply_refund(
        self,
        amount: Any,
        refund_reference: str,
        now: Optional[datetime] = None,
        *,
        idempotency_key: Optional[str] = None,
    ) -> TransitionResult:
        """
        Record a refund that the payment provider has already executed.

        The applied amount is capped so ``refunded_amount`` never exceeds
        ``paid_amount``; a full refund moves the booking to ``refunded``.
        """
        if self.status is BookingStatus.REFUNDED:
            return self._result(
                "refund",
                changed=False,
                error=TransitionError.ALREADY_FINAL,
                message="Booking is already fully refunded",
            )
        if self.status not in (BookingStatus.CONFIRMED, BookingStatus.CANCELLED):
            return self._result(
                "refund",
                changed=False,
                error=TransitionError.INVALID_TRANSITION,
                message=f"Cannot refund booking in status {self.status.value}",
            )
        if self.ledger is None:
            return self._result(
                "refund",
                changed=False,
                error=TransitionError.INVALID_TRANSITION,
                message="No captured payment recorded for this booking",
            )

        requested = round_money(amount, self.pricing.currency)
        key = idempotency_key or refund_idempotency_key(self.id, requested, self.pricing.currency)
        capped = min(requested, self.pricing.refundable_amount)
        if capped <= ZERO or self.ledger.has_refund(key):
            return self._result("refund", changed=False, refund_amount=ZERO)

        now = ensure_utc(now) or utcnow()
        applied = self.ledger.record_refund(capped, refund_reference, key, now)
        self.pricing.refunded_amount += applied
        if self.pricing.refunded_amount == self.pricing.paid_amount:
            self.pricing.payment_status = PaymentStatus.FULLY_REFUNDED
            self.status = BookingStatus.REFUNDED
        else:
            self.pricing.payment_status = PaymentStatus.PARTIALLY_REFUNDED
        self.updated_at = now
        self.pricing.check_invariants()
        logger.info(
            "booking_refund_applied",
            extra={
                "booking_id": self.id,
                "amount": str(applied),
                "payment_status": self.pricing.payment_status.value,
            },
        )
        return self._result("refund", changed=True, refund_amount=applied)

    # Presentation / persistence

    def summary(self) -> Dict[str, Any]:
        """Compact display summary with a kind-specific title and date."""
        summary: Dict[str, Any] = {
            "id": self.id,
            "booking_reference": self.booking_reference,
            "kind": self.kind.value,
            "status": self.status.value,
            "total": str(self.pricing.total),
            "currency": self.pricing.currency,
            "created_at": isoformat_or_none(self.created_at),
            "confirmed_at": isoformat_or_none(self.confirmed_at),
        }
        details = self.type_details
        if isinstance(details, FlightDetails) and details.outbound:
            summary["title"] = f"{details.outbound.origin or '?'} → {details.outbound.destination or '?'}"
            summary["date"] = isoformat_or_none(details.outbound.departure_at)
        elif isinstance(details, HotelDetails):
            summary["title"] = details.property_name
            summary["date"] = isoformat_or_none(details.check_in)
            if details.check_in and details.check_out:
                summary["nights"] = (details.check_out.date() - details.check_in.date()).days
        elif isinstance(details, CarDetails):
            summary["title"] = " - ".join(p for p in (details.company, details.vehicle_name) if p)
            summary["date"] = isoformat_or_none(details.pickup_at)
        return summary

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "booking_reference": self.booking_reference,
            "owner_id": self.owner_id,
            "kind": self.kind.value,
            "status": self.status.value,
            "type_details": self.type_details.to_dict() if self.type_details else None,
            "pricing": self.pricing.to_dict(),
            "created_at": isoformat_or_none(self.created_at),
            "updated_at": isoformat_or_none(self.updated_at),
            "confirmed_at": isoformat_or_none(self.confirmed_at),
            "cancelled_at": isoformat_or_none(self.cancelled_at),
            "completed_at": isoformat_or_none(self.completed_at),
            "expires_at": isoformat_or_none(self.expires_at),
            "cancellation_reason": self.cancellation_reason,
            "cancellation_fee": str(self.cancellation_fee) if self.cancellation_fee is not None else None,
            "ledger": self.ledger.to_dict() if self.ledger else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Booking":
        fee = data.get("cancellation_fee")
        ledger = data.get("ledger")
        return cls(
            id=data["id"],
            booking_reference=data["booking_reference"],
            owner_id=data["owner_id"],
            kind=BookingKind(data["kind"]),
            status=BookingStatus(data.get("status") or "pending"),
            type_details=type_details_from_dict(data.get("type_details")),
            pricing=Pricing.from_dict(data["pricing"]),
            created_at=parse_datetime(data.get("created_at")) or utcnow(),
            updated_at=parse_datetime(data.get("updated_at")) or utcnow(),
            confirmed_at=parse_datetime(data.get("confirmed_at")),
            cancelled_at=parse_datetime(data.get("cancelled_at")),
            completed_at=parse_datetime(data.get("completed_at")),
            expires_at=parse_datetime(data.get("expires_at")),
            cancellation_reason=data.get("cancellation_reason"),
            cancellation_fee=to_decimal(fee) if fee is not None else None,
            ledger=PaymentLedgerEntry.from_dict(ledger) if ledger else None,
        )


def is_valid_reference(reference: str) -> bool:
    if not reference.startswith(REFERENCE_PREFIX):
        return False
    suffix = reference[len(REFERENCE_PREFIX):]
    return len(suffix) == REFERENCE_LENGTH and all(c in REFERENCE_ALPHABET for c in suffix)
