"""Payment ledger entry: money captured and refunded for one booking."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from .money import ZERO, round_money, to_decimal, to_minor_units
from .type_details import isoformat_or_none, parse_datetime


class LedgerStatus(str, Enum):
    AUTHORIZED = "authorized"
    CAPTURED = "captured"
    REFUNDED_PARTIAL = "refunded_partial"
    REFUNDED_FULL = "refunded_full"
    FAILED = "failed"


def refund_idempotency_key(booking_id: str, amount: Decimal, currency: str = "USD") -> str:
    """Refund requests are deduplicated on (booking, amount in minor units)."""
    return f"refund:{booking_id}:{to_minor_units(amount, currency)}"


@dataclass(frozen=True)
class RefundRecord:
    refund_reference: str
    amount: Decimal
    idempotency_key: str
    refunded_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "refund_reference": self.refund_reference,
            "amount": str(self.amount),
            "idempotency_key": self.idempotency_key,
            "refunded_at": isoformat_or_none(self.refunded_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RefundRecord":
        return cls(
            refund_reference=data["refund_reference"],
            amount=to_decimal(data["amount"]),
            idempotency_key=data["idempotency_key"],
            refunded_at=parse_datetime(data["refunded_at"]),  # type: ignore[arg-type]
        )


@dataclass
class PaymentLedgerEntry:
    """
    One per booking, created when payment is captured and never deleted.

    Only the owning Booking mutates this entry; ``amount_refunded`` can
    never exceed ``amount_captured``.
    """

    booking_id: str
    provider_reference: str
    amount_captured: Decimal
    currency: str = "USD"
    amount_refunded: Decimal = ZERO
    status: LedgerStatus = LedgerStatus.CAPTURED
    refunds: List[RefundRecord] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def refundable_amount(self) -> Decimal:
        return max(ZERO, self.amount_captured - self.amount_refunded)

    def has_refund(self, idempotency_key: str) -> bool:
        return any(r.idempotency_key == idempotency_key for r in self.refunds)

    def record_refund(
        self,
        amount: Decimal,
        refund_reference: str,
        idempotency_key: str,
        now: datetime,
    ) -> Decimal:
        """Record a completed provider refund; returns the amount actually applied."""
        if self.has_refund(idempotency_key):
            return ZERO
        applied = round_money(min(to_decimal(amount), self.refundable_amount), self.currency)
        if applied <= ZERO:
            return ZERO
        self.amount_refunded += applied
        self.refunds.append(
            RefundRecord(
                refund_reference=refund_reference,
                amount=applied,
                idempotency_key=idempotency_key,
                refunded_at=now,
            )
        )
        self.status = (
            LedgerStatus.REFUNDED_FULL
            if self.amount_refunded == self.amount_captured
            else LedgerStatus.REFUNDED_PARTIAL
        )
        self.updated_at = now
        return applied

    def to_dict(self) -> Dict[str, Any]:
        return {
            "booking_id": self.booking_id,
            "provider_reference": self.provider_reference,
            "amount_captured": str(self.amount_captured),
            "currency": self.currency,
            "amount_refunded": str(self.amount_refunded),
            "status": self.status.value,
            "refunds": [r.to_dict() for r in self.refunds],
            "created_at": isoformat_or_none(self.created_at),
            "updated_at": isoformat_or_none(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PaymentLedgerEntry":
        return cls(
            booking_id=data["booking_id"],
            provider_reference=data["provider_reference"],
            amount_captured=to_decimal(data["amount_captured"]),
            currency=data.get("currency") or "USD",
            amount_refunded=to_decimal(data.get("amount_refunded") or "0"),
            status=LedgerStatus(data.get("status") or LedgerStatus.CAPTURED.value),
            refunds=[RefundRecord.from_dict(r) for r in data.get("refunds") or []],
            created_at=parse_datetime(data.get("created_at")),
            updated_at=parse_datetime(data.get("updated_at")),
        )
