"""SQLAlchemy tables backing the SQL booking repository."""

from __future__ import annotations

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship
import ulid

from ..database import Base


class BookingRecord(Base):
    """Flat persisted form of a Booking aggregate."""

    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'cancelled', 'completed', 'refunded', 'failed')",
            name="ck_bookings_status",
        ),
        CheckConstraint(
            "kind IN ('flight', 'hotel', 'car', 'insurance', 'package')",
            name="ck_bookings_kind",
        ),
        CheckConstraint(
            "refunded_amount >= 0 AND refunded_amount <= paid_amount AND paid_amount <= total",
            name="ck_bookings_amounts",
        ),
        CheckConstraint(
            "expires_at IS NULL OR status = 'pending'",
            name="ck_bookings_expiry_only_pending",
        ),
    )

    id = Column(String(26), primary_key=True)
    booking_reference = Column(String(10), nullable=False, unique=True, index=True)
    owner_id = Column(String(64), nullable=False, index=True)
    kind = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, index=True)

    type_details = Column(JSON, nullable=True)

    currency = Column(String(3), nullable=False, default="USD")
    total = Column(Numeric(14, 3), nullable=False)
    paid_amount = Column(Numeric(14, 3), nullable=False, default=0)
    refunded_amount = Column(Numeric(14, 3), nullable=False, default=0)
    payment_status = Column(String(30), nullable=False, default="pending")

    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    cancellation_reason = Column(Text, nullable=True)
    cancellation_fee = Column(Numeric(14, 3), nullable=True)

    ledger = relationship(
        "PaymentLedgerRecord",
        back_populates="booking",
        uselist=False,
        cascade="all, delete-orphan",
        lazy="joined",
    )

    def __repr__(self) -> str:
        return f"<BookingRecord {self.id} ref={self.booking_reference} status={self.status}>"


Index("ix_bookings_status_expires_at", BookingRecord.status, BookingRecord.expires_at)


class PaymentLedgerRecord(Base):
    """Payment ledger satellite table, one row per captured booking."""

    __tablename__ = "booking_payment_ledgers"
    __table_args__ = (
        CheckConstraint(
            "amount_refunded >= 0 AND amount_refunded <= amount_captured",
            name="ck_ledger_refund_bound",
        ),
    )

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id = Column(
        String(26),
        ForeignKey("bookings.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    provider_reference = Column(String(255), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    amount_captured = Column(Numeric(14, 3), nullable=False)
    amount_refunded = Column(Numeric(14, 3), nullable=False, default=0)
    status = Column(String(30), nullable=False)
    refunds = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    booking = relationship("BookingRecord", back_populates="ledger")

    def __repr__(self) -> str:
        return f"<PaymentLedgerRecord booking={self.booking_id} status={self.status}>"
