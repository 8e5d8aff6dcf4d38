# nexvoy/schemas/booking.py
"""
Booking schemas for the Nexvoy booking core.

Type details arrive as a discriminated union keyed on ``kind``; each variant
converts to the matching frozen dataclass in ``models.type_details``. Only
the fields the core needs (service window and cancellation policy inputs)
are accepted.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import Field, field_validator, model_validator

from ..models.booking import Booking, BookingStatus, PaymentStatus
from ..models.type_details import (
    KINDS_REQUIRING_DETAILS,
    BookingKind,
    CarDetails,
    FlightDetails,
    FlightSegment,
    HotelDetails,
    InsuranceDetails,
    PackageDetails,
    TypeDetails,
    ensure_utc,
)
from ._strict_base import StrictModel, StrictRequestModel


def _check_window(start: Optional[datetime], end: Optional[datetime], label: str) -> None:
    if start is not None and end is not None and ensure_utc(end) <= ensure_utc(start):  # type: ignore[operator]
        raise ValueError(f"{label} must end after it starts")


class FlightSegmentIn(StrictRequestModel):
    departure_at: Optional[datetime] = None
    arrival_at: Optional[datetime] = None
    origin: Optional[str] = Field(None, max_length=8)
    destination: Optional[str] = Field(None, max_length=8)
    flight_number: Optional[str] = Field(None, max_length=16)

    @model_validator(mode="after")
    def _arrival_after_departure(self) -> "FlightSegmentIn":
        _check_window(self.departure_at, self.arrival_at, "Flight segment")
        return self

    def to_domain(self) -> FlightSegment:
        return FlightSegment(
            departure_at=ensure_utc(self.departure_at),
            arrival_at=ensure_utc(self.arrival_at),
            origin=self.origin,
            destination=self.destination,
            flight_number=self.flight_number,
        )


class FlightDetailsIn(StrictRequestModel):
    kind: Literal["flight"] = "flight"
    outbound: Optional[FlightSegmentIn] = None
    inbound: Optional[FlightSegmentIn] = None

    def to_domain(self) -> FlightDetails:
        return FlightDetails(
            outbound=self.outbound.to_domain() if self.outbound else None,
            inbound=self.inbound.to_domain() if self.inbound else None,
        )


class HotelDetailsIn(StrictRequestModel):
    kind: Literal["hotel"] = "hotel"
    check_in: Optional[datetime] = None
    check_out: Optional[datetime] = None
    free_cancellation_until: Optional[datetime] = Field(
        None, description="Snapshot of the property's free-cancellation deadline"
    )
    non_refundable: bool = False
    property_name: Optional[str] = Field(None, max_length=255)

    @model_validator(mode="after")
    def _check_out_after_check_in(self) -> "HotelDetailsIn":
        _check_window(self.check_in, self.check_out, "Hotel stay")
        return self

    def to_domain(self) -> HotelDetails:
        return HotelDetails(
            check_in=ensure_utc(self.check_in),
            check_out=ensure_utc(self.check_out),
            free_cancellation_until=ensure_utc(self.free_cancellation_until),
            non_refundable=self.non_refundable,
            property_name=self.property_name,
        )


class CarDetailsIn(StrictRequestModel):
    kind: Literal["car"] = "car"
    pickup_at: Optional[datetime] = None
    dropoff_at: Optional[datetime] = None
    free_cancellation_until: Optional[datetime] = None
    company: Optional[str] = Field(None, max_length=255)
    vehicle_name: Optional[str] = Field(None, max_length=255)

    @model_validator(mode="after")
    def _dropoff_after_pickup(self) -> "CarDetailsIn":
        _check_window(self.pickup_at, self.dropoff_at, "Car rental")
        return self

    def to_domain(self) -> CarDetails:
        return CarDetails(
            pickup_at=ensure_utc(self.pickup_at),
            dropoff_at=ensure_utc(self.dropoff_at),
            free_cancellation_until=ensure_utc(self.free_cancellation_until),
            company=self.company,
            vehicle_name=self.vehicle_name,
        )


class InsuranceDetailsIn(StrictRequestModel):
    kind: Literal["insurance"] = "insurance"
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    policy_type: Optional[str] = Field(None, max_length=64)

    def to_domain(self) -> InsuranceDetails:
        return InsuranceDetails(
            start_date=ensure_utc(self.start_date),
            end_date=ensure_utc(self.end_date),
            policy_type=self.policy_type,
        )


class PackageDetailsIn(StrictRequestModel):
    kind: Literal["package"] = "package"
    title: Optional[str] = Field(None, max_length=255)
    ends_at: Optional[datetime] = None

    def to_domain(self) -> PackageDetails:
        return PackageDetails(title=self.title, ends_at=ensure_utc(self.ends_at))


TypeDetailsIn = Annotated[
    Union[FlightDetailsIn, HotelDetailsIn, CarDetailsIn, InsuranceDetailsIn, PackageDetailsIn],
    Field(discriminator="kind"),
]


class BookingCreate(StrictRequestModel):
    """Create a pending booking. The id and NVY- reference are generated server-side."""

    owner_id: str = Field(..., min_length=1, max_length=64, description="Owning user")
    kind: BookingKind
    total: Decimal = Field(..., gt=0, description="Booking total in major currency units")
    currency: str = Field("USD", min_length=3, max_length=3)
    type_details: Optional[TypeDetailsIn] = None

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, v: str) -> str:
        if not v.isalpha():
            raise ValueError("Currency must be a 3-letter ISO code")
        return v.upper()

    @model_validator(mode="after")
    def _details_match_kind(self) -> "BookingCreate":
        if self.type_details is None:
            if self.kind in KINDS_REQUIRING_DETAILS:
                raise ValueError(f"{self.kind.value} bookings require type_details")
            return self
        if self.type_details.kind != self.kind.value:
            raise ValueError(
                f"type_details kind {self.type_details.kind} does not match booking kind {self.kind.value}"
            )
        return self

    def to_type_details(self) -> Optional[TypeDetails]:
        return self.type_details.to_domain() if self.type_details else None


class BookingListQuery(StrictRequestModel):
    status: Optional[BookingStatus] = None
    kind: Optional[BookingKind] = None
    limit: int = Field(50, ge=1, le=200)
    offset: int = Field(0, ge=0)


class PricingResponse(StrictModel):
    total: Decimal
    currency: str
    paid_amount: Decimal
    refunded_amount: Decimal
    payment_status: PaymentStatus


class BookingResponse(StrictModel):
    id: str
    booking_reference: str
    owner_id: str
    kind: BookingKind
    status: BookingStatus
    pricing: PricingResponse
    type_details: Optional[Dict[str, Any]] = None
    created_at: datetime
    updated_at: datetime
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    cancellation_fee: Optional[Decimal] = None
    refund_references: List[str] = Field(default_factory=list)

    @classmethod
    def from_booking(cls, booking: Booking) -> "BookingResponse":
        pricing = booking.pricing
        return cls(
            id=booking.id,
            booking_reference=booking.booking_reference,
            owner_id=booking.owner_id,
            kind=booking.kind,
            status=booking.status,
            pricing=PricingResponse(
                total=pricing.total,
                currency=pricing.currency,
                paid_amount=pricing.paid_amount,
                refunded_amount=pricing.refunded_amount,
                payment_status=pricing.payment_status,
            ),
            type_details=booking.type_details.to_dict() if booking.type_details else None,
            created_at=booking.created_at,
            updated_at=booking.updated_at,
            confirmed_at=booking.confirmed_at,
            cancelled_at=booking.cancelled_at,
            completed_at=booking.completed_at,
            expires_at=booking.expires_at,
            cancellation_reason=booking.cancellation_reason,
            cancellation_fee=booking.cancellation_fee,
            refund_references=(
                [r.refund_reference for r in booking.ledger.refunds] if booking.ledger else []
            ),
        )
