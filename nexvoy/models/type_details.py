"""
Kind-specific booking details.

Only the projection the booking core needs is kept here: the service window
(for completion) and the cancellation policy inputs. Full flight, hotel and
car documents belong to the booking-detail modules outside this package.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Union


class BookingKind(str, Enum):
    """What was booked."""

    FLIGHT = "flight"
    HOTEL = "hotel"
    CAR = "car"
    INSURANCE = "insurance"
    PACKAGE = "package"


# Kinds whose details must be present before a booking can be confirmed.
KINDS_REQUIRING_DETAILS = frozenset({BookingKind.FLIGHT, BookingKind.HOTEL, BookingKind.CAR})


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat_or_none(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    return ensure_utc(datetime.fromisoformat(str(value)))


@dataclass(frozen=True)
class FlightSegment:
    departure_at: Optional[datetime]
    arrival_at: Optional[datetime]
    origin: Optional[str] = None
    destination: Optional[str] = None
    flight_number: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "departure_at": isoformat_or_none(self.departure_at),
            "arrival_at": isoformat_or_none(self.arrival_at),
            "origin": self.origin,
            "destination": self.destination,
            "flight_number": self.flight_number,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FlightSegment":
        return cls(
            departure_at=parse_datetime(data.get("departure_at")),
            arrival_at=parse_datetime(data.get("arrival_at")),
            origin=data.get("origin"),
            destination=data.get("destination"),
            flight_number=data.get("flight_number"),
        )


@dataclass(frozen=True)
class FlightDetails:
    kind: ClassVar[BookingKind] = BookingKind.FLIGHT

    outbound: Optional[FlightSegment]
    inbound: Optional[FlightSegment] = None

    @property
    def is_complete(self) -> bool:
        if self.outbound is None:
            return False
        if self.outbound.departure_at is None or self.outbound.arrival_at is None:
            return False
        if self.inbound is not None and (
            self.inbound.departure_at is None or self.inbound.arrival_at is None
        ):
            return False
        return True

    @property
    def departure_at(self) -> Optional[datetime]:
        return self.outbound.departure_at if self.outbound else None

    @property
    def service_end_at(self) -> Optional[datetime]:
        last_leg = self.inbound or self.outbound
        return last_leg.arrival_at if last_leg else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "outbound": self.outbound.to_dict() if self.outbound else None,
            "inbound": self.inbound.to_dict() if self.inbound else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FlightDetails":
        outbound = data.get("outbound")
        inbound = data.get("inbound")
        return cls(
            outbound=FlightSegment.from_dict(outbound) if outbound else None,
            inbound=FlightSegment.from_dict(inbound) if inbound else None,
        )


@dataclass(frozen=True)
class HotelDetails:
    kind: ClassVar[BookingKind] = BookingKind.HOTEL

    check_in: Optional[datetime]
    check_out: Optional[datetime]
    free_cancellation_until: Optional[datetime] = None
    non_refundable: bool = False
    property_name: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return self.check_in is not None and self.check_out is not None

    @property
    def service_end_at(self) -> Optional[datetime]:
        return self.check_out

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "check_in": isoformat_or_none(self.check_in),
            "check_out": isoformat_or_none(self.check_out),
            "free_cancellation_until": isoformat_or_none(self.free_cancellation_until),
            "non_refundable": self.non_refundable,
            "property_name": self.property_name,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HotelDetails":
        return cls(
            check_in=parse_datetime(data.get("check_in")),
            check_out=parse_datetime(data.get("check_out")),
            free_cancellation_until=parse_datetime(data.get("free_cancellation_until")),
            non_refundable=bool(data.get("non_refundable", False)),
            property_name=data.get("property_name"),
        )


@dataclass(frozen=True)
class CarDetails:
    kind: ClassVar[BookingKind] = BookingKind.CAR

    pickup_at: Optional[datetime]
    dropoff_at: Optional[datetime]
    free_cancellation_until: Optional[datetime] = None
    company: Optional[str] = None
    vehicle_name: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return self.pickup_at is not None and self.dropoff_at is not None

    @property
    def service_end_at(self) -> Optional[datetime]:
        return self.dropoff_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "pickup_at": isoformat_or_none(self.pickup_at),
            "dropoff_at": isoformat_or_none(self.dropoff_at),
            "free_cancellation_until": isoformat_or_none(self.free_cancellation_until),
            "company": self.company,
            "vehicle_name": self.vehicle_name,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CarDetails":
        return cls(
            pickup_at=parse_datetime(data.get("pickup_at")),
            dropoff_at=parse_datetime(data.get("dropoff_at")),
            free_cancellation_until=parse_datetime(data.get("free_cancellation_until")),
            company=data.get("company"),
            vehicle_name=data.get("vehicle_name"),
        )


@dataclass(frozen=True)
class InsuranceDetails:
    kind: ClassVar[BookingKind] = BookingKind.INSURANCE

    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    policy_type: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return True

    @property
    def service_end_at(self) -> Optional[datetime]:
        return self.end_date

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "start_date": isoformat_or_none(self.start_date),
            "end_date": isoformat_or_none(self.end_date),
            "policy_type": self.policy_type,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InsuranceDetails":
        return cls(
            start_date=parse_datetime(data.get("start_date")),
            end_date=parse_datetime(data.get("end_date")),
            policy_type=data.get("policy_type"),
        )


@dataclass(frozen=True)
class PackageDetails:
    kind: ClassVar[BookingKind] = BookingKind.PACKAGE

    title: Optional[str] = None
    ends_at: Optional[datetime] = None

    @property
    def is_complete(self) -> bool:
        return True

    @property
    def service_end_at(self) -> Optional[datetime]:
        return self.ends_at

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "title": self.title, "ends_at": isoformat_or_none(self.ends_at)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PackageDetails":
        return cls(title=data.get("title"), ends_at=parse_datetime(data.get("ends_at")))


TypeDetails = Union[FlightDetails, HotelDetails, CarDetails, InsuranceDetails, PackageDetails]

_DETAILS_BY_KIND = {
    BookingKind.FLIGHT: FlightDetails,
    BookingKind.HOTEL: HotelDetails,
    BookingKind.CAR: CarDetails,
    BookingKind.INSURANCE: InsuranceDetails,
    BookingKind.PACKAGE: PackageDetails,
}


def type_details_from_dict(data: Optional[Dict[str, Any]]) -> Optional[TypeDetails]:
    """Rebuild a details variant from its ``to_dict`` form (dispatches on ``kind``)."""
    if not data:
        return None
    kind = BookingKind(data["kind"])
    return _DETAILS_BY_KIND[kind].from_dict(data)  # type: ignore[attr-defined]
