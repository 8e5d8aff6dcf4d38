# nexvoy/schemas/__init__.py
"""Pydantic request/response schemas for the booking core."""

from .booking import (
    BookingCreate,
    BookingListQuery,
    BookingResponse,
    CarDetailsIn,
    FlightDetailsIn,
    FlightSegmentIn,
    HotelDetailsIn,
    InsuranceDetailsIn,
    PackageDetailsIn,
    PricingResponse,
)

__all__ = [
    "BookingCreate",
    "BookingListQuery",
    "BookingResponse",
    "CarDetailsIn",
    "FlightDetailsIn",
    "FlightSegmentIn",
    "HotelDetailsIn",
    "InsuranceDetailsIn",
    "PackageDetailsIn",
    "PricingResponse",
]
