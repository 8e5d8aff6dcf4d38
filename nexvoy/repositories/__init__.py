# nexvoy/repositories/__init__.py
"""
Repository layer for bookings.

Key Components:
- IBookingRepository: interface plus the locked ``update``/``mutate`` helpers
- InMemoryBookingRepository: dict-backed store
- SqlAlchemyBookingRepository: relational store
- RepositoryFactory: builds the configured repository and lock manager
"""

from .base_repository import BookingStats, IBookingRepository
from .factory import RepositoryFactory
from .memory_booking_repository import InMemoryBookingRepository
from .sql_booking_repository import SqlAlchemyBookingRepository

__all__ = [
    "BookingStats",
    "IBookingRepository",
    "InMemoryBookingRepository",
    "RepositoryFactory",
    "SqlAlchemyBookingRepository",
]
