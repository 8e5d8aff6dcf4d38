# nexvoy/repositories/factory.py
"""
Repository Factory for the Nexvoy booking core.

Centralizes construction of the booking repository and its lock manager so
the backing store and lock backend are chosen from settings in one place.
"""

from typing import TYPE_CHECKING, Optional

from ..core.booking_lock import (
    BookingLockManager,
    LocalBookingLockManager,
    RedisBookingLockManager,
)
from ..core.config import Settings, settings as default_settings
from .base_repository import IBookingRepository

if TYPE_CHECKING:
    from sqlalchemy.orm import sessionmaker


class RepositoryFactory:
    """Factory class for creating repository instances."""

    @staticmethod
    def create_lock_manager(config: Optional[Settings] = None) -> BookingLockManager:
        """Create the per-booking lock manager selected by ``lock_backend``."""
        config = config or default_settings
        if config.lock_backend == "redis":
            return RedisBookingLockManager.from_url(
                config.redis_url,
                ttl_s=config.booking_lock_ttl_seconds,
                timeout_s=config.booking_lock_timeout_seconds,
            )
        return LocalBookingLockManager(timeout_s=config.booking_lock_timeout_seconds)

    @staticmethod
    def create_booking_repository(
        config: Optional[Settings] = None,
        *,
        lock_manager: Optional[BookingLockManager] = None,
        session_factory: Optional["sessionmaker"] = None,
    ) -> IBookingRepository:
        """Create the booking repository selected by ``repository_backend``."""
        config = config or default_settings
        lock_manager = lock_manager or RepositoryFactory.create_lock_manager(config)

        if config.repository_backend == "sqlalchemy":
            from ..database import build_engine, build_session_factory, init_db
            from .sql_booking_repository import SqlAlchemyBookingRepository

            if session_factory is None:
                engine = build_engine(config.database_url)
                init_db(engine)
                session_factory = build_session_factory(engine)
            return SqlAlchemyBookingRepository(session_factory, lock_manager=lock_manager)

        from .memory_booking_repository import InMemoryBookingRepository

        return InMemoryBookingRepository(lock_manager=lock_manager)
