"""
Per-booking mutual exclusion.

Every read-modify-write on a booking runs inside ``lock(booking_id)``.
Locks are keyed by booking id, so operations on different bookings never
wait on each other. Lock acquisition is bounded; a timeout surfaces as
ServiceUnavailableException so callers can retry.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import contextmanager
import logging
import threading
import time
from typing import Dict, Iterator, Optional

from redis import Redis
from redis.exceptions import LockError, RedisError

from ..monitoring.prometheus_metrics import prometheus_metrics
from .exceptions import ServiceUnavailableException

logger = logging.getLogger(__name__)


def _lock_key(booking_id: str) -> str:
    return f"booking:{booking_id}:mutex"


class BookingLockManager(ABC):
    """Hands out an exclusive critical section per booking id."""

    backend_name = "abstract"

    def __init__(self, timeout_s: float = 5.0) -> None:
        self.timeout_s = timeout_s

    @abstractmethod
    def _acquire(self, booking_id: str) -> bool:
        """Block up to ``timeout_s``; return False on timeout."""

    @abstractmethod
    def _release(self, booking_id: str) -> None:
        """Release a lock previously acquired by this manager."""

    @contextmanager
    def lock(self, booking_id: str) -> Iterator[None]:
        started = time.monotonic()
        acquired = self._acquire(booking_id)
        prometheus_metrics.observe_lock_wait(self.backend_name, time.monotonic() - started)
        if not acquired:
            prometheus_metrics.record_booking_lock(self.backend_name, "acquire", "timeout")
            logger.warning(
                "booking_lock_timeout",
                extra={"booking_id": booking_id, "timeout_s": self.timeout_s},
            )
            raise ServiceUnavailableException(
                f"Timed out waiting for lock on booking {booking_id}",
                code="LOCK_TIMEOUT",
                details={"booking_id": booking_id},
            )
        prometheus_metrics.record_booking_lock(self.backend_name, "acquire", "success")
        try:
            yield
        finally:
            self._release(booking_id)


class _LocalLockEntry:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.holders = 0


class LocalBookingLockManager(BookingLockManager):
    """
    In-process locks, one ``threading.Lock`` per booking id.

    Entries are reference counted and discarded once nobody holds or waits
    on them, so the table only grows with in-flight bookings.
    """

    backend_name = "local"

    def __init__(self, timeout_s: float = 5.0) -> None:
        super().__init__(timeout_s=timeout_s)
        self._guard = threading.Lock()
        self._entries: Dict[str, _LocalLockEntry] = {}

    def _checkout(self, booking_id: str) -> _LocalLockEntry:
        with self._guard:
            entry = self._entries.get(booking_id)
            if entry is None:
                entry = _LocalLockEntry()
                self._entries[booking_id] = entry
            entry.holders += 1
            return entry

    def _checkin(self, booking_id: str, entry: _LocalLockEntry) -> None:
        with self._guard:
            entry.holders -= 1
            if entry.holders == 0 and self._entries.get(booking_id) is entry:
                del self._entries[booking_id]

    def _acquire(self, booking_id: str) -> bool:
        entry = self._checkout(booking_id)
        if entry.lock.acquire(timeout=self.timeout_s):
            return True
        self._checkin(booking_id, entry)
        return False

    def _release(self, booking_id: str) -> None:
        with self._guard:
            entry = self._entries.get(booking_id)
        if entry is None:
            logger.warning("booking_lock_release_unknown", extra={"booking_id": booking_id})
            return
        entry.lock.release()
        prometheus_metrics.record_booking_lock(self.backend_name, "release", "success")
        self._checkin(booking_id, entry)

    def active_count(self) -> int:
        with self._guard:
            return len(self._entries)


class RedisBookingLockManager(BookingLockManager):
    """
    Cross-process locks backed by redis-py ``Lock`` objects.

    The TTL bounds how long a crashed holder can keep a booking locked.
    """

    backend_name = "redis"

    def __init__(
        self,
        client: Redis,
        *,
        ttl_s: int = 90,
        timeout_s: float = 5.0,
        namespace: str = "nexvoy",
    ) -> None:
        super().__init__(timeout_s=timeout_s)
        self.client = client
        self.ttl_s = ttl_s
        self.namespace = namespace
        self._held: Dict[str, object] = {}
        self._held_guard = threading.Lock()

    @classmethod
    def from_url(cls, redis_url: str, **kwargs: object) -> "RedisBookingLockManager":
        client = Redis.from_url(redis_url, encoding="utf-8", decode_responses=True)
        return cls(client, **kwargs)  # type: ignore[arg-type]

    def _namespaced_key(self, booking_id: str) -> str:
        return f"{self.namespace}:lock:{_lock_key(booking_id)}"

    def _acquire(self, booking_id: str) -> bool:
        redis_lock = self.client.lock(
            self._namespaced_key(booking_id),
            timeout=self.ttl_s,
            blocking_timeout=self.timeout_s,
            thread_local=False,
        )
        try:
            acquired = bool(redis_lock.acquire(blocking=True))
        except RedisError as exc:
            prometheus_metrics.record_booking_lock(self.backend_name, "acquire", "error")
            logger.error(
                "booking_lock_redis_acquire_failed",
                extra={
                    "booking_id": booking_id,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )
            raise ServiceUnavailableException(
                "Booking lock store unavailable",
                code="LOCK_UNAVAILABLE",
                details={"booking_id": booking_id},
            ) from exc
        if acquired:
            with self._held_guard:
                self._held[booking_id] = redis_lock
        return acquired

    def _release(self, booking_id: str) -> None:
        with self._held_guard:
            redis_lock: Optional[object] = self._held.pop(booking_id, None)
        if redis_lock is None:
            return
        try:
            redis_lock.release()  # type: ignore[attr-defined]
            prometheus_metrics.record_booking_lock(self.backend_name, "release", "success")
        except LockError as exc:
            # TTL elapsed before release; another holder may already own the key.
            prometheus_metrics.record_booking_lock(self.backend_name, "release", "expired")
            logger.warning(
                "booking_lock_redis_release_expired",
                extra={"booking_id": booking_id, "error": str(exc)},
            )
        except RedisError as exc:
            prometheus_metrics.record_booking_lock(self.backend_name, "release", "error")
            logger.warning(
                "booking_lock_redis_release_failed",
                extra={
                    "booking_id": booking_id,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )
