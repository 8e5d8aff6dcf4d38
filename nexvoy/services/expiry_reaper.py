# nexvoy/services/expiry_reaper.py
"""
Expiry reaper: fails pending bookings that were never confirmed in time.

Each booking is expired in its own critical section, so a sweep that is
interrupted part-way leaves every booking either untouched or fully failed
and the next sweep picks up the rest. A booking confirmed or cancelled after
it was listed simply reports a rejected transition and is skipped.
"""

from dataclasses import dataclass
from datetime import datetime
import logging
import threading
from typing import Optional

from ..core.exceptions import NotFoundException, ServiceUnavailableException
from ..models.booking import utcnow
from ..monitoring.prometheus_metrics import prometheus_metrics
from .booking_service import BookingService

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    scanned: int = 0
    expired: int = 0
    skipped: int = 0
    errors: int = 0
    interrupted: bool = False


class ExpiryReaper:
    def __init__(
        self,
        booking_service: BookingService,
        *,
        batch_size: int = 200,
        interval_seconds: float = 60,
    ) -> None:
        self.booking_service = booking_service
        self.batch_size = batch_size
        self.interval_seconds = interval_seconds
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def sweep(self, now: Optional[datetime] = None) -> SweepResult:
        """Expire every pending booking whose deadline is before ``now``."""
        now = now or utcnow()
        result = SweepResult()
        candidates = self.booking_service.find_expired_bookings(now, self.batch_size)

        for booking in candidates:
            if self._stop_event.is_set():
                result.interrupted = True
                break
            result.scanned += 1
            try:
                transition = self.booking_service.expire_booking(booking.id, now)
            except NotFoundException:
                result.skipped += 1
                continue
            except ServiceUnavailableException as exc:
                result.errors += 1
                logger.warning(
                    "reaper_booking_unavailable",
                    extra={"booking_id": booking.id, "code": exc.code},
                )
                continue
            if transition.changed:
                result.expired += 1
            else:
                result.skipped += 1

        outcome = "interrupted" if result.interrupted else ("partial" if result.errors else "success")
        prometheus_metrics.record_reaper_sweep(outcome, result.expired)
        if result.scanned:
            logger.info(
                "reaper_sweep_completed",
                extra={
                    "scanned": result.scanned,
                    "expired": result.expired,
                    "skipped": result.skipped,
                    "errors": result.errors,
                },
            )
        return result

    # In-process scheduling for hosts that do not run Celery beat

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.sweep()
            except Exception:
                prometheus_metrics.record_reaper_sweep("error")
                logger.exception("Expiry reaper sweep failed")
            self._stop_event.wait(self.interval_seconds)

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="nexvoy-expiry-reaper", daemon=True)
        self._thread.start()
        logger.info("Expiry reaper started", extra={"interval_seconds": self.interval_seconds})

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Expiry reaper stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
