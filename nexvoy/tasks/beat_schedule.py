# nexvoy/tasks/beat_schedule.py
"""
Celery Beat schedule for the booking core.

Both jobs are interval-driven; the intervals come from settings so the
reaper cadence can be tuned per environment.
"""

from datetime import timedelta
from typing import Any, Dict

from ..core.config import Settings


def get_beat_schedule(config: Settings) -> Dict[str, Dict[str, Any]]:
    return {
        # Fail pending bookings that passed their payment deadline
        "expire-pending-bookings": {
            "task": "nexvoy.tasks.booking_tasks.expire_pending_bookings",
            "schedule": timedelta(seconds=config.reaper_interval_seconds),
            "options": {
                "queue": "bookings",
                "expires": config.reaper_interval_seconds,
            },
        },
        # Re-attempt refunds deferred by payment provider outages
        "retry-pending-refunds": {
            "task": "nexvoy.tasks.booking_tasks.retry_pending_refunds",
            "schedule": timedelta(seconds=config.refund_retry_interval_seconds),
            "options": {
                "queue": "bookings",
                "expires": config.refund_retry_interval_seconds,
            },
        },
    }
