# nexvoy/tasks/booking_tasks.py
"""
Periodic booking maintenance tasks.

Handles expiry of abandoned pending bookings and retries of refunds that
failed at the payment provider.
"""

import logging
from typing import Any, Callable, Dict, TypeVar, cast

from ..core.exceptions import ServiceUnavailableException
from ..services.dependencies import get_booking_service, get_expiry_reaper
from .celery_app import BaseTask, celery_app

logger = logging.getLogger(__name__)

TaskCallable = TypeVar("TaskCallable", bound=Callable[..., Any])


def typed_task(*task_args: Any, **task_kwargs: Any) -> Callable[[TaskCallable], TaskCallable]:
    return cast(Callable[[TaskCallable], TaskCallable], celery_app.task(*task_args, **task_kwargs))


@typed_task(
    base=BaseTask,
    bind=True,
    name="nexvoy.tasks.booking_tasks.expire_pending_bookings",
    autoretry_for=(ServiceUnavailableException,),
    max_retries=2,
    retry_backoff=True,
)
def expire_pending_bookings(self: Any) -> Dict[str, int]:
    """
    Expire pending bookings whose deadline has passed.

    Returns:
        Dict with scanned/expired/skipped/error counts for the sweep
    """
    result = get_expiry_reaper().sweep()
    return {
        "scanned": result.scanned,
        "expired": result.expired,
        "skipped": result.skipped,
        "errors": result.errors,
    }


@typed_task(
    base=BaseTask,
    bind=True,
    name="nexvoy.tasks.booking_tasks.retry_pending_refunds",
    autoretry_for=(ServiceUnavailableException,),
    max_retries=2,
    retry_backoff=True,
)
def retry_pending_refunds(self: Any) -> Dict[str, Any]:
    """Re-attempt refunds for cancelled bookings that still owe money."""
    report = get_booking_service().retry_pending_refunds()
    if report.failed:
        logger.warning(
            f"{report.failed} refund(s) still pending after retry",
            extra={"failed_booking_ids": report.failed_booking_ids},
        )
    return {
        "attempted": report.attempted,
        "refunded": report.refunded,
        "failed": report.failed,
    }
