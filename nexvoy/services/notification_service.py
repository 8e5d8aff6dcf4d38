# nexvoy/services/notification_service.py
"""
Booking notifications.

Notifications are fire-and-forget: a failing sender is logged and never
rolls back or blocks the booking transition that triggered it.
"""

from decimal import Decimal
import logging
from typing import Optional, Protocol

from ..models.booking import Booking

logger = logging.getLogger(__name__)


class NotificationSender(Protocol):
    def notify_confirmed(self, booking: Booking) -> None:
        ...

    def notify_cancelled(self, booking: Booking, refund_amount: Decimal) -> None:
        ...


class LoggingNotificationSender:
    """Default sender: writes the notification to the application log."""

    def notify_confirmed(self, booking: Booking) -> None:
        logger.info(
            "notify_booking_confirmed",
            extra={
                "booking_id": booking.id,
                "booking_reference": booking.booking_reference,
                "owner_id": booking.owner_id,
            },
        )

    def notify_cancelled(self, booking: Booking, refund_amount: Decimal) -> None:
        logger.info(
            "notify_booking_cancelled",
            extra={
                "booking_id": booking.id,
                "booking_reference": booking.booking_reference,
                "owner_id": booking.owner_id,
                "refund_amount": str(refund_amount),
            },
        )


class BookingNotifier:
    """Dispatches booking notifications and contains sender failures."""

    def __init__(self, sender: Optional[NotificationSender] = None) -> None:
        self.sender: NotificationSender = sender or LoggingNotificationSender()

    def booking_confirmed(self, booking: Booking) -> bool:
        try:
            self.sender.notify_confirmed(booking)
            return True
        except Exception as exc:
            logger.error(
                "Failed to send booking confirmation notification",
                exc_info=True,
                extra={"booking_id": booking.id, "error_type": type(exc).__name__},
            )
            return False

    def booking_cancelled(self, booking: Booking, refund_amount: Decimal) -> bool:
        try:
            self.sender.notify_cancelled(booking, refund_amount)
            return True
        except Exception as exc:
            logger.error(
                "Failed to send booking cancellation notification",
                exc_info=True,
                extra={"booking_id": booking.id, "error_type": type(exc).__name__},
            )
            return False
