# nexvoy/core/exceptions.py
"""
Domain-specific exceptions for the Nexvoy booking core.

Expected business outcomes (invalid or final-state transitions) are carried
as TransitionResult values by the booking aggregate; the classes here are the
raised form used at service boundaries and by the API layer.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    retryable: bool = False

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        headers = {"Retry-After": "2"} if self.retryable else None
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
            headers=headers,
        )


class ValidationException(DomainException):
    """Raised when required booking data is missing or malformed."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, errors: Optional[list[str]] = None) -> None:
        super().__init__(message, code="VALIDATION_ERROR", details={"errors": errors or []})
        self.errors = errors or []


class NotFoundException(DomainException):
    """Raised when a requested booking does not exist."""

    status_code = status.HTTP_404_NOT_FOUND


class InvalidTransitionException(DomainException):
    """Raised when an operation is not permitted from the booking's current status."""

    status_code = status.HTTP_409_CONFLICT

    def __init__(
        self,
        message: str,
        *,
        booking_id: Optional[str] = None,
        current_status: Optional[str] = None,
        operation: Optional[str] = None,
        code: str = "INVALID_TRANSITION",
    ) -> None:
        super().__init__(
            message,
            code=code,
            details={
                "booking_id": booking_id,
                "current_status": current_status,
                "operation": operation,
            },
        )


class AlreadyFinalException(InvalidTransitionException):
    """Raised when the booking is already in a terminal state (e.g. already cancelled)."""

    def __init__(
        self,
        message: str,
        *,
        booking_id: Optional[str] = None,
        current_status: Optional[str] = None,
        operation: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            booking_id=booking_id,
            current_status=current_status,
            operation=operation,
            code="ALREADY_FINAL",
        )


class ReferenceConflictException(DomainException):
    """Raised by repositories when a booking reference or id is already taken."""

    status_code = status.HTTP_409_CONFLICT


class PaymentServiceUnavailableException(DomainException):
    """Raised when the payment provider call fails or times out. Retryable."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True


class ServiceUnavailableException(DomainException):
    """Raised for infrastructure failures (storage down, lock acquisition timeout)."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    Used when data access operations fail, such as database connection
    issues or query failures.
    """
