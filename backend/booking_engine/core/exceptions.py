# backend/booking_engine/core/exceptions.py
"""
Domain-specific exceptions for the booking engine.

These exceptions provide clear, business-focused error messages
that can be caught and handled appropriately at an API layer.
"""

from enum import Enum
from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

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
        """Default conversion to HTTPException (override in subclasses)."""
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised for malformed input. Never retried."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class NotFoundException(DomainException):
    """Raised when a requested resource is not found (or not visible to the actor)."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ConflictException(DomainException):
    """Raised when a request is rejected by current calendar or ledger state."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ForbiddenException(DomainException):
    """Raised when the acting identity lacks permission for an action."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class TransientException(DomainException):
    """Raised on persistence contention; safe to retry with backoff."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
            headers={"Retry-After": "1"},
        )


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


# Specific business exceptions


class ConflictReason(str, Enum):
    OVERLAP = "overlap"
    ENTITLEMENT_EXHAUSTED = "entitlement_exhausted"
    OUTSIDE_AVAILABILITY = "outside_availability"
    PACK_HAS_SCHEDULED_SESSIONS = "pack_has_scheduled_sessions"
    SESSION_NOT_SCHEDULED = "session_not_scheduled"
    RESCHEDULE_NOTICE = "reschedule_notice"


_DEFAULT_CONFLICT_MESSAGES: Dict[ConflictReason, str] = {
    ConflictReason.OVERLAP: "This time slot conflicts with an existing session",
    ConflictReason.ENTITLEMENT_EXHAUSTED: "No remaining sessions on the selected entitlement",
    ConflictReason.OUTSIDE_AVAILABILITY: "Requested time is outside the provider's availability",
    ConflictReason.PACK_HAS_SCHEDULED_SESSIONS: "Pack still has scheduled sessions",
    ConflictReason.SESSION_NOT_SCHEDULED: "Session is no longer scheduled",
    ConflictReason.RESCHEDULE_NOTICE: "Sessions cannot be moved this close to their start time",
}


class BookingConflictException(ConflictException):
    """Raised when a booking, cancellation or pack action is rejected as a business conflict."""

    def __init__(
        self,
        reason: ConflictReason,
        message: Optional[str] = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.reason = ConflictReason(reason)
        super().__init__(
            message=message or _DEFAULT_CONFLICT_MESSAGES[self.reason],
            code=self.reason.value.upper(),
            details={"reason": self.reason.value, **(details or {})},
        )


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """


def is_db_pool_exhaustion(exc: BaseException) -> bool:
    """Check if an exception indicates DB connection pool exhaustion."""
    error_str = str(exc).lower()
    return "queuepool" in error_str or (
        "timeout" in error_str and ("connection" in error_str or "pool" in error_str)
    )
