"""Custom application exceptions."""

from typing import Any


class AppException(Exception):
    """Base application exception."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        context: dict[str, Any] | None = None,
    ):
        """Initialize exception with message, status code and reproduction context."""
        self.message = message
        self.status_code = status_code
        self.context = context or {}
        super().__init__(self.message)


class NotFoundException(AppException):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found", context: dict[str, Any] | None = None):
        """Initialize with 404 status code."""
        super().__init__(message, status_code=404, context=context)


class UnauthorizedException(AppException):
    """Unauthorized access exception."""

    def __init__(self, message: str = "Unauthorized"):
        """Initialize with 401 status code."""
        super().__init__(message, status_code=401)


class ForbiddenException(AppException):
    """Forbidden access exception."""

    def __init__(self, message: str = "Forbidden"):
        """Initialize with 403 status code."""
        super().__init__(message, status_code=403)


class ConflictException(AppException):
    """Conflict exception."""

    def __init__(self, message: str = "Conflict", context: dict[str, Any] | None = None):
        """Initialize with 409 status code."""
        super().__init__(message, status_code=409, context=context)


class InvalidTransitionException(ConflictException):
    """Requested state change is not permitted from the current state."""

    def __init__(
        self,
        message: str = "Invalid appointment transition",
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message, context=context)


class SlotConflictException(ConflictException):
    """Slot capacity is already saturated."""

    def __init__(self, message: str = "Time slot is full", context: dict[str, Any] | None = None):
        super().__init__(message, context=context)


class SlotExpiredException(AppException):
    """Temporal guard failed for the slot."""

    def __init__(
        self,
        message: str = "Time slot has already elapsed",
        context: dict[str, Any] | None = None,
    ):
        """Initialize with 409 status code."""
        super().__init__(message, status_code=409, context=context)


class BusyException(AppException):
    """Arbitration point could not be acquired in time. Safe to retry."""

    retry_after_seconds = 1

    def __init__(
        self,
        message: str = "Scheduler is busy, retry shortly",
        context: dict[str, Any] | None = None,
    ):
        """Initialize with 503 status code."""
        super().__init__(message, status_code=503, context=context)


class ValidationException(AppException):
    """Validation error exception."""

    def __init__(self, message: str = "Validation error", context: dict[str, Any] | None = None):
        """Initialize with 422 status code."""
        super().__init__(message, status_code=422, context=context)
