"""
Domain errors raised by the lifecycle and refund services.

Each error carries its HTTP status and envelope code so that the exception
handler registered in ``app.main`` can render it without a lookup table.
"""

from fastapi import status


class DomainError(Exception):
    """Base class for precondition violations surfaced to the caller."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "DOMAIN_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(DomainError):
    """Illegal transition for the current state or invalid request data."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "VALIDATION_ERROR"


class NotFoundError(DomainError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "RESOURCE_NOT_FOUND"


class ConflictError(DomainError):
    """Duplicate request, submission outside policy, or a lost conditional write."""

    status_code = status.HTTP_409_CONFLICT
    code = "CONFLICT"


class AuthorizationError(DomainError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"
