from __future__ import annotations

from fastapi import status


class CommercialError(Exception):
    """Base error for commercial and offer operations.

    Every subclass maps to one entry of the error taxonomy and carries the HTTP
    status used by the response envelope plus a machine-readable ``code``.
    """

    status_code: int = status.HTTP_400_BAD_REQUEST
    default_code: str = "error"

    def __init__(self, message: str, code: str | None = None) -> None:
        self.message = message
        self.code = code or self.default_code
        super().__init__(message)


class NotFoundError(CommercialError):
    status_code = status.HTTP_404_NOT_FOUND
    default_code = "not_found"


class ValidationFailedError(CommercialError):
    """Malformed input shape, e.g. an identifier that does not parse."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_code = "validation_error"


class BusinessRuleError(CommercialError):
    """A disallowed transition or move."""

    status_code = status.HTTP_409_CONFLICT
    default_code = "business_rule"


class ConflictError(CommercialError):
    """Uniqueness collision inside a studio (duplicate phone, slug)."""

    status_code = status.HTTP_409_CONFLICT
    default_code = "conflict"


class ForbiddenError(CommercialError):
    status_code = status.HTTP_403_FORBIDDEN
    default_code = "forbidden"
