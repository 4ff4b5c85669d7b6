from __future__ import annotations

from typing import Any


class DomainError(Exception):
    """Base class for errors raised by domain services and rendered at the HTTP boundary."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, *, details: Any = None) -> None:
        self.message = message
        self.details = details
        super().__init__(message)


class NotFoundError(DomainError):
    status_code = 404
    code = "not_found"


class ConflictError(DomainError):
    status_code = 400
    code = "conflict"


class ValidationFailedError(DomainError):
    status_code = 400
    code = "validation_failed"


class ForbiddenError(DomainError):
    status_code = 403
    code = "forbidden"


class ExternalServiceError(DomainError):
    status_code = 502
    code = "external_service_error"
