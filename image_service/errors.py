"""Typed errors shared by the handlers and the HTTP layer."""

from __future__ import annotations


class ServiceError(Exception):
    """Base exception for all service errors."""

    status_code = 500
    retryable = False
    public_message = "Internal server error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message


class ValidationError(ServiceError):
    """Client input was rejected (bad file, bad type, oversized, malformed body)."""

    status_code = 400
    public_message = "Invalid request"


class JobDecodeError(ValidationError):
    """Queue message body could not be decoded into an analysis job."""

    public_message = "Invalid analysis job message"


class UnauthorizedError(ServiceError):
    """No trusted claims were attached to the request."""

    status_code = 401
    public_message = "Unauthorized"


class ForbiddenError(ServiceError):
    """Caller does not own the requested record."""

    status_code = 403
    public_message = "Forbidden"


class NotFoundError(ServiceError):
    """Requested record does not exist."""

    status_code = 404
    public_message = "Not found"


class ConflictError(ServiceError):
    """Resource already exists (duplicate account, email alias)."""

    status_code = 409
    public_message = "Conflict"


class InfrastructureError(ServiceError):
    """A managed-service call failed. Safe to retry; detail stays in the logs."""

    status_code = 500
    retryable = True

    def __init__(self, message: str = "", service: str = "unknown"):
        super().__init__(message)
        self.service = service
