"""Custom exception hierarchy for AwareGuard.

Provides structured error types that the centralized error handler
translates into consistent JSON responses.
"""

from __future__ import annotations


class AwareGuardError(Exception):
    """Base exception for all AwareGuard errors."""

    status_code: int = 500
    error_type: str = "internal_error"

    def __init__(self, message: str = "An internal error occurred") -> None:
        self.message = message
        super().__init__(message)


class AuthenticationError(AwareGuardError):
    """No verified identity accompanies the request."""

    status_code = 401
    error_type = "unauthenticated"


class ForbiddenError(AwareGuardError):
    """Authenticated, but lacking the required permission or role."""

    status_code = 403
    error_type = "forbidden"


class ValidationError(AwareGuardError):
    """Input validation failure beyond Pydantic constraints."""

    status_code = 400
    error_type = "validation_error"


class InvalidRoleError(ValidationError):
    """A value is not one of the closed Role variants."""

    error_type = "invalid_role"


class InvalidPermissionError(ValidationError):
    """A value is not one of the closed Permission variants."""

    error_type = "invalid_permission"


class SelfModificationDenied(ValidationError):
    """An actor tried to change their own role."""

    error_type = "self_modification_denied"


class NotFoundError(AwareGuardError):
    """Requested resource was not found."""

    status_code = 404
    error_type = "not_found"


class ConflictError(AwareGuardError):
    """Write rejected because the stored state changed or already exists."""

    status_code = 409
    error_type = "conflict"


class StorageError(AwareGuardError):
    """Database or storage layer failure."""

    status_code = 500
    error_type = "internal_error"
