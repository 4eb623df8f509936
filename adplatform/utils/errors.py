"""Typed application errors.

Services raise these; the API layer maps each class to one HTTP status in a
single exception handler (see ``adplatform.main``). Nothing below the API
layer should raise ``HTTPException`` directly.
"""
from __future__ import annotations

from typing import Any, Optional


class AppError(Exception):
    status_code: int = 500
    error_code: str = "INTERNAL_SERVER_ERROR"

    def __init__(self, message: str, *, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(AppError):
    """Malformed input that passed schema parsing but fails a domain rule."""
    status_code = 400
    error_code = "VALIDATION_FAILED"


class SignatureError(AppError):
    """Webhook body whose signature does not verify against the shared secret."""
    status_code = 400
    error_code = "INVALID_SIGNATURE"


class AuthenticationError(AppError):
    status_code = 401
    error_code = "AUTHENTICATION_REQUIRED"


class AuthorizationError(AppError):
    status_code = 403
    error_code = "RESOURCE_ACCESS_DENIED"


class NotFoundError(AppError):
    status_code = 404
    error_code = "NOT_FOUND"


class PaymentRequiredError(AppError):
    status_code = 402
    error_code = "PAYMENT_REQUIRED"


class InvalidStateError(AppError):
    """Transition attempted from a state that does not allow it."""
    status_code = 409
    error_code = "INVALID_STATE"


class ConflictError(AppError):
    status_code = 409
    error_code = "CONFLICT"


class ExternalServiceError(AppError):
    """Payment processor or ad platform call failed."""
    status_code = 502
    error_code = "EXTERNAL_SERVICE_ERROR"

    def __init__(self, service_name: str, message: str, *, original_error: Exception | None = None):
        super().__init__(message, details={"service": service_name})
        self.service_name = service_name
        self.original_error = original_error


__all__ = [
    "AppError",
    "ValidationError",
    "SignatureError",
    "AuthenticationError",
    "AuthorizationError",
    "NotFoundError",
    "PaymentRequiredError",
    "InvalidStateError",
    "ConflictError",
    "ExternalServiceError",
]
