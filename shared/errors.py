"""
Shared error handling for the News Portal Access Layer.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel
from opentelemetry import trace


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


def current_trace_id() -> Optional[str]:
    """Return the hex trace id of the active span, if any."""
    current_span = trace.get_current_span()
    if current_span and current_span.is_recording():
        span_context = current_span.get_span_context()
        if span_context.trace_id != 0:
            return f"{span_context.trace_id:032x}"
    return None


class AccessLayerException(Exception):
    """Base exception for Access Layer services."""

    status_code = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None,
                 status_code: Optional[int] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            trace_id=current_trace_id(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(AccessLayerException):
    """Malformed request input."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class AuthenticationError(AccessLayerException):
    """Missing, invalid or expired session token."""

    status_code = 401

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class InvalidCredentialsError(AuthenticationError):
    """Credential check failed.

    The message is deliberately the same for an unknown account and a wrong
    password.
    """

    def __init__(self, message: str = "Invalid credentials"):
        super().__init__(message)
        self.code = "INVALID_CREDENTIALS"


class AuthorizationError(AccessLayerException):
    """Authorization-related errors."""

    status_code = 403

    def __init__(self, message: str = "Authorization failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHORIZATION_ERROR", message, details)


class NotAuthorizedError(AuthorizationError):
    """Proven identity without a matching portal user (or allowed role)."""

    def __init__(self, message: str = "User not authorized to access the portal"):
        super().__init__(message)
        self.code = "NOT_AUTHORIZED"


class RateLimitError(AccessLayerException):
    """Too many login attempts from one client."""

    status_code = 429

    def __init__(self, retry_after_minutes: int, message: Optional[str] = None):
        self.retry_after_minutes = retry_after_minutes
        super().__init__(
            "RATE_LIMIT_ERROR",
            message or f"Too many login attempts. Try again in {retry_after_minutes} minutes.",
            {"retry_after_minutes": retry_after_minutes}
        )


class InternalError(AccessLayerException):
    """Generic internal failure; the cause is only logged server-side."""

    status_code = 500

    def __init__(self, message: str = "Internal server error"):
        super().__init__("INTERNAL_ERROR", message)


class ExternalServiceError(AccessLayerException):
    """External service errors."""

    status_code = 502

    def __init__(self, service: str, message: str = "External service error", details: Optional[Dict[str, Any]] = None):
        self.service = service
        super().__init__("EXTERNAL_SERVICE_ERROR", f"{service}: {message}", details)
