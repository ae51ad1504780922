"""
Shared error handling for the identity and session access layer.
"""

from typing import Dict, Any, Optional

from opentelemetry import trace
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class AccessLayerException(Exception):
    """Base exception for access layer services."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            trace_id=trace_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class NotFound(AccessLayerException):
    """Identity is absent upstream or the upstream could not be reached."""

    def __init__(self, identity_id: str, details: Optional[Dict[str, Any]] = None):
        self.identity_id = identity_id
        super().__init__("IDENTITY_NOT_FOUND", f"identity {identity_id} not found", details)


class ValidationFailed(AccessLayerException):
    """Bearer token rejected by the token validator."""

    def __init__(self, message: str = "Token validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("TOKEN_VALIDATION_FAILED", message, details)


class NoSession(AccessLayerException):
    """Session id is unknown to the store."""

    def __init__(self, message: str = "No session found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NO_SESSION", message, details)


class InvalidSession(AccessLayerException):
    """Session exists but its tokens could not be refreshed."""

    def __init__(self, message: str = "Invalid or expired session", details: Optional[Dict[str, Any]] = None):
        super().__init__("INVALID_SESSION", message, details)


class TokenRefreshFailed(AccessLayerException):
    """Refresh attempt failed or no refresh token was available."""

    def __init__(self, message: str = "Failed to refresh token", details: Optional[Dict[str, Any]] = None):
        super().__init__("TOKEN_REFRESH_FAILED", message, details)


class ProvisioningFailed(AccessLayerException):
    """Identity could not be ensured for a validated token."""

    def __init__(self, message: str = "Failed to ensure user", details: Optional[Dict[str, Any]] = None):
        super().__init__("PROVISIONING_FAILED", message, details)


class ExternalServiceError(AccessLayerException):
    """External service errors."""

    def __init__(self, service: str, message: str = "External service error", details: Optional[Dict[str, Any]] = None):
        self.service = service
        super().__init__("EXTERNAL_SERVICE_ERROR", f"{service}: {message}", details)


class CacheError(AccessLayerException):
    """User cache transport errors."""

    def __init__(self, message: str = "Cache error", details: Optional[Dict[str, Any]] = None):
        super().__init__("CACHE_ERROR", message, details)


class SessionStoreError(AccessLayerException):
    """Session store transport errors."""

    def __init__(self, message: str = "Session store error", details: Optional[Dict[str, Any]] = None):
        super().__init__("SESSION_STORE_ERROR", message, details)


class SessionServiceError(AccessLayerException):
    """A session store failure wrapped with the operation that hit it."""

    def __init__(self, operation: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.operation = operation
        details = dict(details or {})
        details.setdefault("operation", operation)
        super().__init__("SESSION_SERVICE_ERROR", f"failed to {operation}: {message}", details)
