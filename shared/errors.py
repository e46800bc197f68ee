"""
Shared error handling for the Integration Hub access layer.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field
from opentelemetry import trace


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class AccessLayerException(Exception):
    """Base exception for access layer services."""

    status_code: int = 500

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


class ConfigurationError(AccessLayerException):
    """Fatal startup configuration errors (missing or malformed key material)."""

    def __init__(self, message: str = "Invalid configuration", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)


class VaultError(AccessLayerException):
    """Credential sealing or opening failed.

    The message is identical for every cause; callers cannot
    tell a malformed token from a forged one.
    """

    def __init__(self, message: str = "Failed to decrypt credentials", details: Optional[Dict[str, Any]] = None):
        super().__init__("VAULT_ERROR", message, details)


class FormatError(VaultError):
    """Sealed token or encrypted blob is malformed or incomplete."""

    def __init__(self, message: str = "Invalid encrypted data format", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.code = "FORMAT_ERROR"


class IntegrityError(VaultError):
    """Authentication tag did not verify (tampering or wrong key)."""

    def __init__(self, message: str = "Failed to decrypt data", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.code = "INTEGRITY_ERROR"


class AuthenticationError(AccessLayerException):
    """Authentication-related errors."""

    status_code = 401

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class Unauthenticated(AuthenticationError):
    """No session, or the session is expired."""

    def __init__(self, message: str = "Not authenticated", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.code = "UNAUTHENTICATED"


class PrincipalNotFound(AuthenticationError):
    """Session is valid but the user record behind it is gone."""

    status_code = 404

    def __init__(self, message: str = "User not found", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.code = "PRINCIPAL_NOT_FOUND"


class AuthorizationError(AccessLayerException):
    """Authorization-related errors."""

    status_code = 403

    def __init__(self, message: str = "Authorization failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHORIZATION_ERROR", message, details)


class PlanRequired(AuthorizationError):
    """Principal's plan is not one of the plans a route requires."""

    def __init__(self, required, current: str, message: str = "Insufficient plan"):
        super().__init__(message, {"required": sorted(required), "current": current})
        self.code = "PLAN_REQUIRED"


class QuotaExceeded(AuthorizationError):
    """Plan ceiling reached; the remedy is an upgrade, not a retry."""

    def __init__(self, reason: str, upgrade: bool = True):
        super().__init__(reason, {"reason": reason, "upgrade": upgrade})
        self.code = "QUOTA_EXCEEDED"


class ValidationError(AccessLayerException):
    """Validation-related errors."""

    status_code = 422

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class RateLimitError(AccessLayerException):
    """Rate limiting errors."""

    status_code = 429

    def __init__(self, message: str = "Rate limit exceeded", details: Optional[Dict[str, Any]] = None):
        super().__init__("RATE_LIMIT_ERROR", message, details)


class RateLimited(RateLimitError):
    """Fixed window exhausted for a principal."""

    def __init__(self, reset_time: int, message: str = "Too many requests"):
        super().__init__(message, {"remaining": 0, "resetTime": reset_time})
        self.code = "RATE_LIMITED"
        self.reset_time = reset_time
