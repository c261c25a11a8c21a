"""
Error types for promsession.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    code: str
    message: str
    details: Dict[str, Any] = {}


class PromSessionError(Exception):
    """Base exception for promsession."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            code=self.code,
            message=self.message,
            details=self.details
        )


class RegistrationError(PromSessionError):
    """Conflicting or invalid metric registration."""

    def __init__(self, message: str = "Metric registration failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("REGISTRATION_ERROR", message, details)


class MetricsServerError(PromSessionError):
    """Metrics HTTP server errors."""

    def __init__(self, message: str = "Metrics server error", details: Optional[Dict[str, Any]] = None,
                 code: str = "METRICS_SERVER_ERROR"):
        super().__init__(code, f"metrics: {message}", details)


class BindError(MetricsServerError):
    """The metrics address could not be bound."""

    def __init__(self, address: str, message: str = "Failed to bind", details: Optional[Dict[str, Any]] = None):
        details = dict(details or {}, address=address)
        super().__init__(f"{message} {address}", details, code="BIND_ERROR")


class ShutdownError(MetricsServerError):
    """The metrics server did not shut down cleanly within its deadline."""

    def __init__(self, message: str = "Shutdown failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="SHUTDOWN_ERROR")


class LifecycleError(PromSessionError):
    """Invalid lifecycle state transition."""

    def __init__(self, message: str = "Invalid lifecycle transition", details: Optional[Dict[str, Any]] = None):
        super().__init__("LIFECYCLE_ERROR", message, details)
