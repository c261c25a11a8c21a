"""
Unit tests for the error hierarchy.
"""

from promsession.errors import (
    BindError,
    ErrorResponse,
    LifecycleError,
    MetricsServerError,
    PromSessionError,
    RegistrationError,
    ShutdownError,
)


def test_to_response():
    """Test converting an error to the response model."""
    error = PromSessionError("INTERNAL_ERROR", "Failed to render metrics", {"error": "boom"})

    response = error.to_response()

    assert isinstance(response, ErrorResponse)
    assert response.model_dump() == {
        "code": "INTERNAL_ERROR",
        "message": "Failed to render metrics",
        "details": {"error": "boom"},
    }


def test_bind_error():
    """Test the bind error code, message and address detail."""
    error = BindError("127.0.0.1:9222", details={"error": "Address already in use"})

    assert isinstance(error, MetricsServerError)
    assert error.code == "BIND_ERROR"
    assert str(error) == "metrics: Failed to bind 127.0.0.1:9222"
    assert error.to_response().details == {
        "error": "Address already in use",
        "address": "127.0.0.1:9222",
    }


def test_error_codes():
    """Test the fixed codes of each error type."""
    assert RegistrationError().code == "REGISTRATION_ERROR"
    assert MetricsServerError().code == "METRICS_SERVER_ERROR"
    assert ShutdownError().code == "SHUTDOWN_ERROR"
    assert LifecycleError().code == "LIFECYCLE_ERROR"
    assert ShutdownError().to_response().details == {}
