"""
Prometheus metrics for session-oriented servers.

This package wires three pieces together:

- metrics: counter registry backed by prometheus_client
- middleware: per-session instrumentation (created, finished, duration)
- server / lifecycle: the /metrics HTTP endpoint and its start/stop coordination

Host applications normally only need ``Middleware`` or ``instrument`` plus
``MetricsLifecycle``.
"""

from .barrier import CompletionBarrier
from .config import MetricsSettings, get_settings
from .errors import (
    BindError,
    LifecycleError,
    MetricsServerError,
    PromSessionError,
    RegistrationError,
    ShutdownError,
)
from .lifecycle import SHUTDOWN_TIMEOUT, LifecycleState, MetricsLifecycle, signal_event
from .metrics import CounterHandle, CounterRegistry, default_registry
from .middleware import Session, SessionMetrics, default_command_fn, instrument, instrument_with
from .server import DEFAULT_PATH, MetricsServer, create_app, parse_address
from .service import Middleware, listen

__version__ = "1.0.0"

__all__ = [
    "BindError",
    "CompletionBarrier",
    "CounterHandle",
    "CounterRegistry",
    "DEFAULT_PATH",
    "LifecycleError",
    "LifecycleState",
    "MetricsLifecycle",
    "MetricsServer",
    "MetricsServerError",
    "MetricsSettings",
    "Middleware",
    "PromSessionError",
    "RegistrationError",
    "SHUTDOWN_TIMEOUT",
    "Session",
    "SessionMetrics",
    "ShutdownError",
    "create_app",
    "default_command_fn",
    "default_registry",
    "get_settings",
    "instrument",
    "instrument_with",
    "listen",
    "parse_address",
    "signal_event",
]
