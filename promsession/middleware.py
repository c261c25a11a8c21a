"""
Session instrumentation middleware.

Wraps a session handler so that every session records ``created``,
``finished`` and the elapsed duration, labelled by the invoked command.
"""

import functools
import inspect
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Sequence, Union

from .logging import get_logger
from .metrics import CounterHandle, CounterRegistry

logger = get_logger("promsession.middleware")


class Session(Protocol):
    """The part of a session the middleware relies on."""

    def command(self) -> Sequence[str]:
        ...

    def write(self, data: bytes) -> Any:
        ...


Handler = Callable[[Session], Union[None, Awaitable[None]]]
Middleware = Callable[[Handler], Handler]
CommandFn = Callable[[Session], str]


def default_command_fn(session: Session) -> str:
    """Return the first part of ``session.command()``, or an empty string."""
    command = session.command()
    if command:
        return command[0]
    return ""


@dataclass
class SessionMetrics:
    """Counters recorded for every instrumented session."""

    created: CounterHandle
    finished: CounterHandle
    duration: CounterHandle
    command_runs: Optional[CounterHandle] = None

    @classmethod
    def register(
        cls,
        registry: CounterRegistry,
        const_labels: Optional[Dict[str, str]] = None,
        namespace: str = "wish",
        count_command_runs: bool = False
    ) -> "SessionMetrics":
        """Register the session counters on ``registry``."""
        prefix = f"{namespace}_" if namespace else ""
        labels = ["command"]

        command_runs = None
        if count_command_runs:
            command_runs = registry.register(
                f"{prefix}sessions_command_runs_total",
                "The total number of commands run",
                const_labels,
                labels
            )

        return cls(
            created=registry.register(
                f"{prefix}sessions_created_total",
                "The total number of sessions created",
                const_labels,
                labels
            ),
            finished=registry.register(
                f"{prefix}sessions_finished_total",
                "The total number of sessions finished",
                const_labels,
                labels
            ),
            duration=registry.register(
                f"{prefix}sessions_duration_seconds",
                "The total sessions duration in seconds",
                const_labels,
                labels
            ),
            command_runs=command_runs,
        )

    def session_started(self, command: str) -> None:
        _record(self.created, 1, command)
        if self.command_runs is not None:
            _record(self.command_runs, 1, command)

    def session_finished(self, command: str, elapsed: float) -> None:
        _record(self.finished, 1, command)
        _record(self.duration, elapsed, command)


def _record(counter: CounterHandle, delta: float, command: str) -> None:
    # Instrumentation must never fail a session.
    try:
        counter.add(delta, command=command)
    except Exception:
        logger.warning("Failed to record session metric", metric=counter.name,
                       command=command, exc_info=True)


def _command_label(command_fn: CommandFn, session: Session) -> str:
    try:
        return command_fn(session)
    except Exception:
        logger.warning("Command label function failed, using empty label", exc_info=True)
        return ""


def instrument(
    registry: CounterRegistry,
    const_labels: Optional[Dict[str, str]] = None,
    command_fn: CommandFn = default_command_fn,
    *,
    namespace: str = "wish",
    count_command_runs: bool = False
) -> Middleware:
    """Build a middleware recording session metrics on ``registry``.

    No HTTP server is started; the caller is responsible for serving the
    registry.
    """
    metrics = SessionMetrics.register(registry, const_labels, namespace, count_command_runs)
    return instrument_with(metrics, command_fn)


def _is_async(handler: Handler) -> bool:
    return inspect.iscoroutinefunction(handler) or inspect.iscoroutinefunction(
        getattr(handler, "__call__", None)
    )


def instrument_with(metrics: SessionMetrics, command_fn: CommandFn = default_command_fn) -> Middleware:
    """Build a middleware recording on an already registered ``SessionMetrics``.

    Handlers may be coroutine functions, objects with an async ``__call__``
    or plain callables. A plain callable that returns an awaitable, such as
    another middleware delegating to an async handler, gets back an awaitable
    that finishes the session once it completes.
    """

    def middleware(handler: Handler) -> Handler:
        if _is_async(handler):
            @functools.wraps(handler)
            async def async_wrapper(session: Session) -> Any:
                command = _command_label(command_fn, session)
                start_time = time.monotonic()
                metrics.session_started(command)
                try:
                    return await handler(session)
                finally:
                    metrics.session_finished(command, time.monotonic() - start_time)

            return async_wrapper

        async def finish_after(result: Awaitable[Any], command: str, start_time: float) -> Any:
            try:
                return await result
            finally:
                metrics.session_finished(command, time.monotonic() - start_time)

        @functools.wraps(handler)
        def sync_wrapper(session: Session) -> Any:
            command = _command_label(command_fn, session)
            start_time = time.monotonic()
            metrics.session_started(command)
            pending = False
            try:
                result = handler(session)
                if inspect.isawaitable(result):
                    pending = True
                    return finish_after(result, command, start_time)
                return result
            finally:
                if not pending:
                    metrics.session_finished(command, time.monotonic() - start_time)

        return sync_wrapper

    return middleware
