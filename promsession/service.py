"""
Composition helpers for host applications.

This is the only place that falls back to the process-wide default registry.
"""

import asyncio
from typing import Callable, Optional

from .barrier import CompletionBarrier
from .config import MetricsSettings
from .errors import MetricsServerError
from .lifecycle import MetricsLifecycle
from .logging import configure_logging
from .metrics import CounterRegistry, default_registry
from .middleware import CommandFn, Handler, default_command_fn, instrument
from .server import DEFAULT_PATH, MetricsServer


class Middleware:
    """Session middleware that also owns a metrics endpoint.

    Handlers are instrumented with an ``app`` constant label, and the metrics
    server runs for as long as the ``async with`` block::

        async with Middleware("localhost:9222", "my-app") as metrics:
            handler = metrics(handler)
            await serve_sessions(handler)
    """

    def __init__(
        self,
        address: str,
        app: str,
        command_fn: CommandFn = default_command_fn,
        *,
        registry: Optional[CounterRegistry] = None,
        path: str = DEFAULT_PATH,
        namespace: str = "wish",
        count_command_runs: bool = False,
        skip_default_signals: bool = False,
        barrier: Optional[CompletionBarrier] = None,
        cancel: Optional[asyncio.Event] = None,
        on_fatal: Optional[Callable[[BaseException], None]] = None
    ):
        self.registry = registry if registry is not None else default_registry()
        self.instrument = instrument(
            self.registry,
            {"app": app},
            command_fn,
            namespace=namespace,
            count_command_runs=count_command_runs
        )
        self.server = MetricsServer(address, self.registry, path)
        self.lifecycle = MetricsLifecycle(
            self.server,
            cancel=cancel,
            skip_default_signals=skip_default_signals,
            barrier=barrier,
            on_fatal=on_fatal
        )

    @classmethod
    def from_settings(cls, settings: MetricsSettings, command_fn: CommandFn = default_command_fn,
                      **kwargs) -> "Middleware":
        """Build a middleware from ``MetricsSettings`` and configure logging."""
        configure_logging("promsession", settings.log_level, settings.json_logs)
        return cls(
            settings.address,
            settings.app,
            command_fn,
            path=settings.path,
            namespace=settings.namespace,
            count_command_runs=settings.count_command_runs,
            skip_default_signals=settings.skip_default_signals,
            **kwargs
        )

    def __call__(self, handler: Handler) -> Handler:
        return self.instrument(handler)

    async def __aenter__(self) -> "Middleware":
        task = self.lifecycle.start()
        try:
            await self.server.wait_started()
        except MetricsServerError:
            await task
            raise
        except BaseException:
            # __aexit__ does not run when entering fails.
            self.lifecycle.stop()
            await asyncio.shield(task)
            raise
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.lifecycle.stop()
        if self.lifecycle.task is not None:
            await self.lifecycle.task


async def listen(address: str, registry: Optional[CounterRegistry] = None, *,
                 path: str = DEFAULT_PATH, **options) -> None:
    """Serve ``registry`` on ``address`` until a termination trigger arrives.

    ``options`` are passed to ``MetricsLifecycle``.
    """
    registry = registry if registry is not None else default_registry()
    await MetricsLifecycle(MetricsServer(address, registry, path), **options).run()
