"""
Lifecycle coordinator for the metrics server.

Starts the server on an owned task, waits for the first termination trigger
(external cancellation, an OS signal, an explicit ``stop()`` or the server
task failing) and drives a time-bounded shutdown.
"""

import asyncio
import contextlib
import signal
from enum import Enum
from typing import Callable, Dict, Iterator, Optional, Sequence, Tuple

from .barrier import CompletionBarrier
from .errors import LifecycleError, MetricsServerError
from .logging import get_logger
from .server import MetricsServer

SHUTDOWN_TIMEOUT = 5.0
DEFAULT_SIGNALS = (signal.SIGINT, signal.SIGTERM)

logger = get_logger("promsession.lifecycle")


class LifecycleState(str, Enum):
    """Metrics server lifecycle states."""
    STARTING = "starting"
    SERVING = "serving"
    STOPPING = "stopping"
    STOPPED = "stopped"


_NEXT_STATE: Dict[Optional[LifecycleState], LifecycleState] = {
    None: LifecycleState.STARTING,
    LifecycleState.STARTING: LifecycleState.SERVING,
    LifecycleState.SERVING: LifecycleState.STOPPING,
    LifecycleState.STOPPING: LifecycleState.STOPPED,
}


def exit_process(error: BaseException) -> None:
    """Default fatal handler: terminate the host process."""
    raise SystemExit(1)


@contextlib.contextmanager
def signal_event(signals: Sequence[int] = DEFAULT_SIGNALS) -> Iterator[asyncio.Event]:
    """Yield an event set when any of ``signals`` is delivered.

    The handlers are removed again when the block exits.
    """
    loop = asyncio.get_running_loop()
    event = asyncio.Event()
    installed = []
    restore = {}

    for sig in signals:
        try:
            loop.add_signal_handler(sig, event.set)
            installed.append(sig)
        except NotImplementedError:
            # Event loops without add_signal_handler (Windows)
            try:
                restore[sig] = signal.signal(sig, lambda *_: loop.call_soon_threadsafe(event.set))
            except ValueError as e:
                logger.warning("Cannot watch signal", signal=int(sig), error=str(e))
        except (RuntimeError, ValueError) as e:
            # Signal handlers only work in the main thread
            logger.warning("Cannot watch signal", signal=int(sig), error=str(e))

    try:
        yield event
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)
        for sig, previous in restore.items():
            signal.signal(sig, previous)


class MetricsLifecycle:
    """Runs a ``MetricsServer`` from start to a clean shutdown."""

    def __init__(
        self,
        server: MetricsServer,
        *,
        cancel: Optional[asyncio.Event] = None,
        skip_default_signals: bool = False,
        signals: Sequence[int] = DEFAULT_SIGNALS,
        barrier: Optional[CompletionBarrier] = None,
        on_fatal: Optional[Callable[[BaseException], None]] = None
    ):
        self.server = server
        self.cancel = cancel
        self.skip_default_signals = skip_default_signals
        self.signals = tuple(signals)
        self.barrier = barrier
        self.on_fatal = on_fatal or exit_process

        self._state: Optional[LifecycleState] = None
        self._stop_requested = asyncio.Event()
        self._registered = False
        self._server_task: Optional[asyncio.Task] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def state(self) -> Optional[LifecycleState]:
        return self._state

    @property
    def task(self) -> Optional[asyncio.Task]:
        """The task created by ``start()``, if any."""
        return self._task

    def _transition(self, state: LifecycleState) -> None:
        if _NEXT_STATE.get(self._state) is not state:
            raise LifecycleError(
                f"Cannot move from {self._state} to {state.value}",
                {"from": self._state.value if self._state else None, "to": state.value}
            )
        logger.debug("Metrics lifecycle transition", state=state.value)
        self._state = state

    def _enter_barrier(self) -> None:
        if self.barrier is not None and not self._registered:
            self.barrier.add()
            self._registered = True

    def _exit_barrier(self) -> None:
        if self.barrier is not None and self._registered:
            self._registered = False
            self.barrier.done()

    def start(self) -> asyncio.Task:
        """Run the lifecycle on a new task and return it.

        The barrier, if any, is entered before this returns so a parent
        waiting on it cannot miss the new task.
        """
        if self._task is not None or self._state is not None:
            raise LifecycleError("Metrics lifecycle already started")
        self._enter_barrier()
        self._task = asyncio.get_running_loop().create_task(self.run())
        self._task.add_done_callback(self._on_task_done)
        return self._task

    def _on_task_done(self, task: asyncio.Task) -> None:
        # A task cancelled before its first step never reaches run()'s finally.
        if self._state is None:
            self._state = LifecycleState.STOPPED
        self._exit_barrier()

    def stop(self) -> None:
        """Request a graceful shutdown."""
        self._stop_requested.set()

    async def run(self) -> None:
        """Serve until a termination trigger, then shut the server down."""
        if self._state is not None:
            raise LifecycleError("Metrics lifecycle already ran")
        self._transition(LifecycleState.STARTING)
        self._enter_barrier()

        cancelled = False
        try:
            self._server_task = asyncio.create_task(self.server.start())
            self._transition(LifecycleState.SERVING)

            try:
                trigger, error = await self._wait_for_trigger(self._server_task)
            except asyncio.CancelledError:
                cancelled = True
                trigger, error = "cancelled", None

            self._transition(LifecycleState.STOPPING)
            if error is not None:
                logger.critical("Failed to start metrics server", error=str(error))
                self.on_fatal(error)

            logger.info("Shutting down metrics server", trigger=trigger)
            try:
                await self.server.shutdown(SHUTDOWN_TIMEOUT)
            except MetricsServerError as e:
                logger.critical("Failed to shutdown metrics server", error=str(e))
                self.on_fatal(e)
            else:
                logger.info("Shutdown metrics server")
            await self._reap_server_task()
        finally:
            self._state = LifecycleState.STOPPED
            self._exit_barrier()

        if cancelled:
            raise asyncio.CancelledError()

    async def _wait_for_trigger(self, server_task: asyncio.Task) -> Tuple[str, Optional[BaseException]]:
        """Wait for the first termination trigger.

        Returns the trigger name and, when the server task ended first, the
        error it ended with.
        """
        loop = asyncio.get_running_loop()
        waiters: Dict[asyncio.Future, str] = {
            server_task: "server",
            loop.create_task(self._stop_requested.wait()): "stop",
        }
        if self.cancel is not None:
            waiters[loop.create_task(self.cancel.wait())] = "cancel"

        signals = contextlib.nullcontext() if self.skip_default_signals else signal_event(self.signals)
        with signals as signalled:
            if signalled is not None:
                waiters[loop.create_task(signalled.wait())] = "signal"
            try:
                done, _ = await asyncio.wait(set(waiters), return_when=asyncio.FIRST_COMPLETED)
            finally:
                helpers = [w for w in waiters if w is not server_task]
                for helper in helpers:
                    helper.cancel()
                await asyncio.gather(*helpers, return_exceptions=True)

        if server_task in done:
            return "server", self._server_failure(server_task)
        return next(waiters[w] for w in waiters if w in done), None

    @staticmethod
    def _server_failure(server_task: asyncio.Task) -> BaseException:
        if server_task.cancelled():
            return MetricsServerError("Server task was cancelled")
        error = server_task.exception()
        if error is None:
            return MetricsServerError("Server stopped unexpectedly")
        return error

    async def _reap_server_task(self) -> None:
        task = self._server_task
        if task is None:
            return
        if not task.done():
            task.cancel()
        await asyncio.gather(task, return_exceptions=True)
