"""
Metrics HTTP server.

Serves a registry's exposition text with FastAPI on top of ``uvicorn.Server``.
The listening socket is bound here rather than by uvicorn so that bind
failures surface as ``BindError`` and ``:0`` resolves to an ephemeral port.
"""

import asyncio
import contextlib
import socket
from typing import Optional, Tuple

import uvicorn
from fastapi import FastAPI, Response
from fastapi.responses import JSONResponse

from .errors import BindError, MetricsServerError, PromSessionError, ShutdownError
from .logging import get_logger
from .metrics import CounterRegistry

DEFAULT_PATH = "/metrics"


def parse_address(address: str) -> Tuple[str, int]:
    """Split ``host:port`` into its parts.

    An empty host (``":9222"``) means every interface; IPv6 hosts are written
    in brackets (``"[::1]:9222"``).
    """
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ValueError(f"Missing port in address {address!r}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    try:
        port_number = int(port)
    except ValueError:
        raise ValueError(f"Invalid port in address {address!r}") from None
    if not 0 <= port_number <= 65535:
        raise ValueError(f"Port out of range in address {address!r}")
    return host, port_number


def format_address(host: str, port: int) -> str:
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def create_app(registry: CounterRegistry, path: str = DEFAULT_PATH) -> FastAPI:
    """Create the FastAPI application serving ``registry`` on ``path``."""
    logger = get_logger("promsession.server")
    app = FastAPI(
        title="Metrics",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    @app.get(path)
    async def metrics_endpoint():
        """Prometheus metrics endpoint."""
        try:
            content = registry.render()
        except Exception as e:
            logger.error("Failed to render metrics", error=str(e), exc_info=True)
            error = PromSessionError("INTERNAL_ERROR", "Failed to render metrics", {"error": str(e)})
            return JSONResponse(status_code=500, content=error.to_response().model_dump())
        return Response(content=content, media_type=registry.content_type)

    return app


class _UvicornServer(uvicorn.Server):
    """uvicorn server that leaves process signals to the lifecycle coordinator."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


class MetricsServer:
    """HTTP listener serving a registry snapshot on a well-known path."""

    def __init__(self, address: str, registry: CounterRegistry, path: str = DEFAULT_PATH):
        self.host, self.port = parse_address(address)
        self.path = path
        self.registry = registry
        self.app = create_app(registry, path)
        self.logger = get_logger("promsession.server")

        self._server: Optional[_UvicornServer] = None
        self._address: Optional[str] = None
        self._stopping = False
        self._settled = asyncio.Event()
        self._closed = asyncio.Event()

    @property
    def address(self) -> Optional[str]:
        """Resolved ``host:port`` once bound, ``None`` before."""
        return self._address

    @property
    def url(self) -> Optional[str]:
        if self._address is None:
            return None
        return f"http://{self._address}{self.path}"

    async def wait_started(self) -> str:
        """Wait until the listener is bound and return its resolved address."""
        await self._settled.wait()
        if self._address is None:
            raise MetricsServerError("Server failed to start")
        return self._address

    def _bind(self) -> socket.socket:
        family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
        address = format_address(self.host, self.port)
        try:
            return socket.create_server((self.host, self.port), family=family)
        except OSError as e:
            raise BindError(address, details={"error": str(e)}) from e

    async def start(self) -> None:
        """Serve until the listener closes.

        Returns normally once ``shutdown`` has closed the listener. Raises
        ``BindError`` if the address cannot be bound and
        ``MetricsServerError`` on any other failure.
        """
        if self._server is not None:
            raise MetricsServerError("Server already started")
        if self._stopping:
            self._settled.set()
            self._closed.set()
            return

        config = uvicorn.Config(
            self.app,
            log_config=None,
            access_log=False,
            lifespan="off",
        )
        self._server = _UvicornServer(config)

        try:
            sock = self._bind()
        except BindError:
            self._settled.set()
            self._closed.set()
            raise

        host, port = sock.getsockname()[:2]
        self._address = format_address(host, port)
        self._settled.set()
        self.logger.info("Starting metrics server", address=self.url)

        try:
            await self._server.serve(sockets=[sock])
        except Exception as e:
            raise MetricsServerError(str(e), {"address": self._address}) from e
        finally:
            for listener in getattr(self._server, "servers", []):
                listener.close()
            sock.close()
            self._closed.set()

    async def shutdown(self, deadline: float) -> None:
        """Stop accepting connections and wait up to ``deadline`` seconds.

        In-flight scrapes still running at the deadline are dropped and
        ``ShutdownError`` is raised.
        """
        self._stopping = True
        if self._server is None:
            self._closed.set()
            return

        self._server.should_exit = True
        try:
            await asyncio.wait_for(self._closed.wait(), timeout=deadline)
        except asyncio.TimeoutError:
            self._server.force_exit = True
            raise ShutdownError(
                f"Server did not stop within {deadline}s",
                {"address": self._address}
            ) from None
