"""
Unit tests for the metrics HTTP server.
"""

import asyncio
import socket
from unittest.mock import MagicMock, patch

import httpx
import pytest
from fastapi.testclient import TestClient
from prometheus_client import CollectorRegistry

from promsession.errors import BindError, MetricsServerError, ShutdownError
from promsession.metrics import CounterRegistry
from promsession.server import MetricsServer, create_app, format_address, parse_address


@pytest.fixture
def registry():
    """Create an isolated registry with one observed counter."""
    registry = CounterRegistry(CollectorRegistry())
    counter = registry.register("jobs_total", "Jobs", {"app": "test"}, ["command"])
    counter.inc(command="build")
    return registry


class TestParseAddress:
    """Test cases for parse_address."""

    @pytest.mark.parametrize("address,expected", [
        ("localhost:9222", ("localhost", 9222)),
        ("127.0.0.1:0", ("127.0.0.1", 0)),
        (":9222", ("", 9222)),
        ("[::1]:9222", ("::1", 9222)),
    ])
    def test_valid(self, address, expected):
        """Test valid addresses."""
        assert parse_address(address) == expected

    @pytest.mark.parametrize("address", ["localhost", "localhost:http", "localhost:70000"])
    def test_invalid(self, address):
        """Test invalid addresses."""
        with pytest.raises(ValueError):
            parse_address(address)

    def test_format_address(self):
        """Test formatting IPv4 and IPv6 addresses."""
        assert format_address("127.0.0.1", 80) == "127.0.0.1:80"
        assert format_address("::1", 80) == "[::1]:80"


class TestMetricsApp:
    """Test cases for the metrics FastAPI application."""

    @pytest.fixture
    def client(self, registry):
        """Create test client."""
        return TestClient(create_app(registry))

    def test_metrics_endpoint(self, client):
        """Test the metrics endpoint."""
        response = client.get("/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert 'jobs_total{app="test",command="build"} 1.0' in response.text

    def test_custom_path(self, registry):
        """Test serving on a custom path."""
        client = TestClient(create_app(registry, "/internal/metrics"))

        assert client.get("/internal/metrics").status_code == 200
        assert client.get("/metrics").status_code == 404

    def test_unknown_path(self, client):
        """Test that other paths are not served."""
        assert client.get("/").status_code == 404

    def test_scrapes_are_idempotent(self, client):
        """Test two scrapes with no intervening sessions."""
        first = client.get("/metrics").text
        second = client.get("/metrics").text

        assert first == second

    def test_render_failure(self, registry, client):
        """Test the error response when rendering fails."""
        with patch.object(registry, "render", side_effect=RuntimeError("collector failed")):
            response = client.get("/metrics")

        assert response.status_code == 500
        assert response.json() == {
            "code": "INTERNAL_ERROR",
            "message": "Failed to render metrics",
            "details": {"error": "collector failed"},
        }


class TestMetricsServer:
    """Test cases for MetricsServer."""

    @pytest.fixture
    def server(self, registry):
        """Create a server on an ephemeral port."""
        return MetricsServer("127.0.0.1:0", registry)

    @pytest.mark.asyncio
    async def test_start_and_shutdown(self, server):
        """Test serving on an ephemeral port and shutting down."""
        task = asyncio.create_task(server.start())
        address = await server.wait_started()

        host, port = parse_address(address)
        assert host == "127.0.0.1"
        assert port != 0
        assert server.url == f"http://{address}/metrics"

        async with httpx.AsyncClient(trust_env=False) as client:
            response = await client.get(server.url)
        assert response.status_code == 200
        assert 'jobs_total{app="test",command="build"} 1.0' in response.text

        await server.shutdown(5.0)
        assert await asyncio.wait_for(task, timeout=1.0) is None

        async with httpx.AsyncClient(trust_env=False) as client:
            with pytest.raises(httpx.ConnectError):
                await client.get(server.url)

    @pytest.mark.asyncio
    async def test_address_in_use(self, registry):
        """Test that binding a used address raises BindError."""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as taken:
            taken.bind(("127.0.0.1", 0))
            taken.listen()
            port = taken.getsockname()[1]

            server = MetricsServer(f"127.0.0.1:{port}", registry)
            with pytest.raises(BindError) as exc_info:
                await server.start()

        assert exc_info.value.code == "BIND_ERROR"
        assert exc_info.value.details["address"] == f"127.0.0.1:{port}"
        with pytest.raises(MetricsServerError):
            await server.wait_started()

    @pytest.mark.asyncio
    async def test_start_twice(self, server):
        """Test that a server cannot be started twice."""
        task = asyncio.create_task(server.start())
        await server.wait_started()

        with pytest.raises(MetricsServerError):
            await server.start()

        await server.shutdown(5.0)
        await task

    @pytest.mark.asyncio
    async def test_shutdown_before_start(self, server):
        """Test that a server shut down before starting never serves."""
        await server.shutdown(5.0)

        await asyncio.wait_for(server.start(), timeout=1.0)

        assert server.address is None

    @pytest.mark.asyncio
    async def test_shutdown_deadline(self, server):
        """Test that shutdown gives up after its deadline."""
        server._server = MagicMock()

        with pytest.raises(ShutdownError) as exc_info:
            await server.shutdown(0.05)

        assert exc_info.value.code == "SHUTDOWN_ERROR"
        assert server._server.should_exit is True
        assert server._server.force_exit is True

    def test_invalid_address(self, registry):
        """Test that an invalid address is rejected at construction."""
        with pytest.raises(ValueError):
            MetricsServer("no-port", registry)
