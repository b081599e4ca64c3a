"""Pytest configuration and fixtures for fluent-client tests.

This file provides:
- PortReservation: Race-free port allocation for test servers
- MockServer: Subprocess management for the mock HTTP/WebSocket server
- FakeConnection: In-memory stand-in for a websockets client connection
- Fixtures: Shared test infrastructure (config builders, mock server)
"""

from __future__ import annotations

import socket
import subprocess
import sys
import time
from collections import deque
from pathlib import Path
from typing import Any, Generator
from unittest.mock import MagicMock

import pytest
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK
from websockets.frames import Close

from fluent_client.models import ClientConfig, ResponseCase

# Project root for fixture paths
PROJECT_ROOT = Path(__file__).parent.parent
MOCK_SERVER_MODULE = "tests.integration.mock_server"


def make_response_case(
    status_code: int = 200,
    headers: dict[str, str] | None = None,
    body: Any = None,
    body_base64: str | None = None,
    method: str = "GET",
    url: str = "http://localhost:3000/api/v2/breeds",
    error_code: str | None = None,
    error: str | None = None,
) -> ResponseCase:
    """Create a ResponseCase for recorder and client tests.

    Prefer this over constructing ResponseCase directly - it provides
    sensible defaults and documents which fields are typically varied in tests.
    """
    return ResponseCase(
        method=method,
        url=url,
        request_headers={"Content-Type": "application/json"},
        status_code=status_code,
        headers=headers or {},
        body=body,
        body_base64=body_base64,
        elapsed_ms=10.0,
        error_code=error_code,
        error=error,
    )


def make_client_config(**overrides: Any) -> ClientConfig:
    """Create a resolved ClientConfig without going through the options generator."""
    values: dict[str, Any] = {
        "host": "localhost:3000",
        "protocol": "http",
        "base_url": "http://localhost:3000",
        "headers": {"Content-Type": "application/json", "User-Agent": "fluent-client"},
    }
    values.update(overrides)
    return ClientConfig(**values)


class FakeConnection:
    """Stands in for a websockets sync ClientConnection.

    Queued frames are returned by recv(). When the queue is empty the peer
    either streams `stream` every millisecond for `stream_seconds`, stays
    silent (silent=True) or closes (default).
    """

    def __init__(
        self,
        incoming: list[str] | None = None,
        echo: bool = False,
        silent: bool = False,
        peer_close: Close | None = Close(1000, "bye"),
        stream: str | None = None,
        stream_seconds: float = 1.0,
    ) -> None:
        self.incoming: deque = deque(incoming or [])
        self.sent: list = []
        self.echo = echo
        self.silent = silent
        self.peer_close = peer_close
        self.stream = stream
        self.stream_seconds = stream_seconds
        self.streamed = 0
        self._stream_started: float | None = None
        self.closed_with: tuple[int, str] | None = None
        self.close_calls = 0
        self.entered = False
        self.exited = False
        self.socket = MagicMock()

    def __enter__(self) -> FakeConnection:
        self.entered = True
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.exited = True

    def _closed_locally(self) -> ConnectionClosedOK:
        # We sent the close frame first; the peer echoed it.
        frame = Close(*self.closed_with)
        return ConnectionClosedOK(frame, frame, rcvd_then_sent=False)

    def recv(self, timeout: float | None = None):
        if self.closed_with is not None:
            raise self._closed_locally()
        if self.incoming:
            return self.incoming.popleft()
        if self.stream is not None:
            if self._stream_started is None:
                self._stream_started = time.monotonic()
            if time.monotonic() - self._stream_started < self.stream_seconds:
                time.sleep(0.001)
                self.streamed += 1
                return self.stream
        if self.silent:
            if timeout is None:
                raise AssertionError("recv would block forever")
            time.sleep(min(timeout, 0.01))
            raise TimeoutError
        if self.peer_close is None:
            raise ConnectionClosedError(None, None)
        raise ConnectionClosedOK(self.peer_close, None)

    def send(self, data) -> None:
        if self.closed_with is not None:
            raise self._closed_locally()
        self.sent.append(data)
        if self.echo:
            self.incoming.append(data)

    def close(self, code: int = 1000, reason: str = "") -> None:
        self.close_calls += 1
        self.closed_with = (code, reason)


class PortReservation:
    """Holds a reserved port with socket kept open to prevent races.

    find_free_port() has a race window - another process can grab the port
    between when we find it and when our server binds. This class keeps the
    socket open until just before the server starts.

    Usage:
        reservation = PortReservation()
        server = MockServer(reservation)
        server.start()  # calls release() internally, then binds
    """

    def __init__(self) -> None:
        self._socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._socket.bind(("127.0.0.1", 0))  # Port 0 = OS assigns ephemeral port
        self._port = self._socket.getsockname()[1]
        self._released = False

    @property
    def port(self) -> int:
        return self._port

    def release(self) -> int:
        """Release the socket and return the port for server use.

        Safe to call multiple times - subsequent calls are no-ops.
        """
        if not self._released:
            self._socket.close()
            self._released = True
        return self._port

    def __enter__(self) -> PortReservation:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.release()


def find_free_port() -> int:
    """Find an available port on localhost (racy; prefer PortReservation)."""
    with PortReservation() as reservation:
        return reservation.port


def wait_for_server_ready(host: str, port: int, timeout: float = 10.0) -> bool:
    """Block until server accepts TCP connections, or timeout expires."""
    start = time.time()
    while time.time() - start < timeout:
        try:
            with socket.create_connection((host, port), timeout=1.0):
                return True
        except (ConnectionRefusedError, socket.timeout, OSError):
            time.sleep(0.1)
    return False


class MockServer:
    """Manages the mock server subprocess for integration tests.

    Runs tests/integration/mock_server.py as a subprocess. The server serves
    the breeds/facts JSON API, the SOAP number conversion endpoints and the
    WebSocket echo, hub and silent endpoints.
    """

    def __init__(self, port: int | PortReservation) -> None:
        """Initialize mock server configuration.

        Args:
            port: Either a port number or PortReservation. Using PortReservation
                  is preferred as it eliminates port allocation races.
        """
        if isinstance(port, PortReservation):
            self._reservation = port
            self.port = port.port
        else:
            self._reservation = None
            self.port = port
        self.host = "127.0.0.1"
        self.base_url = f"http://{self.host}:{self.port}"
        self._process: subprocess.Popen | None = None

    @property
    def address(self) -> str:
        """host:port, the form used for the host client option."""
        return f"{self.host}:{self.port}"

    def start(self) -> None:
        """Start the mock server subprocess.

        Raises:
            RuntimeError: If server fails to start within 10 seconds.
        """
        if self._reservation:
            self._reservation.release()

        self._process = subprocess.Popen(
            [
                sys.executable, "-m", MOCK_SERVER_MODULE,
                "--host", self.host,
                "--port", str(self.port),
            ],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=PROJECT_ROOT,
        )

        if not wait_for_server_ready(self.host, self.port):
            stderr = ""
            if self._process and self._process.stderr:
                stderr = self._process.stderr.read().decode(errors="replace")
            self.stop()
            raise RuntimeError(
                f"MockServer failed to start on port {self.port}. "
                f"stderr: {stderr or '(empty)'}"
            )

    def stop(self) -> None:
        """Stop the mock server subprocess with graceful shutdown.

        Uses SIGTERM first, then SIGKILL after 5s if process doesn't exit.
        Safe to call multiple times or if server was never started.
        """
        if self._process:
            self._process.terminate()
            try:
                self._process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self._process.kill()
                try:
                    self._process.wait(timeout=5)
                except subprocess.TimeoutExpired:
                    pass  # unkillable, nothing more to do
            self._process = None

    def __enter__(self) -> MockServer:
        self.start()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.stop()


# =============================================================================
# Pytest Fixtures
# =============================================================================


@pytest.fixture(scope="session")
def mock_server() -> Generator[MockServer, None, None]:
    """Start the mock server once per test session.

    Example:
        def test_breeds(mock_server):
            client = HttpClient({"host": mock_server.address, "protocol": "http"})
    """
    with MockServer(PortReservation()) as server:
        yield server


@pytest.fixture
def client_config() -> ClientConfig:
    return make_client_config()


# =============================================================================
# Pytest Hooks
# =============================================================================


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Automatically apply markers based on test location.

    Enables running subsets via:
        pytest -m integration  # only integration tests
        pytest -m unit         # only unit tests
    """
    for item in items:
        test_path = Path(item.fspath)
        if "integration" in test_path.parts:
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)
