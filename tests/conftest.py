"""
pytest configuration and fixtures.
"""

import socket
import threading
import time
from typing import Generator, List, Optional
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from logserver import LogServer, ServerConfig
from logserver.core import Connection


@pytest.fixture
def log_path(tmp_path: Path) -> Path:
    """Data file location inside the test's temp directory."""
    return tmp_path / "aesdsocketdata"


@pytest.fixture
def config(log_path: Path) -> ServerConfig:
    """Test server configuration: localhost, OS-picked port, fast polling."""
    return ServerConfig(
        host="127.0.0.1",
        port=0,  # Let OS pick a free port
        poll_interval=0.05,
        log_path=str(log_path),
        timer_enabled=False,
        drain_timeout=5.0,
        log_level="WARNING",
    )


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


@pytest.fixture
def socket_pair() -> Generator[tuple, None, None]:
    """
    Connected (server side, client side) socket pair.

    The server side is what a Session sees; the test talks through the
    client side.
    """
    server_side, client_side = socket.socketpair()
    client_side.settimeout(5.0)
    yield server_side, client_side
    for s in (server_side, client_side):
        try:
            s.close()
        except OSError:
            pass


def make_connection(sock: socket.socket, poll_interval: float = 0.05) -> Connection:
    """Wrap one end of a socket pair the way the listener wraps accepted sockets."""
    return Connection(socket=sock, address=("127.0.0.1", 50000), poll_interval=poll_interval)


def recv_exactly(sock: socket.socket, size: int, timeout: float = 5.0) -> bytes:
    """Read until size bytes arrived (or the peer closed)."""
    sock.settimeout(timeout)
    data = b""
    while len(data) < size:
        chunk = sock.recv(size - len(data))
        if not chunk:
            break
        data += chunk
    return data


def recv_until_closed(sock: socket.socket, timeout: float = 5.0) -> bytes:
    """Read everything the peer sends until it closes the connection."""
    sock.settimeout(timeout)
    data = b""
    while True:
        try:
            chunk = sock.recv(4096)
        except ConnectionResetError:
            # Peer closed with our unread bytes still queued on its side
            return data
        if not chunk:
            return data
        data += chunk


def wait_for(predicate, timeout: float = 5.0, interval: float = 0.01) -> bool:
    """Poll predicate until it is true or timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class RunningServer:
    """Test server helper that serves in a background thread."""

    def __init__(self, server: LogServer):
        self.server = server
        self.reason: Optional[str] = None
        self._thread: Optional[threading.Thread] = None
        self._clients: List[socket.socket] = []

    @property
    def port(self) -> int:
        return self.server.address[1]

    def start(self):
        """Bind, then serve in a background thread."""
        self.server.start()
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

        if not wait_for(lambda: self.server.is_running):
            raise RuntimeError("Server failed to start")

    def _serve(self):
        self.reason = self.server.serve_forever()

    def connect(self) -> socket.socket:
        """Open a client connection to the server."""
        client = socket.create_connection(('127.0.0.1', self.port), timeout=5.0)
        self._clients.append(client)
        return client

    def exchange(self, client: socket.socket, packet: bytes, expected: bytes) -> bytes:
        """Send one packet and read a reply of the expected length."""
        client.sendall(packet)
        return recv_exactly(client, len(expected))

    def stop(self, timeout: float = 5.0) -> bool:
        """Request shutdown and wait for the serve thread to finish."""
        self.server.shutdown()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            return not self._thread.is_alive()
        return True

    def close_clients(self):
        for client in self._clients:
            try:
                client.close()
            except OSError:
                pass
        self._clients.clear()


@pytest.fixture
def running_server(config: ServerConfig) -> Generator[RunningServer, None, None]:
    """Start a log server on an OS-picked port, stop it afterwards."""
    srv = RunningServer(LogServer(config))
    srv.start()

    yield srv

    srv.close_clients()
    srv.stop()
