"""
pytest configuration and fixtures.
"""

import socket
import threading
import time
from typing import Callable, Generator, List, Optional

import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from respserver import Server, ServerConfig
from respserver.handlers import MemoryHandler
from respserver.protocol import encode_request


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def make_config(**overrides) -> ServerConfig:
    """Test configuration: ephemeral port, small pool, fast shutdown."""
    options = dict(
        address="127.0.0.1",
        port=0,
        min_workers=2,
        max_workers=8,
        max_pending=16,
        accept_poll_interval=0.05,
        shutdown_grace_period=1.0,
        handle_signals=False,
        log_level="WARNING",
    )
    options.update(overrides)
    return ServerConfig(**options)


class RespClient:
    """
    Minimal blocking RESP client that returns raw reply bytes.

    Replies are returned exactly as they came off the wire, so tests can
    assert on the encoding itself.
    """

    def __init__(self, address, timeout: float = 5.0):
        if isinstance(address, str):
            self.sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        else:
            self.sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.sock.settimeout(timeout)
        self.sock.connect(address)
        self._buffer = b""

    def send(self, data: bytes):
        self.sock.sendall(data)

    def command(self, *parts) -> bytes:
        self.send(encode_request(*parts))
        return self.read_reply()

    def _fill(self):
        chunk = self.sock.recv(4096)
        if not chunk:
            raise ConnectionError("server closed the connection")
        self._buffer += chunk

    def _read_line(self) -> bytes:
        while b"\r\n" not in self._buffer:
            self._fill()
        line, _, self._buffer = self._buffer.partition(b"\r\n")
        return line + b"\r\n"

    def _read_exact(self, size: int) -> bytes:
        while len(self._buffer) < size:
            self._fill()
        data, self._buffer = self._buffer[:size], self._buffer[size:]
        return data

    def read_reply(self) -> bytes:
        line = self._read_line()
        prefix, size = line[:1], line[1:-2]

        if prefix == b"$":
            length = int(size)
            return line if length < 0 else line + self._read_exact(length + 2)

        if prefix == b"*":
            count = int(size)
            if count < 0:
                return line
            return line + b"".join(self.read_reply() for _ in range(count))

        return line

    def read_until_closed(self) -> bytes:
        """Everything the server sends until it closes the connection."""
        data = self._buffer
        self._buffer = b""
        while True:
            try:
                chunk = self.sock.recv(4096)
            except ConnectionResetError:
                break
            if not chunk:
                break
            data += chunk
        return data

    def close(self):
        try:
            self.sock.close()
        except OSError:
            pass


class ServerThread:
    """Runs a Server in a background thread."""

    def __init__(self, server: Server):
        self.server = server
        self.clients: List[RespClient] = []
        self._thread: Optional[threading.Thread] = None

    @property
    def address(self):
        return self.server.address

    def start(self) -> "ServerThread":
        self.server.listen()
        self._thread = threading.Thread(target=self.server.serve_forever, daemon=True)
        self._thread.start()
        if not self.server.wait_until_ready(timeout=5.0):
            raise RuntimeError("Server failed to start")
        return self

    def client(self, timeout: float = 5.0) -> RespClient:
        client = RespClient(self.address, timeout=timeout)
        self.clients.append(client)
        return client

    def stop(self, timeout: float = 5.0) -> bool:
        """Shut down and wait for serve_forever() to return."""
        self.server.shutdown()
        if self._thread is not None:
            self._thread.join(timeout)
            return not self._thread.is_alive()
        return True

    def close_clients(self):
        for client in self.clients:
            client.close()


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.01) -> bool:
    """Poll until predicate() is true. Returns False on timeout."""
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def start_server() -> Generator[Callable[..., ServerThread], None, None]:
    """
    Factory fixture: start_server(handler=..., **config_overrides).

    Every server started through it is stopped at teardown.
    """
    started: List[ServerThread] = []

    def start(handler=None, **overrides) -> ServerThread:
        config = make_config(**overrides)
        if handler is not None:
            config.with_handler(handler)
        running = ServerThread(Server(config)).start()
        started.append(running)
        return running

    yield start

    for running in started:
        running.close_clients()
        running.stop()


@pytest.fixture
def memory_server(start_server) -> ServerThread:
    """A running server backed by MemoryHandler."""
    return start_server(handler=MemoryHandler())
