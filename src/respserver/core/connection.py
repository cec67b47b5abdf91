"""
=============================================================================
CLIENT CONNECTION
=============================================================================

Wraps a client socket with buffered request reading, timeouts and state
tracking.

=============================================================================
CONNECTION LIFECYCLE
=============================================================================

    accept() ─► NEW ─► READING ─► DISPATCHING ─► WRITING ─┐
                          ▲                               │
                          └───────── next request ◄───────┘
                          │
           EOF / reset / protocol error / shutdown
                          │
                          ▼
                       CLOSING ─► CLOSED

A connection carries exactly one request at a time: the next request is not
read until the reply to the previous one has been fully written.

=============================================================================
READ TIMEOUTS
=============================================================================

    read_poll_interval=None, idle_timeout=None
        recv() blocks until data, EOF or reset. Nothing else can end the
        read, including a shutdown.

    read_poll_interval=0.5
        recv() wakes every 0.5 s and asks should_stop(). Bytes of a
        partially received request stay in the buffer.

    idle_timeout=300
        A client silent for 300 s is disconnected.

=============================================================================
"""

import logging
import select
import socket
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from ..errors import TransportError
from ..protocol.request import Request, RequestParser


logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    NEW = "new"                  # Just accepted
    READING = "reading"          # Waiting for / parsing a request
    DISPATCHING = "dispatching"  # Command is running
    WRITING = "writing"          # Sending the reply
    CLOSING = "closing"          # Shutdown sequence in progress
    CLOSED = "closed"            # Socket released


def format_address(address, family: int) -> str:
    """
    Client address as shown in logs and monitor lines.

        AF_INET  → "127.0.0.1:50412"
        AF_INET6 → "[::1]:50412"
        AF_UNIX  → "unix:/tmp/redis.sock"
    """
    if family == getattr(socket, "AF_UNIX", None):
        return f"unix:{address}" if address else "unix:"
    if family == socket.AF_INET6:
        return f"[{address[0]}]:{address[1]}"
    return f"{address[0]}:{address[1]}"


@dataclass
class Connection:
    """
    A client connection.

    Attributes:
        socket: The client socket.
        address: Printable client address (see format_address).
        id: Short unique id used in log lines.
        state: Current lifecycle state.
        requests_handled: Requests read so far.
    """

    socket: socket.socket
    address: str
    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: ConnectionState = ConnectionState.NEW
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    requests_handled: int = 0

    buffer_size: int = 16 * 1024
    read_poll_interval: Optional[float] = None
    idle_timeout: Optional[float] = None

    _buffer: bytearray = field(default_factory=bytearray, repr=False)

    def __post_init__(self):
        self.socket.setblocking(True)
        self.socket.settimeout(self._read_timeout())

    def _read_timeout(self) -> Optional[float]:
        timeouts = [t for t in (self.read_poll_interval, self.idle_timeout) if t]
        return min(timeouts) if timeouts else None

    @property
    def age(self) -> float:
        return time.time() - self.created_at

    @property
    def idle_time(self) -> float:
        return time.time() - self.last_activity

    # ─────────────────────────────────────────────────────────────────────
    # READING
    # ─────────────────────────────────────────────────────────────────────

    def read_request(
        self,
        parser: RequestParser,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> Optional[Request]:
        """
        Read the next complete request.

        Already-buffered bytes are parsed first (pipelined requests), so the
        socket is only read when no full request is waiting.

        Args:
            parser: Request parser to apply to the buffer.
            should_stop: Asked whenever a read times out; True ends the read.

        Returns:
            The request, or None if the client went away, was idle too
            long, or should_stop() said so.

        Raises:
            ProtocolError: If the buffered bytes are malformed.
            TransportError: On any other socket error.
        """
        self.state = ConnectionState.READING

        while True:
            if self._buffer:
                result = parser.parse(bytes(self._buffer), self.address)
                if result is not None:
                    request, consumed = result
                    del self._buffer[:consumed]
                    self.requests_handled += 1
                    return request

            try:
                chunk = self.socket.recv(self.buffer_size)
            except socket.timeout:
                if should_stop is not None and should_stop():
                    logger.debug(f"[{self.id}] Read interrupted by shutdown")
                    return None
                if self.idle_timeout is not None and self.idle_time >= self.idle_timeout:
                    logger.debug(f"[{self.id}] Idle timeout after {self.idle_time:.1f}s")
                    return None
                continue
            except (ConnectionResetError, BrokenPipeError):
                logger.debug(f"[{self.id}] Connection reset by peer")
                return None
            except OSError as e:
                raise TransportError(f"read failed: {e}") from e

            if not chunk:
                return None  # EOF

            self.last_activity = time.time()
            self._buffer += chunk

    def peer_closed(self) -> bool:
        """
        Check, without blocking, whether the client has hung up.

        Used while the connection only streams data out (a monitor feed).
        Anything the client sends meanwhile is discarded.
        """
        try:
            readable, _, _ = select.select([self.socket], [], [], 0)
            if not readable:
                return False
            return not self.socket.recv(self.buffer_size)
        except (OSError, ValueError):
            return True

    # ─────────────────────────────────────────────────────────────────────
    # WRITING
    # ─────────────────────────────────────────────────────────────────────

    def write(self, data: bytes) -> int:
        """
        Send all of `data`.

        Raises:
            TransportError: If the client is gone or the send fails.
        """
        self.state = ConnectionState.WRITING
        try:
            self.socket.sendall(data)
        except OSError as e:
            raise TransportError(f"write failed: {e}") from e
        self.last_activity = time.time()
        return len(data)

    def send_error_line(self, message: str) -> bool:
        """
        Best-effort "-<message>\\n" sent just before closing.

        Returns:
            True if the line was sent.
        """
        try:
            self.socket.sendall(f"-{message}\n".encode("utf-8", errors="replace"))
            return True
        except OSError as e:
            logger.debug(f"[{self.id}] Could not send error line: {e}")
            return False

    # ─────────────────────────────────────────────────────────────────────
    # CLOSING
    # ─────────────────────────────────────────────────────────────────────

    def close(self):
        """
        Close the connection gracefully.

        1. shutdown(SHUT_WR) sends FIN: the client reads EOF after the last
           reply instead of a reset.
        2. Drain (up to 256 KB, 0.2 s per read) whatever the client still
           sends.
        3. close() releases the descriptor.

        Safe to call more than once.
        """
        if self.state == ConnectionState.CLOSED:
            return

        self.state = ConnectionState.CLOSING

        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass  # Already disconnected

        try:
            self.socket.settimeout(0.2)
            for _ in range(64):
                if not self.socket.recv(4096):
                    break
        except OSError:
            pass  # socket.timeout included

        try:
            self.socket.close()
        except OSError:
            pass

        self.state = ConnectionState.CLOSED
        logger.debug(
            f"[{self.id}] Connection from {self.address} closed after "
            f"{self.requests_handled} requests ({self.age:.2f}s)"
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
