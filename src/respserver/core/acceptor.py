"""
=============================================================================
ACCEPTOR
=============================================================================

Owns the listening socket and turns incoming clients into Connections.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                         Accept Loop                                  │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   bind() + listen()        (ConfigurationError if it fails)          │
    │          │                                                           │
    │          ▼                                                           │
    │   ┌─► shutdown requested? ── yes ──► close socket, return            │
    │   │      │ no                                                        │
    │   │      ▼                                                           │
    │   │   accept()  (wakes every accept_poll_interval to re-check)       │
    │   │      │                                                           │
    │   │      ├── timeout ──────────────────────────────┐                 │
    │   │      ├── error, not shutting down ──► TransportError             │
    │   │      ▼                                         │                 │
    │   │   connection_handler(conn)                     │                 │
    │   └──────┴─────────────────────────────────────────┘                 │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The listening socket is closed on every exit path, and a Unix socket file
is removed again.

=============================================================================
SIGNALS
=============================================================================

SIGINT (Ctrl+C) and SIGTERM (docker stop, systemd, kill) request a normal
shutdown. Python only lets the main thread install signal handlers, so when
serving from another thread (tests, embedding) they are left alone.

=============================================================================
"""

import logging
import os
import signal
import socket
import stat
import threading
from typing import Callable, Optional, Tuple, Union

from ..config import ServerConfig
from ..errors import ConfigurationError, TransportError
from ..shutdown import ShutdownCoordinator
from .connection import Connection, format_address


logger = logging.getLogger(__name__)


class Acceptor:
    """
    TCP or Unix domain listener.

    Usage:
        acceptor = Acceptor(config, coordinator, on_signal=server.shutdown)
        acceptor.bind()
        acceptor.serve(handle_connection)   # Blocks until shutdown
    """

    def __init__(
        self,
        config: ServerConfig,
        coordinator: ShutdownCoordinator,
        on_signal: Optional[Callable[[], object]] = None,
    ):
        self.config = config
        self.coordinator = coordinator
        self.on_signal = on_signal
        self._socket: Optional[socket.socket] = None
        self._address: Optional[Union[str, Tuple[str, int]]] = None
        self._ready = threading.Event()
        self._original_handlers: dict = {}
        self.connections_accepted = 0

    @property
    def address(self) -> Optional[Union[str, Tuple[str, int]]]:
        """
        Address actually bound: (host, port) for TCP, a path for Unix.
        With port 0 this holds the port the OS picked.
        """
        return self._address

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Wait until the socket is listening. Returns False on timeout."""
        return self._ready.wait(timeout)

    # ─────────────────────────────────────────────────────────────────────
    # SOCKET SETUP
    # ─────────────────────────────────────────────────────────────────────

    def _create_socket(self) -> socket.socket:
        if self.config.transport == "unix":
            if not hasattr(socket, "AF_UNIX"):
                raise ConfigurationError("Unix domain sockets are not supported on this platform")
            sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        else:
            host, _ = self.config.bind_address
            family = socket.AF_INET6 if ":" in host else socket.AF_INET
            sock = socket.socket(family, socket.SOCK_STREAM)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

        sock.settimeout(self.config.accept_poll_interval)
        return sock

    def _remove_stale_socket_file(self, path: str):
        """Remove a socket file left behind by a previous run."""
        try:
            mode = os.stat(path).st_mode
        except FileNotFoundError:
            return
        except OSError as e:
            raise ConfigurationError(f"Cannot inspect {path}: {e}") from e

        if not stat.S_ISSOCK(mode):
            raise ConfigurationError(f"{path} exists and is not a socket")

        logger.debug(f"Removing stale socket file {path}")
        os.unlink(path)

    def bind(self):
        """
        Create, bind and listen.

        Raises:
            ConfigurationError: If the address cannot be bound.
        """
        if self._socket is not None:
            return

        address = self.config.bind_address
        if self.config.transport == "unix":
            self._remove_stale_socket_file(address)

        sock = self._create_socket()
        try:
            sock.bind(address)
            sock.listen(self.config.backlog)
        except OSError as e:
            sock.close()
            logger.error(f"Failed to bind to {address}: {e}")
            raise ConfigurationError(f"Cannot listen on {address}: {e}") from e

        self._socket = sock
        if self.config.transport == "unix":
            self._address = address
        else:
            self._address = sock.getsockname()[:2]

        logger.info(f"Listening on {self.config.transport}://{self._format_bound()}")
        self._ready.set()

    def _format_bound(self) -> str:
        if isinstance(self._address, tuple):
            host, port = self._address
            return f"[{host}]:{port}" if ":" in host else f"{host}:{port}"
        return str(self._address)

    # ─────────────────────────────────────────────────────────────────────
    # SIGNALS
    # ─────────────────────────────────────────────────────────────────────

    def _setup_signals(self):
        if not self.config.handle_signals or self.on_signal is None:
            return
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not in the main thread, signal handlers not installed")
            return

        def shutdown_handler(signum, frame):
            logger.info(f"Received {signal.Signals(signum).name}, initiating shutdown...")
            self.on_signal()

        for sig in (signal.SIGTERM, signal.SIGINT):
            self._original_handlers[sig] = signal.signal(sig, shutdown_handler)

    def _restore_signals(self):
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()

    # ─────────────────────────────────────────────────────────────────────
    # ACCEPT LOOP
    # ─────────────────────────────────────────────────────────────────────

    def serve(self, connection_handler: Callable[[Connection], None]):
        """
        Accept connections until shutdown is requested.

        Args:
            connection_handler: Called with each new Connection. Must not
                                block for long; it normally hands the
                                connection to the worker pool.

        Raises:
            ConfigurationError: If binding fails.
            TransportError: If accept() fails while not shutting down.
        """
        self.bind()
        self._setup_signals()
        try:
            self._accept_loop(connection_handler)
        finally:
            self._restore_signals()
            self.close()

    def _accept_loop(self, connection_handler: Callable[[Connection], None]):
        while not self.coordinator.is_set():
            try:
                client_socket, client_address = self._socket.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if self.coordinator.is_set():
                    break
                raise TransportError(f"accept failed: {e}") from e

            if self.coordinator.is_set():
                logger.debug("Connection arrived during shutdown, closing it")
                client_socket.close()
                break

            self.connections_accepted += 1
            conn = Connection(
                socket=client_socket,
                # Unix clients are usually unnamed; show the listening path
                address=format_address(client_address or self._address, client_socket.family),
                buffer_size=self.config.buffer_size,
                read_poll_interval=self.config.read_poll_interval,
                idle_timeout=self.config.idle_timeout,
            )
            logger.debug(f"[{conn.id}] Accepted connection from {conn.address}")
            connection_handler(conn)

    def close(self):
        """Close the listening socket. Safe to call more than once."""
        sock, self._socket = self._socket, None
        if sock is None:
            return

        try:
            sock.close()
        except OSError:
            pass

        if self.config.transport == "unix" and isinstance(self._address, str):
            try:
                os.unlink(self._address)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"Could not remove socket file {self._address}: {e}")

        logger.info("Listener closed")
