"""
=============================================================================
RESP SERVER
=============================================================================

Ties everything together: a command table built from the handler, a
listening socket, a worker pool running one session per client, the monitor
feed and the shutdown state machine.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                           Server                                     │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   ServerConfig ──► CommandTable (built once, read-only)              │
    │                                                                      │
    │   Acceptor ──conn──► ThreadPool ──► serve_client(conn)               │
    │                                          │                           │
    │                       ┌──────────────────┘                           │
    │                       ▼                                              │
    │              read request ─► apply() ─► write reply ─┐               │
    │                   ▲                │                 │               │
    │                   │                └─► MonitorBroadcast              │
    │                   └──────────────────────────────────┘               │
    │                                                                      │
    │   ShutdownCoordinator: checked at the top of every loop              │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
USAGE
=============================================================================

    class Store:
        def __init__(self):
            self.data = {}

        @command("GET")
        def get(self, key: bytes) -> Optional[bytes]:
            return self.data.get(key)

        @command("SET")
        def set(self, key: bytes, value: bytes) -> None:
            self.data[key] = value

    server = Server(ServerConfig().with_handler(Store()).with_port(6389))
    server.serve_forever()          # Blocks until shutdown() or Ctrl+C

=============================================================================
SESSION RULES
=============================================================================

- Strict request/reply: the next request is read only after the previous
  reply has been written completely.
- Unknown command        → -ERR unknown command '<name>', session goes on
- DispatchError          → -<code> <message>, session goes on
- Any handler exception  → -ERR <message>, logged, session goes on
- Malformed input        → "-ERR Protocol error: <message>\\n", session ends
- EOF / reset / write failure / TransportError → session ends silently

=============================================================================
"""

import logging
import threading
import time
from typing import Any, Dict, Optional, Tuple, Union

from .commands import CommandAdapter, CommandTable
from .config import ServerConfig
from .core import Acceptor, Connection, ConnectionState, ThreadPool
from .errors import DispatchError, ProtocolError, ServerError, TransportError
from .handlers import DefaultHandler
from .log import CommandLog, log_command
from .monitor import MonitorBroadcast, format_monitor_line
from .protocol import (
    ErrorReply,
    MonitorReply,
    Reply,
    Request,
    RequestParser,
    error,
    unknown_command,
)
from .shutdown import ServerState, ShutdownCoordinator


logger = logging.getLogger(__name__)


class Server:
    """
    Generic RESP command server.

    Everything that can fail because of configuration fails here, in the
    constructor: invalid settings and handler operations whose signature
    cannot be adapted both raise ConfigurationError before any socket is
    opened.
    """

    def __init__(self, config: Optional[ServerConfig] = None):
        self.config = config or ServerConfig()
        self.config.validate()

        # ─────────────────────────────────────────────────────────────────
        # APPLICATION
        # ─────────────────────────────────────────────────────────────────

        self.handler = self.config.handler
        if self.handler is None:
            self.handler = DefaultHandler()

        self._commands = CommandTable.build(self.handler, self.config.commands)

        # ─────────────────────────────────────────────────────────────────
        # RUNTIME
        # ─────────────────────────────────────────────────────────────────

        self._coordinator = ShutdownCoordinator()
        self._monitor = MonitorBroadcast()
        self._coordinator.on_shutdown(self._monitor.close)

        self._parser = RequestParser(
            max_bulk_length=self.config.max_bulk_length,
            max_inline_length=self.config.max_inline_length,
        )

        self._acceptor = Acceptor(self.config, self._coordinator, on_signal=self.shutdown)

        self._pool = ThreadPool(
            min_workers=self.config.min_workers,
            max_workers=self.config.max_workers,
            queue_size=self.config.max_pending,
            name_prefix="Session",
        )

        self._sessions_lock = threading.Lock()
        self._active_sessions = 0
        self._sessions_done = threading.Condition(self._sessions_lock)
        self.commands_processed = 0

        logger.debug(
            f"Server created with {len(self._commands)} command(s) "
            f"from {type(self.handler).__name__}"
        )

    # =========================================================================
    # INTROSPECTION
    # =========================================================================

    @property
    def commands(self) -> CommandTable:
        return self._commands

    @property
    def monitor(self) -> MonitorBroadcast:
        return self._monitor

    @property
    def state(self) -> ServerState:
        return self._coordinator.state

    @property
    def address(self) -> Optional[Union[str, Tuple[str, int]]]:
        """Bound address, or None before listen()/serve_forever()."""
        return self._acceptor.address

    @property
    def active_sessions(self) -> int:
        with self._sessions_lock:
            return self._active_sessions

    @property
    def stats(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "sessions": self.active_sessions,
            "monitors": len(self._monitor),
            "commands_processed": self.commands_processed,
            "connections_accepted": self._acceptor.connections_accepted,
            "pool": self._pool.stats,
        }

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def listen(self):
        """
        Bind the listening socket without serving yet.

        Useful with port 0: after listen(), `address` holds the real port.

        Raises:
            ConfigurationError: If the address cannot be bound.
        """
        self._acceptor.bind()

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Wait until the server is listening. Returns False on timeout."""
        return self._acceptor.wait_until_ready(timeout)

    def serve_forever(self):
        """
        Accept and serve clients until shutdown() is called.

        Blocks. On the way out it waits up to `shutdown_grace_period` for
        running sessions, then returns.

        Raises:
            ConfigurationError: If the address cannot be bound.
            TransportError: If accepting fails for a reason other than shutdown.
            ServerError: If the server has already stopped.
        """
        if self.state is ServerState.STOPPED:
            raise ServerError("server has already stopped and cannot be restarted")

        self._pool.start()
        logger.info(
            f"Serving {len(self._commands)} command(s) with "
            f"{self.config.min_workers}-{self.config.max_workers} workers"
        )

        try:
            self._acceptor.serve(self._handle_connection)
        finally:
            self._finish()

    def shutdown(self, strict: bool = False) -> bool:
        """
        Ask the server to stop. Safe to call from any thread.

        The acceptor stops within `accept_poll_interval`. Each session stops
        at the top of its loop; a session blocked in a read notices only when
        that read returns (or within `read_poll_interval` if configured).

        Args:
            strict: Raise ShutdownMisuseError on a repeated call instead of
                    ignoring it.

        Returns:
            True if this call initiated the shutdown.
        """
        return self._coordinator.request(strict=strict)

    def _finish(self):
        # Reached when the accept loop ends for any reason; sessions must stop too
        self._coordinator.request()

        grace = self.config.shutdown_grace_period
        deadline = time.time() + grace

        if not self._pool.shutdown(timeout=grace):
            logger.warning(
                f"{self.active_sessions} session(s) still running after "
                f"{grace:.1f}s grace period"
            )

        with self._sessions_lock:
            remaining = deadline - time.time()
            if self._active_sessions and remaining > 0:
                self._sessions_done.wait_for(lambda: self._active_sessions == 0, remaining)

        self._coordinator.mark_stopped()
        logger.info("Server stopped")

    # =========================================================================
    # CONNECTIONS
    # =========================================================================

    def _handle_connection(self, conn: Connection):
        """Hand a new connection to the pool, or turn it away if it is full."""
        try:
            submitted = self._pool.submit(self.serve_client, args=(conn,))
        except RuntimeError:
            submitted = False

        if not submitted:
            logger.warning(f"[{conn.id}] Too many clients, rejecting {conn.address}")
            conn.send_error_line("ERR max number of clients reached")
            conn.close()

    def _session_started(self):
        with self._sessions_lock:
            self._active_sessions += 1

    def _session_ended(self):
        with self._sessions_lock:
            self._active_sessions -= 1
            if self._active_sessions == 0:
                self._sessions_done.notify_all()

    def serve_client(self, conn: Connection):
        """
        Run one client session until it ends. Always closes `conn`.

        Runs on a pool worker. Every failure here is per-connection: it ends
        this session and nothing else.
        """
        self._session_started()
        logger.debug(f"[{conn.id}] Session started for {conn.address}")

        try:
            with conn:
                while not self._coordinator.is_set():
                    try:
                        request = conn.read_request(self._parser, self._coordinator.is_set)
                    except ProtocolError as e:
                        logger.debug(f"[{conn.id}] Protocol error: {e}")
                        conn.send_error_line(f"ERR Protocol error: {e}")
                        break

                    if request is None:
                        break

                    conn.state = ConnectionState.DISPATCHING
                    reply = self.apply(request, conn)
                    reply.write_to(conn)

        except TransportError as e:
            logger.debug(f"[{conn.id}] Session ended: {e}")

        finally:
            self._session_ended()
            logger.debug(f"[{conn.id}] Client disconnected")

    # =========================================================================
    # DISPATCH
    # =========================================================================

    def apply(self, request: Request, conn: Optional[Connection] = None) -> Reply:
        """
        Execute one request and return its reply.

        Handler failures come back as ErrorReply; only TransportError (the
        connection itself is broken) propagates.
        """
        start_time = time.time()
        adapter = self._commands.get(request.name)

        if adapter is None:
            logger.debug(f"Unknown command {request.name!r} from {request.host}")
            reply = unknown_command(request.name)
        else:
            reply = self._dispatch(adapter, request)

        with self._sessions_lock:
            self.commands_processed += 1

        if self.config.access_log:
            log_command(
                CommandLog(
                    connection_id=conn.id if conn is not None else "-",
                    client=request.host or "-",
                    command=request.name,
                    arguments=len(request.args),
                    reply=type(reply).__name__,
                    duration_ms=(time.time() - start_time) * 1000,
                ),
                log_format=self.config.log_format,
            )

        return reply

    def _dispatch(self, adapter: CommandAdapter, request: Request) -> Reply:
        try:
            reply = adapter(request)
        except DispatchError as e:
            logger.debug(f"{request.name} from {request.host} rejected: {e.reply_line}")
            return ErrorReply(e.reply_line)
        except TransportError:
            raise
        except Exception as e:
            logger.exception(f"Command {request.name} failed: {e}")
            return error(str(e) or type(e).__name__)

        # A MONITOR request's own line goes out before it subscribes
        self._monitor.publish(format_monitor_line(request))
        if isinstance(reply, MonitorReply):
            reply.attach(self._monitor.subscribe())
        return reply
