"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Centralized configuration for the RESP server.

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── python -m respserver --port 7000                          │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── RESP_PORT=7000 python -m respserver                       │
    │                                                                      │
    │   3. Code (fluent setters)                                          │
    │      └── ServerConfig().with_port(7000).with_handler(h)            │
    │                                                                      │
    │   4. Default values (in this dataclass)                            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The configuration is read once, when Server is constructed. Changing it
afterwards has no effect on a running server.

=============================================================================
"""

import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple, Union

from .errors import ConfigurationError
from .protocol.request import DEFAULT_MAX_BULK_LENGTH, DEFAULT_MAX_INLINE_LENGTH


TRANSPORTS = ("tcp", "unix")

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 6389
DEFAULT_UNIX_PATH = "/tmp/redis.sock"


@dataclass
class ServerConfig:
    """
    Configuration for the RESP server.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    TRANSPORT
    - transport, address, port, backlog, buffer_size

    APPLICATION
    - handler, commands

    PROTOCOL LIMITS
    - max_bulk_length, max_inline_length

    CONCURRENCY
    - min_workers, max_workers, max_pending

    SHUTDOWN & TIMEOUTS
    - accept_poll_interval, read_poll_interval, idle_timeout,
      shutdown_grace_period, handle_signals

    LOGGING
    - log_level, log_format, access_log

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # TRANSPORT
    # ─────────────────────────────────────────────────────────────────────

    transport: str = "tcp"
    """
    "tcp" - TCP stream socket on address:port
    "unix" - Unix domain stream socket at the path in address
    """

    address: Optional[str] = None
    """
    Host to bind (tcp) or socket path (unix).
    None = DEFAULT_HOST for tcp, DEFAULT_UNIX_PATH for unix.
    """

    port: Optional[int] = None
    """
    TCP port. None = DEFAULT_PORT (6389). 0 lets the OS pick a free port.
    Ignored for unix sockets.
    """

    backlog: int = 128
    """Maximum number of connections queued by the kernel before accept()."""

    buffer_size: int = 16 * 1024
    """How many bytes one recv() call asks for."""

    # ─────────────────────────────────────────────────────────────────────
    # APPLICATION
    # ─────────────────────────────────────────────────────────────────────

    handler: Any = None
    """
    Object exposing @command-marked operations.
    None = DefaultHandler (no commands).
    """

    commands: Dict[str, Callable[..., Any]] = field(default_factory=dict)
    """
    Explicitly registered commands: name → callable.
    Applied after the handler's commands, so they win name collisions.
    """

    # ─────────────────────────────────────────────────────────────────────
    # PROTOCOL LIMITS
    # ─────────────────────────────────────────────────────────────────────

    max_bulk_length: int = DEFAULT_MAX_BULK_LENGTH
    """Largest single argument accepted (512 MB, like Redis)."""

    max_inline_length: int = DEFAULT_MAX_INLINE_LENGTH
    """Largest inline request or header line accepted (64 KB)."""

    # ─────────────────────────────────────────────────────────────────────
    # CONCURRENCY
    # ─────────────────────────────────────────────────────────────────────

    min_workers: int = 4
    """Worker threads created at startup."""

    max_workers: int = 64
    """
    Maximum worker threads, i.e. maximum live sessions.
    Each session holds its worker until the client disconnects.
    """

    max_pending: int = 128
    """
    Connections allowed to wait for a free worker.
    Beyond this, new clients get "-ERR max number of clients reached".
    """

    # ─────────────────────────────────────────────────────────────────────
    # SHUTDOWN & TIMEOUTS
    # ─────────────────────────────────────────────────────────────────────

    accept_poll_interval: float = 1.0
    """
    accept() wakes up this often to check for shutdown.
    """

    read_poll_interval: Optional[float] = None
    """
    None = sessions block in recv() until data, EOF or reset; a shutdown is
    noticed only after the pending read resolves.
    A number = recv() wakes up this often to check for shutdown, bounding
    shutdown latency. Partially received requests stay buffered.
    """

    idle_timeout: Optional[float] = None
    """
    Close client connections idle for longer than this (seconds).
    None = never.
    """

    shutdown_grace_period: float = 5.0
    """
    How long serve_forever() waits for running sessions after the acceptor
    stops, before returning anyway.
    """

    handle_signals: bool = True
    """
    Install SIGINT/SIGTERM handlers that trigger shutdown.
    Only possible when serving from the main thread.
    """

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    """Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)."""

    log_format: str = "text"
    """'text' for humans, 'json' for log aggregators."""

    access_log: bool = False
    """Log every executed command on the respserver.access logger."""

    # =========================================================================
    # FLUENT SETTERS
    # =========================================================================

    def with_transport(self, transport: str) -> "ServerConfig":
        self.transport = transport
        return self

    def with_address(self, address: str) -> "ServerConfig":
        self.address = address
        return self

    def with_port(self, port: int) -> "ServerConfig":
        self.port = port
        return self

    def with_handler(self, handler: Any) -> "ServerConfig":
        self.handler = handler
        return self

    def with_command(self, name: str, func: Callable[..., Any]) -> "ServerConfig":
        """
        Register a plain callable as a command.

        The callable needs the same annotations as a @command method.

        Example:
            def ping() -> str:
                return "PONG"

            config = ServerConfig().with_command("PING", ping)
        """
        self.commands[name] = func
        return self

    # =========================================================================
    # DERIVED VALUES
    # =========================================================================

    @property
    def bind_address(self) -> Union[str, Tuple[str, int]]:
        """
        Address to bind, with defaults applied.

            tcp  → (host, port)
            unix → "/path/to/socket"
        """
        if self.transport == "unix":
            return self.address or DEFAULT_UNIX_PATH
        port = DEFAULT_PORT if self.port is None else self.port
        return (self.address or DEFAULT_HOST, port)

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Create configuration from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        RESP_TRANSPORT   tcp or unix (default: tcp)
        RESP_ADDRESS     Host or socket path
        RESP_PORT        TCP port (default: 6389)
        RESP_WORKERS     Max worker threads (default: 64)
        RESP_IDLE_TIMEOUT  Idle client timeout in seconds (default: none)
        RESP_LOG_LEVEL   Logging level (default: INFO)
        RESP_LOG_FORMAT  text or json (default: text)

        =====================================================================
        """
        port = os.getenv("RESP_PORT")
        idle_timeout = os.getenv("RESP_IDLE_TIMEOUT")
        try:
            max_workers = int(os.getenv("RESP_WORKERS", "64"))
            return cls(
                transport=os.getenv("RESP_TRANSPORT", "tcp"),
                address=os.getenv("RESP_ADDRESS"),
                port=int(port) if port else None,
                min_workers=min(4, max_workers),
                max_workers=max_workers,
                idle_timeout=float(idle_timeout) if idle_timeout else None,
                log_level=os.getenv("RESP_LOG_LEVEL", "INFO"),
                log_format=os.getenv("RESP_LOG_FORMAT", "text"),
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid environment variable: {e}") from e

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ConfigurationError: On the first invalid value.
        """
        if self.transport not in TRANSPORTS:
            raise ConfigurationError(
                f"Invalid transport: {self.transport!r}. Must be one of {TRANSPORTS}."
            )

        if self.port is not None and not 0 <= self.port < 65536:
            raise ConfigurationError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.backlog < 1:
            raise ConfigurationError("backlog must be >= 1")

        if self.buffer_size < 1024:
            raise ConfigurationError("buffer_size must be >= 1024")

        if self.min_workers < 1:
            raise ConfigurationError("min_workers must be >= 1")

        if self.max_workers < self.min_workers:
            raise ConfigurationError("max_workers must be >= min_workers")

        if self.max_pending < 1:
            raise ConfigurationError("max_pending must be >= 1")

        if self.accept_poll_interval <= 0:
            raise ConfigurationError("accept_poll_interval must be > 0")

        for name in ("read_poll_interval", "idle_timeout"):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise ConfigurationError(f"{name} must be > 0")

        if self.shutdown_grace_period < 0:
            raise ConfigurationError("shutdown_grace_period must be >= 0")

        if self.log_format not in ("text", "json"):
            raise ConfigurationError("log_format must be 'text' or 'json'")

        for name, func in self.commands.items():
            if not callable(func):
                raise ConfigurationError(f"Command {name!r} is not callable")
