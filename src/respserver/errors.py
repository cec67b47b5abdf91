"""
=============================================================================
ERROR TAXONOMY
=============================================================================

Every failure the server can raise derives from ServerError, so callers
embedding the server can catch one type. The subclasses say WHERE a failure
happened, which decides what it is allowed to tear down:

    ┌──────────────────────┬──────────────────────┬───────────────────────┐
    │ Exception            │ Raised by            │ Ends                  │
    ├──────────────────────┼──────────────────────┼───────────────────────┤
    │ ConfigurationError   │ Server construction, │ Startup (nothing is   │
    │                      │ bind                 │ partially built)      │
    │ ProtocolError        │ RequestParser        │ The offending session │
    │ DispatchError        │ Command adapters,    │ Nothing: becomes an   │
    │                      │ handlers             │ -ERR reply            │
    │ TransportError       │ Connection, Acceptor │ Session or Acceptor   │
    │ ShutdownMisuseError  │ strict shutdown()    │ Nothing               │
    └──────────────────────┴──────────────────────┴───────────────────────┘

=============================================================================
"""


class ServerError(Exception):
    """Base class for all respserver errors."""


class ConfigurationError(ServerError):
    """
    Raised while building a server.

    Covers invalid configuration values, handler operations whose signature
    cannot be turned into a command adapter, and sockets that cannot be bound.
    """


class ProtocolError(ServerError):
    """Raised by the request parser on malformed input."""


class DispatchError(ServerError):
    """
    Application-level command failure.

    Converted to a single-line error reply; the session keeps running.
    The code is the first word of the reply line, as in Redis:

        DispatchError("wrong number of arguments")  ->  -ERR wrong number ...
        DispatchError("key is busy", code="BUSY")   ->  -BUSY key is busy
    """

    def __init__(self, message: str, code: str = "ERR"):
        super().__init__(message)
        self.code = code

    @property
    def reply_line(self) -> str:
        return f"{self.code} {self}"


class TransportError(ServerError):
    """Raised when reading, writing or accepting on a socket fails."""


class ShutdownMisuseError(ServerError):
    """Raised by shutdown(strict=True) when shutdown was already requested."""
