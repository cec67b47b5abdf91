"""
=============================================================================
respserver
=============================================================================

A framework for building servers that speak the Redis protocol (RESP)
without deciding what the commands do.

Write a class, mark its operations with @command, hand it to a Server:

    from typing import Optional
    from respserver import Server, ServerConfig, command

    class Store:
        def __init__(self):
            self.data = {}

        @command("GET")
        def get(self, key: bytes) -> Optional[bytes]:
            return self.data.get(key)

        @command("SET")
        def set(self, key: bytes, value: bytes) -> None:
            self.data[key] = value

    Server(ServerConfig().with_handler(Store())).serve_forever()

Then:

    $ redis-cli -p 6389 SET greeting hello
    OK
    $ redis-cli -p 6389 GET greeting
    "hello"

=============================================================================
"""

from .commands import CommandAdapter, CommandTable, command
from .config import ServerConfig
from .errors import (
    ConfigurationError,
    DispatchError,
    ProtocolError,
    ServerError,
    ShutdownMisuseError,
    TransportError,
)
from .monitor import MonitorBroadcast, Subscription
from .protocol import (
    BulkReply,
    ErrorReply,
    IntegerReply,
    MonitorReply,
    MultiBulkReply,
    Reply,
    Request,
    RequestParser,
    StatusReply,
)
from .server import Server
from .shutdown import ServerState

__version__ = "1.0.0"

__all__ = [
    "Server",
    "ServerConfig",
    "ServerState",
    "command",
    "CommandAdapter",
    "CommandTable",
    "MonitorBroadcast",
    "Subscription",
    "Request",
    "RequestParser",
    "Reply",
    "StatusReply",
    "ErrorReply",
    "IntegerReply",
    "BulkReply",
    "MultiBulkReply",
    "MonitorReply",
    "ServerError",
    "ConfigurationError",
    "ProtocolError",
    "DispatchError",
    "TransportError",
    "ShutdownMisuseError",
]
