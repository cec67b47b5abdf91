"""
Transport layer: listening socket, client connections, worker pool.
"""

from .acceptor import Acceptor
from .connection import Connection, ConnectionState, format_address
from .thread_pool import ThreadPool, WorkerState

__all__ = [
    "Acceptor",
    "Connection",
    "ConnectionState",
    "format_address",
    "ThreadPool",
    "WorkerState",
]
