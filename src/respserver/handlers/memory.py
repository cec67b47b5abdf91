"""
=============================================================================
IN-MEMORY KEY/VALUE HANDLER
=============================================================================

A small Redis-like store built only from @command operations. It is what
`python -m respserver --handler memory` serves, and it doubles as the
reference for writing handlers:

    @command("INCRBY")
    def incrby(self, key: bytes, increment: int) -> int:
                          ─────             ───    ───
                          raw argument      parsed integer reply

Values are either strings (bytes) or hashes (dict of field → bytes). Using a
command on a key of the other kind replies

    -WRONGTYPE Operation against a key holding the wrong kind of value

=============================================================================
COMMANDS
=============================================================================

    PING [message]          ECHO message            INFO
    GET key                 SET key value           DEL key [key ...]
    EXISTS key [key ...]    INCR key                INCRBY key increment
    KEYS [pattern]          DBSIZE                  FLUSHDB
    HSET key field value [field value ...]
    HGET key field          HGETALL key             MONITOR

=============================================================================
"""

import fnmatch
import platform
import threading
import time
from typing import Dict, List, Optional, Union

from ..commands import command
from ..errors import DispatchError
from ..protocol.reply import BulkReply, MonitorReply, Reply, StatusReply


Value = Union[bytes, Dict[str, bytes]]


def wrong_type() -> DispatchError:
    return DispatchError(
        "Operation against a key holding the wrong kind of value", code="WRONGTYPE"
    )


class MemoryHandler:
    """
    Thread-safe in-memory store.

    Sessions run concurrently on worker threads, so every access to the
    data goes through one lock.
    """

    def __init__(self):
        self._data: Dict[bytes, Value] = {}
        self._lock = threading.RLock()
        self.started_at = time.time()

    # ─────────────────────────────────────────────────────────────────────
    # HELPERS (not commands)
    # ─────────────────────────────────────────────────────────────────────

    def get_string(self, key: bytes) -> Optional[bytes]:
        value = self._data.get(key)
        if value is not None and not isinstance(value, bytes):
            raise wrong_type()
        return value

    def get_hash(self, key: bytes, create: bool = False) -> Optional[Dict[str, bytes]]:
        value = self._data.get(key)
        if value is None:
            if not create:
                return None
            value = self._data[key] = {}
        if not isinstance(value, dict):
            raise wrong_type()
        return value

    # ─────────────────────────────────────────────────────────────────────
    # CONNECTION
    # ─────────────────────────────────────────────────────────────────────

    @command("PING")
    def ping(self, message: Optional[bytes] = None) -> Reply:
        if message is None:
            return StatusReply("PONG")
        return BulkReply(message)

    @command("ECHO")
    def echo(self, message: bytes) -> bytes:
        return message

    @command("INFO")
    def info(self) -> str:
        with self._lock:
            keys = len(self._data)
        lines = [
            "# Server",
            f"python_version:{platform.python_version()}",
            f"uptime_in_seconds:{int(time.time() - self.started_at)}",
            "# Keyspace",
            f"keys:{keys}",
        ]
        return "\r\n".join(lines) + "\r\n"

    @command("MONITOR")
    def monitor(self) -> MonitorReply:
        return MonitorReply()

    # ─────────────────────────────────────────────────────────────────────
    # STRINGS
    # ─────────────────────────────────────────────────────────────────────

    @command("GET")
    def get(self, key: bytes) -> Optional[bytes]:
        with self._lock:
            return self.get_string(key)

    @command("SET")
    def set(self, key: bytes, value: bytes) -> None:
        with self._lock:
            self._data[key] = value

    @command("INCR")
    def incr(self, key: bytes) -> int:
        return self.incrby(key, 1)

    @command("INCRBY")
    def incrby(self, key: bytes, increment: int) -> int:
        with self._lock:
            current = self.get_string(key)
            try:
                number = int(current) if current is not None else 0
            except ValueError:
                raise DispatchError("value is not an integer or out of range")
            number += increment
            self._data[key] = str(number).encode("ascii")
            return number

    # ─────────────────────────────────────────────────────────────────────
    # KEYSPACE
    # ─────────────────────────────────────────────────────────────────────

    @command("DEL")
    def delete(self, *keys: bytes) -> int:
        if not keys:
            raise DispatchError("wrong number of arguments for 'DEL' command")
        with self._lock:
            return sum(1 for key in keys if self._data.pop(key, None) is not None)

    @command("EXISTS")
    def exists(self, *keys: bytes) -> int:
        if not keys:
            raise DispatchError("wrong number of arguments for 'EXISTS' command")
        with self._lock:
            return sum(1 for key in keys if key in self._data)

    @command("KEYS")
    def keys(self, pattern: str = "*") -> List[bytes]:
        with self._lock:
            names = list(self._data)
        return sorted(
            key for key in names
            if fnmatch.fnmatchcase(key.decode("utf-8", errors="replace"), pattern)
        )

    @command("DBSIZE")
    def dbsize(self) -> int:
        with self._lock:
            return len(self._data)

    @command("FLUSHDB")
    def flushdb(self) -> None:
        with self._lock:
            self._data.clear()

    # ─────────────────────────────────────────────────────────────────────
    # HASHES
    # ─────────────────────────────────────────────────────────────────────

    @command("HSET")
    def hset(self, key: bytes, fields: Dict[str, bytes]) -> int:
        with self._lock:
            stored = self.get_hash(key, create=True)
            added = sum(1 for name in fields if name not in stored)
            stored.update(fields)
            return added

    @command("HGET")
    def hget(self, key: bytes, field: str) -> Optional[bytes]:
        with self._lock:
            stored = self.get_hash(key)
            return None if stored is None else stored.get(field)

    @command("HGETALL")
    def hgetall(self, key: bytes) -> Dict[str, bytes]:
        with self._lock:
            stored = self.get_hash(key)
            return dict(stored) if stored else {}
