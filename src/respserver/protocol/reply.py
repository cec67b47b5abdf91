"""
=============================================================================
RESP REPLIES
=============================================================================

Every command produces exactly one Reply. A Reply knows how to encode
itself; the session only calls write_to() and never looks inside.

=============================================================================
WIRE FORMAT
=============================================================================

    Type          First byte   Example                       Python value
    ──────────    ──────────   ───────────────────────────   ────────────
    Status        +            +OK\r\n                       StatusReply
    Error         -            -ERR unknown command\r\n      ErrorReply
    Integer       :            :42\r\n                       IntegerReply
    Bulk          $            $5\r\nhello\r\n               BulkReply
    Nil bulk      $            $-1\r\n                       BulkReply(None)
    Multi-bulk    *            *2\r\n$1\r\na\r\n:1\r\n       MultiBulkReply

Status and error replies are single lines, so any CR/LF inside them is
replaced with a space before encoding.

=============================================================================
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Iterable, List, Optional, Protocol, Sequence, Union


logger = logging.getLogger(__name__)


class Writer(Protocol):
    """Anything replies can be written to (a Connection, a BytesIO...)."""

    def write(self, data: bytes) -> int: ...


def _single_line(text: str) -> bytes:
    return text.replace("\r", " ").replace("\n", " ").encode("utf-8")


class Reply(ABC):
    """Base class for all replies."""

    @abstractmethod
    def to_bytes(self) -> bytes:
        """Encode the complete reply."""

    def write_to(self, writer: Writer) -> int:
        """
        Write the encoded reply and return the number of bytes written.

        Raises whatever the writer raises (TransportError for connections).
        """
        data = self.to_bytes()
        writer.write(data)
        return len(data)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Reply):
            return NotImplemented
        return type(self) is type(other) and self.to_bytes() == other.to_bytes()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.to_bytes()!r})"


class StatusReply(Reply):
    def __init__(self, code: str = "OK"):
        self.code = code

    def to_bytes(self) -> bytes:
        return b"+" + _single_line(self.code) + b"\r\n"


class ErrorReply(Reply):
    """
    A single-line error.

    By convention the first word is an error code: "ERR", "WRONGTYPE"...
    """

    def __init__(self, message: str):
        self.message = message

    def to_bytes(self) -> bytes:
        return b"-" + _single_line(self.message) + b"\r\n"


class IntegerReply(Reply):
    def __init__(self, number: int):
        self.number = int(number)

    def to_bytes(self) -> bytes:
        return b":%d\r\n" % self.number


class BulkReply(Reply):
    """Binary-safe string; None encodes as the nil bulk ($-1)."""

    def __init__(self, value: Optional[Union[bytes, str]]):
        if isinstance(value, str):
            value = value.encode("utf-8")
        elif value is not None and not isinstance(value, bytes):
            raise TypeError(f"bulk reply needs bytes or str, got {type(value).__name__}")
        self.value = value

    def to_bytes(self) -> bytes:
        if self.value is None:
            return b"$-1\r\n"
        return b"$%d\r\n%s\r\n" % (len(self.value), self.value)


class MultiBulkReply(Reply):
    """
    An array of values.

    Elements may be bytes, str, int, bool, None (nil bulk), nested
    sequences, or Reply instances. None as the whole value encodes the
    nil array (*-1).

    Elements are converted when the reply is built, so a value RESP cannot
    represent raises TypeError inside the command, not while writing.
    """

    def __init__(self, values: Optional[Sequence[Any]]):
        self.items: Optional[List[Reply]] = (
            None if values is None else [to_reply(value) for value in values]
        )

    def to_bytes(self) -> bytes:
        if self.items is None:
            return b"*-1\r\n"
        parts = [b"*%d\r\n" % len(self.items)]
        parts.extend(item.to_bytes() for item in self.items)
        return b"".join(parts)


class MonitorReply(Reply):
    """
    Streaming reply that turns the connection into a monitor feed.

    A command returns MonitorReply() and the server attaches a monitor
    subscription to it. Writing it sends +OK and then one status line per
    executed command, until the subscription is closed (on shutdown) or the
    client goes away:

        +OK\\r\\n
        +1700000000.123456 [0 127.0.0.1:50412] "SET" "a" "1"\\r\\n
        ...
    """

    poll_interval = 0.5
    """How often a waiting feed checks whether the client has hung up."""

    def __init__(self):
        self.subscription = None

    def attach(self, subscription) -> None:
        self.subscription = subscription

    def to_bytes(self) -> bytes:
        return b"+OK\r\n"

    def write_to(self, writer: Writer) -> int:
        written = super().write_to(writer)
        if self.subscription is None:
            return written

        # Writers that can tell when their client left (a Connection) are
        # checked whenever the feed is quiet for poll_interval.
        peer_closed = getattr(writer, "peer_closed", None)
        timeout = self.poll_interval if peer_closed is not None else None

        try:
            while True:
                line = self.subscription.get(timeout=timeout)
                if line is None:
                    if self.subscription.closed:
                        break
                    if peer_closed is not None and peer_closed():
                        logger.debug("Monitor client went away")
                        break
                    continue
                written += StatusReply(line).write_to(writer)
        finally:
            self.subscription.close()

        return written


# =============================================================================
# CONVERSION HELPERS
# =============================================================================

def to_reply(value: Any) -> Reply:
    """
    Convert a plain Python value into the matching reply.

        bytes / str         → BulkReply
        None                → nil BulkReply
        bool                → IntegerReply(1 or 0)
        int                 → IntegerReply
        dict                → MultiBulkReply of key, value, key, value...
        list / tuple / set  → MultiBulkReply
        Reply               → returned unchanged

    Raises:
        TypeError: For values RESP cannot represent.
    """
    if isinstance(value, Reply):
        return value
    if value is None or isinstance(value, (bytes, bytearray, str)):
        return BulkReply(bytes(value) if isinstance(value, bytearray) else value)
    if isinstance(value, bool):
        return IntegerReply(1 if value else 0)
    if isinstance(value, int):
        return IntegerReply(value)
    if isinstance(value, dict):
        return MultiBulkReply(flatten_pairs(value.items()))
    if isinstance(value, (list, tuple, set, frozenset)):
        return MultiBulkReply(list(value))
    raise TypeError(f"cannot encode {type(value).__name__} as a RESP reply")


def flatten_pairs(pairs: Iterable) -> list:
    flat = []
    for key, value in pairs:
        flat.append(key)
        flat.append(value)
    return flat


def ok() -> StatusReply:
    """+OK"""
    return StatusReply("OK")


def error(message: str, code: str = "ERR") -> ErrorReply:
    """-<code> <message>"""
    return ErrorReply(f"{code} {message}")


def unknown_command(name: str) -> ErrorReply:
    return error(f"unknown command '{name}'")
