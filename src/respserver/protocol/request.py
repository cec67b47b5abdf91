"""
=============================================================================
RESP REQUEST PARSING
=============================================================================

Turns the bytes a client sends into Request objects.

=============================================================================
TWO REQUEST FORMS
=============================================================================

RESP clients send commands in one of two shapes:

1. MULTI-BULK (what every real client library sends)

       *3\r\n            ← number of elements (command name + arguments)
       $3\r\n            ← length of the next element in bytes
       SET\r\n
       $1\r\n
       a\r\n
       $1\r\n
       1\r\n

   Lengths are explicit, so arguments may contain any bytes, CRLF included.

2. INLINE (what you type into telnet / nc)

       SET a 1\r\n

   One line, arguments separated by whitespace.

=============================================================================
PARSING A STREAM
=============================================================================

TCP is a byte stream: a read may return half a request or two and a half.
The parser therefore never reads from the socket itself. It looks at the
bytes buffered so far and answers one of three things:

    parse(buffer) → (Request, consumed)   A complete request was found.
                                          The caller drops `consumed` bytes.
    parse(buffer) → None                  Not enough bytes yet, read more.
    parse(buffer) → raises ProtocolError  The bytes can never be a request.

Because parsing is a pure function of the buffer, a read that times out
halfway through a request loses nothing: the partial bytes stay buffered
and the next parse() simply starts over.

=============================================================================
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from ..errors import DispatchError, ProtocolError


CRLF = b"\r\n"

# Same limits Redis uses by default.
DEFAULT_MAX_BULK_LENGTH = 512 * 1024 * 1024
DEFAULT_MAX_INLINE_LENGTH = 64 * 1024
DEFAULT_MAX_ARGUMENTS = 1024 * 1024


@dataclass
class Request:
    """
    One parsed command.

    Attributes:
        name: Command name exactly as the client sent it (case-sensitive).
        args: Ordered raw arguments, command name excluded.
        host: Address of the client that sent it (e.g. "127.0.0.1:54321").

    The get_* helpers validate one argument and raise DispatchError with the
    standard reply text, so handlers that take a Request directly get the
    same error messages as annotated handlers.
    """

    name: str
    args: List[bytes] = field(default_factory=list)
    host: str = ""

    def expect_argument(self, index: int) -> bytes:
        if index >= len(self.args):
            raise DispatchError(
                f"wrong number of arguments for '{self.name}' command"
            )
        return self.args[index]

    def get_string(self, index: int) -> str:
        value = self.expect_argument(index)
        try:
            return value.decode("utf-8")
        except UnicodeDecodeError:
            raise DispatchError("argument is not valid UTF-8")

    def get_integer(self, index: int) -> int:
        value = self.expect_argument(index)
        try:
            return int(value)
        except ValueError:
            raise DispatchError("value is not an integer or out of range")

    def get_map(self, index: int) -> Dict[str, bytes]:
        """Read the remaining arguments as key/value pairs."""
        count = len(self.args) - index
        if count <= 0:
            raise DispatchError("expected at least one key value pair")
        if count % 2 != 0:
            raise DispatchError("got uneven number of key value pairs")

        pairs = self.args[index:]
        result: Dict[str, bytes] = {}
        for i in range(0, count, 2):
            key = pairs[i].decode("utf-8", errors="replace")
            result[key] = pairs[i + 1]
        return result


class RequestParser:
    """
    Incremental RESP request parser.

    Usage:
        parser = RequestParser()
        result = parser.parse(b"*1\\r\\n$4\\r\\nPING\\r\\n")
        if result is not None:
            request, consumed = result
    """

    def __init__(
        self,
        max_bulk_length: int = DEFAULT_MAX_BULK_LENGTH,
        max_inline_length: int = DEFAULT_MAX_INLINE_LENGTH,
        max_arguments: int = DEFAULT_MAX_ARGUMENTS,
    ):
        self.max_bulk_length = max_bulk_length
        self.max_inline_length = max_inline_length
        self.max_arguments = max_arguments

    def parse(self, buffer: bytes, host: str = "") -> Optional[Tuple[Request, int]]:
        """
        Try to parse one request from the start of `buffer`.

        Args:
            buffer: Bytes received so far on the connection.
            host: Client address stored on the Request.

        Returns:
            (request, consumed) when a full request is buffered, else None.

        Raises:
            ProtocolError: If the buffer cannot start a valid request.
        """
        pos = 0

        while pos < len(buffer):
            if buffer[pos:pos + 1] == b"*":
                result = self._parse_multibulk(buffer, pos)
            else:
                result = self._parse_inline(buffer, pos)

            if result is None:
                return None

            name, args, end = result
            if name is None:
                # Blank inline line (telnet sends these); skip it
                pos = end
                continue

            return Request(name=name, args=args, host=host), end

        return None

    # ─────────────────────────────────────────────────────────────────────
    # MULTI-BULK
    # ─────────────────────────────────────────────────────────────────────

    def _parse_multibulk(
        self, buffer: bytes, pos: int
    ) -> Optional[Tuple[str, List[bytes], int]]:
        header = self._read_line(buffer, pos)
        if header is None:
            return None
        line, pos = header

        try:
            count = int(line[1:])
        except ValueError:
            raise ProtocolError("invalid multibulk length")

        if count < 1 or count > self.max_arguments:
            raise ProtocolError("invalid multibulk length")

        elements: List[bytes] = []
        for _ in range(count):
            element = self._read_bulk(buffer, pos)
            if element is None:
                return None
            data, pos = element
            elements.append(data)

        name = elements[0].decode("utf-8", errors="replace")
        return name, elements[1:], pos

    def _read_bulk(self, buffer: bytes, pos: int) -> Optional[Tuple[bytes, int]]:
        header = self._read_line(buffer, pos)
        if header is None:
            return None
        line, pos = header

        if not line.startswith(b"$"):
            found = line[:1].decode("ascii", errors="replace")
            raise ProtocolError(f"expected '$', got '{found}'")

        try:
            size = int(line[1:])
        except ValueError:
            raise ProtocolError("invalid bulk length")

        if size < 0 or size > self.max_bulk_length:
            raise ProtocolError("invalid bulk length")

        end = pos + size
        if len(buffer) < end + 2:
            return None  # Body or its trailing CRLF not here yet

        if buffer[end:end + 2] != CRLF:
            raise ProtocolError("bulk data is not terminated by CRLF")

        return buffer[pos:end], end + 2

    def _read_line(self, buffer: bytes, pos: int) -> Optional[Tuple[bytes, int]]:
        end = buffer.find(CRLF, pos)
        if end == -1:
            if len(buffer) - pos > self.max_inline_length:
                raise ProtocolError("too big header line")
            return None
        return buffer[pos:end], end + 2

    # ─────────────────────────────────────────────────────────────────────
    # INLINE
    # ─────────────────────────────────────────────────────────────────────

    def _parse_inline(
        self, buffer: bytes, pos: int
    ) -> Optional[Tuple[Optional[str], List[bytes], int]]:
        end = buffer.find(b"\n", pos)
        if end == -1:
            if len(buffer) - pos > self.max_inline_length:
                raise ProtocolError("too big inline request")
            return None

        fields = buffer[pos:end].split()
        if not fields:
            return None, [], end + 1

        name = fields[0].decode("utf-8", errors="replace")
        return name, fields[1:], end + 1


def parse_request(data: bytes, host: str = "") -> Request:
    """
    Parse a single complete request (convenience for tests and tools).

    Raises:
        ProtocolError: If `data` is malformed or incomplete.
    """
    result = RequestParser().parse(data, host)
    if result is None:
        raise ProtocolError("incomplete request")
    return result[0]


def encode_request(*parts) -> bytes:
    """
    Encode a command as a multi-bulk request, the way client libraries do.

        encode_request("SET", "a", b"1")
        → b"*3\\r\\n$3\\r\\nSET\\r\\n$1\\r\\na\\r\\n$1\\r\\n1\\r\\n"
    """
    chunks = [b"*%d\r\n" % len(parts)]
    for part in parts:
        if isinstance(part, str):
            part = part.encode("utf-8")
        elif isinstance(part, int):
            part = str(part).encode("ascii")
        chunks.append(b"$%d\r\n%s\r\n" % (len(part), part))
    return b"".join(chunks)
