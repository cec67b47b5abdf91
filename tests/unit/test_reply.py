"""
Unit tests for RESP reply encoding.
"""

import io

import pytest

from respserver.monitor import MonitorBroadcast
from respserver.protocol.reply import (
    BulkReply,
    ErrorReply,
    IntegerReply,
    MonitorReply,
    MultiBulkReply,
    StatusReply,
    error,
    ok,
    to_reply,
    unknown_command,
)


class TestEncoding:
    """Tests for wire encodings of each reply type."""

    def test_status(self):
        """Test status replies."""
        assert StatusReply().to_bytes() == b"+OK\r\n"
        assert StatusReply("PONG").to_bytes() == b"+PONG\r\n"

    def test_error_is_single_line(self):
        """Test CR/LF inside an error message is flattened."""
        assert ErrorReply("ERR bad\r\nthing").to_bytes() == b"-ERR bad  thing\r\n"

    def test_integer(self):
        """Test integer replies."""
        assert IntegerReply(42).to_bytes() == b":42\r\n"
        assert IntegerReply(-3).to_bytes() == b":-3\r\n"

    def test_bulk(self):
        """Test bulk strings, including str and nil."""
        assert BulkReply(b"hello").to_bytes() == b"$5\r\nhello\r\n"
        assert BulkReply("é").to_bytes() == b"$2\r\n\xc3\xa9\r\n"
        assert BulkReply(b"").to_bytes() == b"$0\r\n\r\n"
        assert BulkReply(None).to_bytes() == b"$-1\r\n"

    def test_multi_bulk(self):
        """Test arrays with mixed and nested elements."""
        reply = MultiBulkReply([b"a", 1, None, [b"b"]])

        assert reply.to_bytes() == (
            b"*4\r\n$1\r\na\r\n:1\r\n$-1\r\n*1\r\n$1\r\nb\r\n"
        )

    def test_nil_and_empty_multi_bulk(self):
        """Test nil array versus empty array."""
        assert MultiBulkReply(None).to_bytes() == b"*-1\r\n"
        assert MultiBulkReply([]).to_bytes() == b"*0\r\n"

    def test_helpers(self):
        """Test ok(), error() and unknown_command()."""
        assert ok().to_bytes() == b"+OK\r\n"
        assert error("boom").to_bytes() == b"-ERR boom\r\n"
        assert error("busy", code="BUSY").to_bytes() == b"-BUSY busy\r\n"
        assert unknown_command("FOO").to_bytes() == b"-ERR unknown command 'FOO'\r\n"

    def test_equality(self):
        """Test replies compare by type and encoding."""
        assert BulkReply("a") == BulkReply(b"a")
        assert StatusReply("OK") != BulkReply(b"OK")


class TestToReply:
    """Tests for converting plain values."""

    def test_scalars(self):
        """Test bytes, str, int and None."""
        assert to_reply(b"x") == BulkReply(b"x")
        assert to_reply("x") == BulkReply(b"x")
        assert to_reply(7) == IntegerReply(7)
        assert to_reply(None) == BulkReply(None)

    def test_bool_is_integer(self):
        """Test booleans become 1/0."""
        assert to_reply(True).to_bytes() == b":1\r\n"
        assert to_reply(False).to_bytes() == b":0\r\n"

    def test_dict_is_flattened(self):
        """Test dicts become key, value, key, value..."""
        assert to_reply({"a": b"1"}).to_bytes() == b"*2\r\n$1\r\na\r\n$1\r\n1\r\n"

    def test_tuple(self):
        """Test tuples become arrays."""
        assert to_reply((b"a", 2)).to_bytes() == b"*2\r\n$1\r\na\r\n:2\r\n"

    def test_reply_passthrough(self):
        """Test Reply instances are returned unchanged."""
        reply = StatusReply("PONG")
        assert to_reply(reply) is reply

    def test_unsupported_value(self):
        """Test values RESP cannot represent."""
        with pytest.raises(TypeError):
            to_reply(1.5)

    def test_nested_unsupported_value(self):
        """Test an unencodable element fails when the reply is built."""
        with pytest.raises(TypeError):
            MultiBulkReply([1.5])
        with pytest.raises(TypeError):
            to_reply([[b"a", 1.5]])

    def test_bulk_rejects_non_bytes(self):
        with pytest.raises(TypeError):
            BulkReply(5)


class TestWriteTo:
    """Tests for writing replies."""

    def test_write_returns_length(self):
        """Test write_to() reports bytes written."""
        buffer = io.BytesIO()

        written = BulkReply(b"hello").write_to(buffer)

        assert written == 11
        assert buffer.getvalue() == b"$5\r\nhello\r\n"

    def test_monitor_reply_without_subscription(self):
        """Test a detached monitor reply is a plain +OK."""
        buffer = io.BytesIO()
        MonitorReply().write_to(buffer)
        assert buffer.getvalue() == b"+OK\r\n"

    def test_monitor_reply_streams_until_closed(self):
        """Test monitor lines are streamed as status replies."""
        broadcast = MonitorBroadcast()
        reply = MonitorReply()
        reply.attach(broadcast.subscribe())

        broadcast.publish('1.000000 [0 c:1] "SET" "a" "1"')
        broadcast.publish('2.000000 [0 c:1] "GET" "a"')
        broadcast.close()

        buffer = io.BytesIO()
        reply.write_to(buffer)

        assert buffer.getvalue() == (
            b"+OK\r\n"
            b'+1.000000 [0 c:1] "SET" "a" "1"\r\n'
            b'+2.000000 [0 c:1] "GET" "a"\r\n'
        )
        assert len(broadcast) == 0
