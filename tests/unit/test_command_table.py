"""
Unit tests for command discovery and adapters.
"""

from typing import Dict, List, Optional

import pytest

from respserver.commands import CommandTable, build_adapter, command, discover_commands
from respserver.errors import ConfigurationError, DispatchError
from respserver.protocol import Request
from respserver.protocol.reply import IntegerReply, StatusReply


def run(table: CommandTable, name: str, *args) -> bytes:
    """Run a command through the table and return the encoded reply."""
    request = Request(name, [a.encode() if isinstance(a, str) else a for a in args], host="test:1")
    return table[name](request).to_bytes()


class Store:
    def __init__(self):
        self.data = {}

    @command("GET")
    def get(self, key: bytes) -> Optional[bytes]:
        return self.data.get(key)

    @command("SET")
    def set(self, key: bytes, value: bytes) -> None:
        self.data[key] = value

    @command
    def PING(self) -> str:
        return "PONG"

    def helper(self, key: bytes) -> bytes:
        return key

    @command("HIDDEN")
    def _private(self) -> None:
        pass


class Shapes:
    """One command per supported parameter/return shape."""

    @command("UPPER")
    def upper(self, text: str) -> str:
        return text.upper()

    @command("ADD")
    def add(self, a: int, b: int) -> int:
        return a + b

    @command("GREET")
    def greet(self, name: str, greeting: Optional[str] = "hello") -> str:
        return f"{greeting} {name}"

    @command("COUNT")
    def count(self, items: List[bytes]) -> int:
        return len(items)

    @command("JOIN")
    def join(self, separator: str, *parts: str) -> str:
        return separator.join(parts)

    @command("PAIRS")
    def pairs(self, key: bytes, fields: Dict[str, bytes]) -> List[str]:
        return sorted(fields)

    @command("WHO")
    def who(self, request: Request) -> str:
        return request.host

    @command("FLAG")
    def flag(self, value: int) -> bool:
        return value > 0

    @command("MAP")
    def as_map(self) -> Dict[str, int]:
        return {"a": 1}

    @command("FAIL")
    def fail(self) -> None:
        raise DispatchError("key is busy", code="BUSY")


class TestDiscovery:
    """Tests for finding @command operations."""

    def test_only_marked_operations_are_commands(self):
        """Test unmarked helpers and private methods are skipped."""
        table = CommandTable.build(Store())

        assert table.names() == ["GET", "PING", "SET"]
        assert "helper" not in table
        assert "HIDDEN" not in table

    def test_bare_decorator_uses_attribute_name(self):
        """Test @command without a name."""
        assert run(CommandTable.build(Store()), "PING") == b"$4\r\nPONG\r\n"

    def test_names_are_case_sensitive(self):
        """Test lookups use the exact name."""
        table = CommandTable.build(Store())

        assert "GET" in table
        assert "get" not in table

    def test_discovery_order_is_lexicographic(self):
        """Test discover_commands() visits attributes alphabetically."""
        names = [name for name, _ in discover_commands(Shapes())]
        attrs = ["add", "as_map", "count", "fail", "flag", "greet", "join", "pairs", "upper", "who"]
        expected = ["ADD", "MAP", "COUNT", "FAIL", "FLAG", "GREET", "JOIN", "PAIRS", "UPPER", "WHO"]

        assert sorted(attrs) == attrs
        assert names == expected

    def test_last_registration_wins(self):
        """Test two operations claiming one name."""

        class Clash:
            @command("X")
            def a_first(self) -> str:
                return "first"

            @command("X")
            def b_second(self) -> str:
                return "second"

        assert run(CommandTable.build(Clash()), "X") == b"$6\r\nsecond\r\n"

    def test_explicit_commands_override_handler(self):
        """Test explicit registrations are applied after discovery."""

        def get(key: bytes) -> str:
            return "override"

        table = CommandTable.build(Store(), commands={"GET": get})

        assert run(table, "GET", "k") == b"$8\r\noverride\r\n"
        assert "SET" in table

    def test_commands_without_handler(self):
        """Test building from explicit registrations only."""

        def echo(message: bytes) -> bytes:
            return message

        table = CommandTable.build(None, commands={"ECHO": echo})

        assert list(table) == ["ECHO"]

    def test_table_is_read_only(self):
        """Test the table cannot be modified after construction."""
        table = CommandTable.build(Store())

        with pytest.raises(TypeError):
            table["NEW"] = table["GET"]
        with pytest.raises(TypeError):
            table._adapters["NEW"] = table["GET"]


class TestAdapters:
    """Tests for argument binding and reply conversion."""

    @pytest.fixture
    def table(self) -> CommandTable:
        return CommandTable.build(Shapes())

    def test_round_trip_through_store(self):
        """Test SET then GET through adapters."""
        table = CommandTable.build(Store())

        assert run(table, "SET", "a", "1") == b"+OK\r\n"
        assert run(table, "GET", "a") == b"$1\r\n1\r\n"
        assert run(table, "GET", "missing") == b"$-1\r\n"

    def test_str_and_int_parameters(self, table):
        """Test decoded text and parsed integers."""
        assert run(table, "UPPER", "abc") == b"$3\r\nABC\r\n"
        assert run(table, "ADD", "2", "-5") == b":-3\r\n"

    def test_optional_parameter(self, table):
        """Test optional trailing argument."""
        assert run(table, "GREET", "bob") == b"$9\r\nhello bob\r\n"
        assert run(table, "GREET", "bob", "hi") == b"$6\r\nhi bob\r\n"

    def test_list_parameter(self, table):
        """Test List[bytes] takes all remaining arguments."""
        assert run(table, "COUNT") == b":0\r\n"
        assert run(table, "COUNT", "a", "b", "c") == b":3\r\n"

    def test_varargs_parameter(self, table):
        """Test *args after a positional parameter."""
        assert run(table, "JOIN", "-", "a", "b") == b"$3\r\na-b\r\n"

    def test_pairs_parameter(self, table):
        """Test Dict[str, bytes] takes key/value pairs."""
        assert run(table, "PAIRS", "h", "f2", "v", "f1", "v") == (
            b"*2\r\n$2\r\nf1\r\n$2\r\nf2\r\n"
        )

    def test_request_parameter(self, table):
        """Test a Request parameter receives the request itself."""
        assert run(table, "WHO") == b"$6\r\ntest:1\r\n"

    def test_bool_and_dict_returns(self, table):
        """Test bool and dict return values."""
        assert run(table, "FLAG", "3") == b":1\r\n"
        assert run(table, "FLAG", "0") == b":0\r\n"
        assert run(table, "MAP") == b"*2\r\n$1\r\na\r\n:1\r\n"

    def test_none_return_is_ok(self):
        """Test operations returning None reply +OK."""
        adapter = build_adapter("SET", Store().set)
        assert adapter(Request("SET", [b"k", b"v"])) == StatusReply("OK")

    @pytest.mark.parametrize("name,args", [
        ("ADD", ["1"]),
        ("ADD", ["1", "2", "3"]),
        ("UPPER", []),
        ("WHO", ["extra"]),
        ("GREET", ["a", "b", "c"]),
    ])
    def test_wrong_arity(self, table, name, args):
        """Test too few and too many arguments."""
        with pytest.raises(DispatchError, match=f"wrong number of arguments for '{name}' command"):
            run(table, name, *args)

    def test_invalid_integer(self, table):
        """Test non-numeric argument for an int parameter."""
        with pytest.raises(DispatchError, match="value is not an integer or out of range"):
            run(table, "ADD", "one", "2")

    def test_invalid_utf8(self, table):
        """Test non-UTF-8 argument for a str parameter."""
        with pytest.raises(DispatchError, match="not valid UTF-8"):
            run(table, "UPPER", b"\xff")

    def test_uneven_pairs(self, table):
        """Test odd number of key/value arguments."""
        with pytest.raises(DispatchError, match="uneven number of key value pairs"):
            run(table, "PAIRS", "h", "f1")

    def test_handler_dispatch_error_propagates(self, table):
        """Test DispatchError raised by the operation itself."""
        with pytest.raises(DispatchError) as exc_info:
            run(table, "FAIL")

        assert exc_info.value.reply_line == "BUSY key is busy"

    def test_plain_function_adapter(self):
        """Test adapting a module-level function."""

        def incr(value: int) -> int:
            return value + 1

        assert build_adapter("INCR", incr)(Request("INCR", [b"41"])) == IntegerReply(42)


class TestUnadaptableSignatures:
    """Tests for failing fast on signatures that cannot be adapted."""

    def test_missing_parameter_annotation(self):
        def op(key) -> None:
            pass

        with pytest.raises(ConfigurationError, match="'OP'.*'key' has no type annotation"):
            build_adapter("OP", op)

    def test_missing_return_annotation(self):
        def op(key: bytes):
            pass

        with pytest.raises(ConfigurationError, match="'OP': missing return annotation"):
            build_adapter("OP", op)

    def test_unsupported_parameter_type(self):
        def op(items: set) -> None:
            pass

        with pytest.raises(ConfigurationError, match="unsupported type"):
            build_adapter("OP", op)

    def test_unsupported_return_type(self):
        def op() -> float:
            return 1.0

        with pytest.raises(ConfigurationError, match="unsupported return type"):
            build_adapter("OP", op)

    def test_rest_parameter_not_last(self):
        def op(items: List[bytes], key: bytes) -> None:
            pass

        with pytest.raises(ConfigurationError, match="must be the last one"):
            build_adapter("OP", op)

    def test_keyword_only_without_default(self):
        def op(a: Optional[int] = None, *, c: int) -> None:
            pass

        with pytest.raises(ConfigurationError, match="keyword-only without a default"):
            build_adapter("OP", op)

    def test_optional_without_default(self):
        def op(a: Optional[int]) -> None:
            pass

        with pytest.raises(ConfigurationError, match="Optional but has no default"):
            build_adapter("OP", op)

    def test_var_keyword(self):
        def op(**options: bytes) -> None:
            pass

        with pytest.raises(ConfigurationError, match=r"\*\*kwargs"):
            build_adapter("OP", op)

    def test_builtin_without_signature(self):
        with pytest.raises(ConfigurationError, match="'LEN'"):
            CommandTable.build(None, commands={"LEN": len})

    def test_bad_handler_method_fails_table_build(self):
        """Test one bad operation aborts the whole table."""

        class Broken:
            @command("GOOD")
            def good(self) -> None:
                pass

            @command("BAD")
            def bad(self, value: complex) -> None:
                pass

        with pytest.raises(ConfigurationError, match="'BAD'"):
            CommandTable.build(Broken())
