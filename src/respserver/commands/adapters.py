"""
=============================================================================
COMMAND ADAPTERS
=============================================================================

An adapter bridges a generic Request (a name and a list of raw byte
arguments) to one handler operation's native Python call shape.

=============================================================================
HOW A SIGNATURE IS ADAPTED
=============================================================================

Adapters are built ONCE, when the server is constructed, by reading the
operation's type annotations:

    @command("SET")
    def set(self, key: str, value: bytes, ttl: Optional[int] = None) -> None:
                  ────────  ────────────  ────────────────────────────   ────
                  args[0]   args[1]       args[2] if present             +OK
                  decoded   raw           parsed as int

    Parameter annotation        Consumes                  Passed as
    ─────────────────────────   ───────────────────────   ─────────────────
    bytes                       one argument              raw bytes
    str                         one argument              UTF-8 text
    int / float                 one argument              parsed number
    Optional[X] = default       one argument, if present  X or the default
    List[bytes] / List[str]     all remaining arguments   list
    *args: bytes / *args: str   all remaining arguments   positional args
    Dict[str, bytes]            remaining key/value pairs dict
    Request                     nothing                   the Request itself

    Return annotation           Reply
    ─────────────────────────   ─────────────────────────────────────
    None                        +OK
    bytes / str / Optional[..]  bulk string (None → nil bulk)
    int / bool                  integer
    List / Tuple / Set / Dict   multi-bulk
    Reply subclass / Any        the value, converted by to_reply()

Anything else (a missing annotation, an unknown type, a list parameter that
is not last...) raises ConfigurationError immediately, naming the
operation. A command is never skipped silently.

At call time, argument count and conversion problems raise DispatchError,
which the session turns into "-ERR ..." without closing the connection.

=============================================================================
"""

import collections.abc
import inspect
import types
import typing
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple, Union, get_args, get_origin

from ..errors import ConfigurationError, DispatchError
from ..protocol.reply import Reply, ok, to_reply
from ..protocol.request import Request


# ─────────────────────────────────────────────────────────────────────────
# ARGUMENT CONVERTERS
# ─────────────────────────────────────────────────────────────────────────

def _as_bytes(value: bytes) -> bytes:
    return value


def _as_str(value: bytes) -> str:
    try:
        return value.decode("utf-8")
    except UnicodeDecodeError:
        raise DispatchError("argument is not valid UTF-8")


def _as_int(value: bytes) -> int:
    try:
        return int(value)
    except ValueError:
        raise DispatchError("value is not an integer or out of range")


def _as_float(value: bytes) -> float:
    try:
        return float(value)
    except ValueError:
        raise DispatchError("value is not a valid float")


_CONVERTERS = {
    bytes: _as_bytes,
    str: _as_str,
    int: _as_int,
    float: _as_float,
}

_SEQUENCE_ORIGINS = (list, collections.abc.Sequence, collections.abc.Iterable)
_MAPPING_ORIGINS = (dict, collections.abc.Mapping)
_MULTI_BULK_ORIGINS = (
    list, tuple, set, frozenset, dict,
    collections.abc.Sequence, collections.abc.Mapping,
    collections.abc.Set, collections.abc.Iterable,
)

_UNION_TYPES: Tuple[Any, ...] = (Union,)
if hasattr(types, "UnionType"):
    _UNION_TYPES += (types.UnionType,)


def _unwrap_optional(annotation: Any) -> Tuple[Any, bool]:
    """Optional[X] → (X, True); anything else → (annotation, False)."""
    if get_origin(annotation) in _UNION_TYPES:
        members = get_args(annotation)
        others = [m for m in members if m is not type(None)]
        if len(others) == 1 and len(members) == 2:
            return others[0], True
    return annotation, False


# ─────────────────────────────────────────────────────────────────────────
# PARAMETER BINDING
# ─────────────────────────────────────────────────────────────────────────

ONE = "one"
REST = "rest"
PAIRS = "pairs"
CONTEXT = "context"


@dataclass
class Parameter:
    """How one Python parameter is filled from a Request."""

    name: str
    kind: str
    convert: Callable[[bytes], Any] = _as_bytes
    optional: bool = False
    default: Any = None
    variadic: bool = False


def _describe(annotation: Any) -> str:
    return getattr(annotation, "__name__", None) or repr(annotation)


def _rest_converter(annotation: Any) -> Optional[Callable[[bytes], Any]]:
    """Element converter for List[X]; None if not a list annotation."""
    if annotation is list:
        return _as_bytes
    if get_origin(annotation) in _SEQUENCE_ORIGINS:
        args = get_args(annotation)
        if len(args) == 1:
            return _CONVERTERS.get(args[0])
    return None


def _is_pairs(annotation: Any) -> bool:
    if annotation is dict:
        return True
    return get_origin(annotation) in _MAPPING_ORIGINS and get_args(annotation) == (str, bytes)


def _build_parameter(
    command: str, param: inspect.Parameter, annotation: Any
) -> Optional[Parameter]:
    def fail(reason: str) -> ConfigurationError:
        return ConfigurationError(
            f"Cannot adapt command '{command}': parameter '{param.name}' {reason}"
        )

    if param.kind is inspect.Parameter.VAR_KEYWORD:
        raise fail("(**kwargs) is not supported")

    if param.kind is inspect.Parameter.KEYWORD_ONLY:
        # Nothing on the wire can fill it; fine only if it has a default.
        if param.default is inspect.Parameter.empty:
            raise fail("is keyword-only without a default")
        return None

    if annotation is inspect.Parameter.empty:
        raise fail("has no type annotation")

    if param.kind is inspect.Parameter.VAR_POSITIONAL:
        convert = _CONVERTERS.get(annotation)
        if convert is None:
            raise fail(f"has unsupported type *{_describe(annotation)}")
        return Parameter(param.name, REST, convert=convert, variadic=True)

    if isinstance(annotation, type) and issubclass(annotation, Request):
        return Parameter(param.name, CONTEXT)

    inner, optional = _unwrap_optional(annotation)
    has_default = param.default is not inspect.Parameter.empty

    convert = _CONVERTERS.get(inner)
    if convert is not None:
        if optional and not has_default:
            raise fail("is Optional but has no default")
        return Parameter(
            param.name,
            ONE,
            convert=convert,
            optional=has_default,
            default=param.default if has_default else None,
        )

    rest = _rest_converter(inner)
    if rest is not None:
        return Parameter(param.name, REST, convert=rest)

    if _is_pairs(inner):
        return Parameter(param.name, PAIRS)

    raise fail(f"has unsupported type {_describe(annotation)}")


def _check_order(command: str, parameters: List[Parameter]) -> None:
    wire = [p for p in parameters if p.kind != CONTEXT]
    for index, param in enumerate(wire):
        if param.kind in (REST, PAIRS) and index != len(wire) - 1:
            raise ConfigurationError(
                f"Cannot adapt command '{command}': parameter '{param.name}' "
                "takes the remaining arguments and must be the last one"
            )


# ─────────────────────────────────────────────────────────────────────────
# RETURN TYPE
# ─────────────────────────────────────────────────────────────────────────

def _returns_status(command: str, annotation: Any) -> bool:
    """
    Validate the return annotation.

    Returns:
        True if the operation returns nothing (reply is +OK).
    """
    if annotation is inspect.Signature.empty:
        raise ConfigurationError(
            f"Cannot adapt command '{command}': missing return annotation"
        )

    if annotation is None or annotation is type(None):
        return True

    if annotation is Any:
        return False

    inner, _ = _unwrap_optional(annotation)

    if inner in (bytes, str, int, bool):
        return False

    if isinstance(inner, type) and issubclass(inner, Reply):
        return False

    if inner in _MULTI_BULK_ORIGINS or get_origin(inner) in _MULTI_BULK_ORIGINS:
        return False

    raise ConfigurationError(
        f"Cannot adapt command '{command}': unsupported return type {_describe(annotation)}"
    )


# =============================================================================
# THE ADAPTER
# =============================================================================

class CommandAdapter:
    """
    Callable that runs one command: Request in, Reply out.

    Raises:
        DispatchError: Wrong argument count or an unconvertible argument.
        Anything the operation itself raises.
    """

    def __init__(
        self,
        name: str,
        func: Callable[..., Any],
        parameters: List[Parameter],
        returns_status: bool,
    ):
        self.name = name
        self.func = func
        self.parameters = parameters
        self.returns_status = returns_status

    def __repr__(self) -> str:
        target = getattr(self.func, "__qualname__", repr(self.func))
        return f"CommandAdapter({self.name!r} -> {target})"

    def _wrong_arity(self) -> DispatchError:
        return DispatchError(f"wrong number of arguments for '{self.name}' command")

    def bind(self, request: Request) -> List[Any]:
        """Convert the request arguments into call arguments."""
        args = request.args
        values: List[Any] = []
        index = 0

        for param in self.parameters:
            if param.kind == CONTEXT:
                values.append(request)

            elif param.kind == ONE:
                if index < len(args):
                    values.append(param.convert(args[index]))
                    index += 1
                elif param.optional:
                    values.append(param.default)
                else:
                    raise self._wrong_arity()

            elif param.kind == REST:
                converted = [param.convert(arg) for arg in args[index:]]
                index = len(args)
                if param.variadic:
                    values.extend(converted)
                else:
                    values.append(converted)

            elif param.kind == PAIRS:
                values.append(request.get_map(index))
                index = len(args)

        if index < len(args):
            raise self._wrong_arity()

        return values

    def __call__(self, request: Request) -> Reply:
        result = self.func(*self.bind(request))
        if self.returns_status:
            return ok()
        return to_reply(result)


def build_adapter(name: str, func: Callable[..., Any]) -> CommandAdapter:
    """
    Build the adapter for one operation.

    Raises:
        ConfigurationError: If the signature cannot be adapted.
    """
    try:
        signature = inspect.signature(func)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Cannot adapt command '{name}': {e}") from e

    try:
        hints = typing.get_type_hints(func)
    except Exception as e:
        raise ConfigurationError(
            f"Cannot adapt command '{name}': unresolvable annotations ({e})"
        ) from e

    parameters: List[Parameter] = []
    for param in signature.parameters.values():
        annotation = hints.get(param.name, param.annotation)
        built = _build_parameter(name, param, annotation)
        if built is not None:
            parameters.append(built)

    _check_order(name, parameters)

    return_annotation = hints.get("return", signature.return_annotation)
    returns_status = _returns_status(name, return_annotation)

    return CommandAdapter(name, func, parameters, returns_status)
