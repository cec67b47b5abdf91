"""
The @command marker.

Only operations marked with @command become protocol commands; every other
public method on a handler is a helper the server never exposes.

    class Store:
        @command("GET")
        def get(self, key: bytes) -> Optional[bytes]: ...

        @command                   # wire name is the method name: "PING"
        def PING(self) -> str: ...

        def normalize(self, key):  # not a command
            ...
"""

from typing import Any, Callable, Optional, Union


COMMAND_MARKER = "_resp_command"


def command(name: Union[str, Callable[..., Any], None] = None):
    """
    Mark a function or method as a protocol command.

    Usable bare (@command) or with an explicit wire name (@command("GET")).
    Names are case-sensitive.
    """
    if callable(name):
        func = name
        setattr(func, COMMAND_MARKER, func.__name__)
        return func

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        setattr(func, COMMAND_MARKER, name or func.__name__)
        return func

    return decorator


def command_name(func: Any) -> Optional[str]:
    """Wire name of a marked callable, or None if it is not a command."""
    name = getattr(func, COMMAND_MARKER, None)
    return name if isinstance(name, str) else None
