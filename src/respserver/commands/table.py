"""
=============================================================================
COMMAND TABLE
=============================================================================

Immutable name → adapter mapping, built once at server construction.

    handler ──discover──► @command operations ──┐
                                                ├──► CommandTable (read-only)
    config.commands ────────────────────────────┘
                        (applied last, wins)

After construction the table never changes, so every session reads it
without locking.

=============================================================================
"""

import logging
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Tuple

from ..errors import ConfigurationError
from .adapters import CommandAdapter, build_adapter
from .decorators import command_name


logger = logging.getLogger(__name__)


def discover_commands(handler: Any) -> List[Tuple[str, Callable[..., Any]]]:
    """
    Find the @command-marked operations on a handler.

    Public attributes are visited in lexicographic order; private ones
    (leading underscore) are never commands.
    """
    found = []
    for attr in sorted(dir(handler)):
        if attr.startswith("_"):
            continue
        try:
            member = getattr(handler, attr)
        except AttributeError:
            continue
        if not callable(member):
            continue
        name = command_name(member)
        if name is not None:
            found.append((name, member))
    return found


class CommandTable(Mapping[str, CommandAdapter]):
    """
    Read-only command registry.

    Usage:
        table = CommandTable.build(MyHandler())
        reply = table["GET"](request)
    """

    def __init__(self, adapters: Mapping[str, CommandAdapter]):
        self._adapters = MappingProxyType(dict(adapters))

    @classmethod
    def build(
        cls,
        handler: Any = None,
        commands: Optional[Mapping[str, Callable[..., Any]]] = None,
    ) -> "CommandTable":
        """
        Build the table from a handler and explicit registrations.

        When two operations claim the same name the one registered last
        wins: handler operations in lexicographic attribute order, then
        `commands` in insertion order.

        Raises:
            ConfigurationError: If any operation cannot be adapted.
        """
        adapters: Dict[str, CommandAdapter] = {}

        entries: List[Tuple[str, Callable[..., Any]]] = []
        if handler is not None:
            entries.extend(discover_commands(handler))
        if commands:
            entries.extend(commands.items())

        for name, func in entries:
            if not isinstance(name, str) or not name:
                raise ConfigurationError(f"Invalid command name: {name!r}")
            if name in adapters:
                logger.debug(f"Command {name} registered again, last one wins")
            adapters[name] = build_adapter(name, func)

        logger.debug(f"Registered {len(adapters)} command(s): {', '.join(sorted(adapters))}")
        return cls(adapters)

    def names(self) -> List[str]:
        return sorted(self._adapters)

    def __getitem__(self, name: str) -> CommandAdapter:
        return self._adapters[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._adapters)

    def __len__(self) -> int:
        return len(self._adapters)

    def __repr__(self) -> str:
        return f"CommandTable({self.names()})"
