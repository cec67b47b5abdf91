"""
Command registration and dispatch tables.
"""

from .adapters import CommandAdapter, build_adapter
from .decorators import command, command_name
from .table import CommandTable, discover_commands

__all__ = [
    "command",
    "command_name",
    "CommandAdapter",
    "CommandTable",
    "build_adapter",
    "discover_commands",
]
