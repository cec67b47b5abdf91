"""
Bundled handlers.

- DefaultHandler: no commands; used when none is configured
- MemoryHandler: Redis-like in-memory store, the example application
"""

from .default import DefaultHandler
from .memory import MemoryHandler

__all__ = ["DefaultHandler", "MemoryHandler"]
