"""
=============================================================================
SHUTDOWN COORDINATION
=============================================================================

One shared mark that tells the acceptor and every session to stop.

    RUNNING ──request()──► SHUTTING_DOWN ──mark_stopped()──► STOPPED
                 │
                 └── second request(): no-op (returns False),
                     or ShutdownMisuseError with strict=True

The transition is a compare-and-set under a lock, so two threads racing to
shut down (say a signal handler and a test) cannot both "win", and nothing
about the server state changes on the losing call.

Observers poll is_set() at the top of their loops. Shutdown is cooperative:
a thread blocked inside accept() or recv() sees the mark only when that
call returns.

=============================================================================
"""

import logging
import threading
from enum import Enum
from typing import Callable, List, Optional

from .errors import ShutdownMisuseError


logger = logging.getLogger(__name__)


class ServerState(Enum):
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


class ShutdownCoordinator:
    """Thread-safe one-way RUNNING → SHUTTING_DOWN → STOPPED state machine."""

    def __init__(self):
        self._lock = threading.Lock()
        self._state = ServerState.RUNNING
        self._requested = threading.Event()
        self._stopped = threading.Event()
        self._callbacks: List[Callable[[], None]] = []

    @property
    def state(self) -> ServerState:
        return self._state

    def is_set(self) -> bool:
        """True once shutdown has been requested."""
        return self._requested.is_set()

    def on_shutdown(self, callback: Callable[[], None]) -> None:
        """Run `callback` once, when shutdown is first requested."""
        self._callbacks.append(callback)

    def request(self, strict: bool = False) -> bool:
        """
        Request shutdown.

        Args:
            strict: Raise ShutdownMisuseError instead of returning False
                    when shutdown was already requested.

        Returns:
            True if this call started the shutdown, False if it was a repeat.
        """
        with self._lock:
            if self._state is not ServerState.RUNNING:
                if strict:
                    raise ShutdownMisuseError(
                        f"shutdown already requested (state: {self._state.value})"
                    )
                logger.debug("Shutdown already requested, ignoring")
                return False
            self._state = ServerState.SHUTTING_DOWN
            self._requested.set()

        logger.info("Server exiting...")

        for callback in self._callbacks:
            try:
                callback()
            except Exception as e:
                logger.exception(f"Shutdown callback failed: {e}")

        return True

    def mark_stopped(self) -> None:
        with self._lock:
            self._state = ServerState.STOPPED
            self._requested.set()
        self._stopped.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Wait until shutdown is requested. Returns False on timeout."""
        return self._requested.wait(timeout)

    def wait_stopped(self, timeout: Optional[float] = None) -> bool:
        """Wait until the server has fully stopped. Returns False on timeout."""
        return self._stopped.wait(timeout)
