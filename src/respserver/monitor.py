"""
=============================================================================
MONITOR BROADCAST
=============================================================================

Fans out one text line per executed command to every monitor subscriber,
the feed Redis shows for the MONITOR command.

    Session 1 ──┐                       ┌──► Subscription A (queue)
    Session 2 ──┼──► publish(line) ─────┼──► Subscription B (queue)
    Session 3 ──┘                       └──► Subscription C (queue)

=============================================================================
CONCURRENCY
=============================================================================

Many sessions publish at the same time while subscribers come and go.

- The subscriber set is only touched under one lock.
- publish() copies the set under the lock and delivers OUTSIDE it, so a
  slow subscriber never holds up subscribe()/unsubscribe().
- Delivery never blocks: each subscriber has a bounded queue and a line
  that does not fit is dropped (and counted). A stalled monitor client
  must not stall the sessions that execute commands.

=============================================================================
"""

import logging
import queue
import threading
import time
from typing import Iterator, List, Optional

from .protocol.request import Request


logger = logging.getLogger(__name__)


# Marks the end of a subscription's feed.
_CLOSED = object()


def format_monitor_line(request: Request, now: Optional[float] = None) -> str:
    """
    Describe an executed command.

        1700000000.123456 [0 127.0.0.1:50412] "SET" "a" "1"
    """
    timestamp = time.time() if now is None else now
    parts = [f'"{request.name}"']
    parts.extend(
        '"' + arg.decode("utf-8", errors="backslashreplace") + '"'
        for arg in request.args
    )
    return f"{timestamp:.6f} [0 {request.host}] " + " ".join(parts)


class Subscription:
    """
    One subscriber's feed.

    Iterate it to receive lines; iteration ends when the subscription is
    closed, either by the subscriber or by the broadcast shutting down.
    """

    def __init__(self, broadcast: "MonitorBroadcast", maxsize: int):
        self._broadcast = broadcast
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self._closed = threading.Event()
        self.dropped = 0
        self._dropped_lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def _deliver(self, line: str) -> bool:
        if self._closed.is_set():
            return False
        try:
            self._queue.put_nowait(line)
            return True
        except queue.Full:
            with self._dropped_lock:
                self.dropped += 1
            return False

    def _end(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        # Wake a blocked get(); make room for the marker if the queue is full.
        while True:
            try:
                self._queue.put_nowait(_CLOSED)
                return
            except queue.Full:
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    pass

    def get(self, timeout: Optional[float] = None) -> Optional[str]:
        """
        Next line, or None on timeout or once closed.
        """
        if self._closed.is_set() and self._queue.empty():
            return None
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        if item is _CLOSED:
            return None
        return item

    def __iter__(self) -> Iterator[str]:
        while True:
            item = self._queue.get()
            if item is _CLOSED:
                return
            yield item

    def close(self) -> None:
        """Stop receiving lines. Safe to call more than once."""
        self._broadcast.unsubscribe(self)


class MonitorBroadcast:
    """
    Lock-guarded registry of monitor subscriptions.

    Usage:
        monitor = MonitorBroadcast()
        sub = monitor.subscribe()
        monitor.publish('1700000000.000000 [0 127.0.0.1:5000] "PING"')
        sub.get(timeout=1.0)
        sub.close()
    """

    def __init__(self, queue_size: int = 1024):
        self.queue_size = queue_size
        self._subscribers: List[Subscription] = []
        self._lock = threading.Lock()
        self._closed = False

    def subscribe(self, maxsize: Optional[int] = None) -> Subscription:
        subscription = Subscription(self, maxsize or self.queue_size)
        with self._lock:
            if self._closed:
                # Late subscribers on a stopped server get an ended feed.
                subscription._end()
                return subscription
            self._subscribers.append(subscription)
            count = len(self._subscribers)
        logger.debug(f"Monitor subscribed (connected monitors: {count})")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)
        subscription._end()

    def publish(self, line: str) -> int:
        """
        Deliver a line to every subscriber.

        Returns:
            Number of subscribers that received it.
        """
        with self._lock:
            snapshot = list(self._subscribers)

        delivered = 0
        for subscription in snapshot:
            if subscription._deliver(line):
                delivered += 1
        return delivered

    def close(self) -> None:
        """End every subscription and refuse new ones."""
        with self._lock:
            self._closed = True
            snapshot = list(self._subscribers)
            self._subscribers.clear()

        for subscription in snapshot:
            subscription._end()

        if snapshot:
            logger.debug(f"Closed {len(snapshot)} monitor subscription(s)")

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)
