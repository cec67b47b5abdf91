"""
=============================================================================
SESSION WORKER POOL
=============================================================================

Client sessions run on a pool of worker threads instead of one fresh thread
per connection.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                          ThreadPool                                  │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Acceptor ──submit(serve_client, conn)──►  ┌──────────────────┐    │
    │                                             │   Task Queue     │    │
    │                                             │ [T1][T2][T3]...  │    │
    │                                             └────────┬─────────┘    │
    │                                                      │              │
    │                    ┌─────────────────┬───────────────┤              │
    │                    ▼                 ▼               ▼              │
    │              ┌──────────┐      ┌──────────┐    ┌──────────┐        │
    │              │ Worker 0 │      │ Worker 1 │    │ Worker N │        │
    │              │ session  │      │ session  │    │  (idle)  │        │
    │              └──────────┘      └──────────┘    └──────────┘        │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
SESSIONS ARE LONG
=============================================================================

A task here is a whole client session: it holds its worker until the
client disconnects or the server shuts down. Two consequences:

1. SCALING: the pool counts outstanding tasks (submitted, not finished)
   and adds workers until there is one per outstanding task, up to
   max_workers. Waiting for "all workers busy" is not enough, since a busy
   worker may stay busy for hours.

2. BACKPRESSURE: submit(block=False) returns False when the queue is
   full. The server answers that client with an error and closes it
   rather than stalling the accept loop.

=============================================================================
SHUTDOWN
=============================================================================

    1. Mark the pool as shutting down (submit() raises from now on)
    2. Queue one poison pill (None) per worker, behind any queued sessions
    3. Join workers against ONE overall deadline

Queued sessions still reach a worker before the pills do; they see the
shutdown mark and close their connection straight away.

=============================================================================
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional


logger = logging.getLogger(__name__)


class WorkerState(Enum):
    IDLE = "idle"        # Waiting for a task
    BUSY = "busy"        # Running a session
    STOPPED = "stopped"  # Thread exited


@dataclass
class Task:
    """A deferred call: run func(*args, **kwargs) on some worker."""

    func: Callable[..., Any]
    args: tuple = ()
    kwargs: Dict[str, Any] = field(default_factory=dict)
    submitted_at: float = field(default_factory=time.time)


class Worker(threading.Thread):
    """
    Pulls tasks from the shared queue until it receives a poison pill.

    A task that raises is logged and counted; the worker keeps going.
    """

    def __init__(
        self,
        task_queue: queue.Queue,
        worker_id: int,
        name_prefix: str = "Worker",
        on_task_done: Optional[Callable[[], None]] = None,
    ):
        super().__init__(name=f"{name_prefix}-{worker_id}", daemon=True)
        self.task_queue = task_queue
        self.on_task_done = on_task_done
        self.worker_id = worker_id
        self.state = WorkerState.IDLE
        self.tasks_completed = 0
        self.tasks_failed = 0

    def run(self):
        logger.debug(f"{self.name} started")

        while True:
            task = self.task_queue.get()
            try:
                if task is None:
                    break
                self._execute_task(task)
            finally:
                self.task_queue.task_done()

        self.state = WorkerState.STOPPED
        logger.debug(f"{self.name} stopped")

    def _execute_task(self, task: Task):
        self.state = WorkerState.BUSY
        start_time = time.time()
        waited = start_time - task.submitted_at

        try:
            task.func(*task.args, **task.kwargs)
            self.tasks_completed += 1
            logger.debug(
                f"{self.name} finished task in {time.time() - start_time:.3f}s "
                f"(queued {waited:.3f}s)"
            )
        except Exception as e:
            self.tasks_failed += 1
            logger.exception(
                f"{self.name} task failed after {time.time() - start_time:.3f}s: {e}"
            )
        finally:
            self.state = WorkerState.IDLE
            if self.on_task_done is not None:
                self.on_task_done()


class ThreadPool:
    """
    Bounded pool of worker threads.

    Usage:
        pool = ThreadPool(min_workers=4, max_workers=64, queue_size=128)
        pool.start()

        if not pool.submit(serve_client, args=(conn,)):
            reject(conn)            # queue full

        pool.shutdown(timeout=5.0)
    """

    def __init__(
        self,
        min_workers: int = 4,
        max_workers: int = 64,
        queue_size: int = 128,
        name_prefix: str = "Worker",
    ):
        if min_workers < 1 or max_workers < min_workers:
            raise ValueError("need 1 <= min_workers <= max_workers")

        self.min_workers = min_workers
        self.max_workers = max_workers
        self.max_queue_size = queue_size
        self.name_prefix = name_prefix

        self._task_queue: queue.Queue = queue.Queue(maxsize=queue_size)
        self._workers: List[Worker] = []
        self._lock = threading.Lock()  # Protects _workers and _outstanding
        self._started = False
        self._shutdown = False
        self._next_worker_id = 0
        self._outstanding = 0
        self.tasks_rejected = 0

    def start(self):
        with self._lock:
            if self._started:
                return
            logger.debug(f"Starting thread pool with {self.min_workers} workers")
            for _ in range(self.min_workers):
                self._add_worker_locked()
            self._started = True

    def _add_worker_locked(self) -> Worker:
        worker = Worker(
            self._task_queue,
            self._next_worker_id,
            self.name_prefix,
            on_task_done=self._task_finished,
        )
        self._next_worker_id += 1
        self._workers.append(worker)
        worker.start()
        return worker

    def submit(
        self,
        func: Callable[..., Any],
        args: tuple = (),
        kwargs: Optional[Dict[str, Any]] = None,
        block: bool = False,
        queue_timeout: Optional[float] = None,
    ) -> bool:
        """
        Queue a task.

        Returns:
            True if the task was queued, False if the queue was full.

        Raises:
            RuntimeError: If the pool is not started or is shutting down.
        """
        if not self._started:
            raise RuntimeError("Thread pool not started")

        if self._shutdown:
            raise RuntimeError("Thread pool is shutting down")

        task = Task(func=func, args=args, kwargs=kwargs or {})

        with self._lock:
            self._outstanding += 1

        try:
            self._task_queue.put(task, block=block, timeout=queue_timeout)
        except queue.Full:
            with self._lock:
                self._outstanding -= 1
                self.tasks_rejected += 1
            return False

        self._maybe_scale_up()
        return True

    def _task_finished(self):
        with self._lock:
            self._outstanding -= 1

    def _maybe_scale_up(self):
        """Add workers until there is one per outstanding task."""
        with self._lock:
            while len(self._workers) < self.max_workers and self._outstanding > len(self._workers):
                logger.debug(
                    f"Scaling up: {len(self._workers)} -> {len(self._workers) + 1} workers"
                )
                self._add_worker_locked()

    def shutdown(self, timeout: Optional[float] = None) -> bool:
        """
        Stop all workers.

        Args:
            timeout: Overall time allowed for running tasks to finish.
                     None = wait as long as it takes.

        Returns:
            True if every worker exited, False if the deadline passed first.
        """
        with self._lock:
            if not self._started or self._shutdown:
                return True
            self._shutdown = True
            workers = list(self._workers)

        logger.debug("Shutting down thread pool...")
        deadline = None if timeout is None else time.time() + timeout

        def remaining() -> Optional[float]:
            if deadline is None:
                return None
            return max(0.0, deadline - time.time())

        for _ in workers:
            try:
                self._task_queue.put(None, timeout=remaining())
            except queue.Full:
                break  # Out of time; workers are daemons

        for worker in workers:
            worker.join(timeout=remaining())

        alive = [w.name for w in workers if w.is_alive()]
        if alive:
            logger.warning(f"Thread pool shutdown timed out, still running: {', '.join(alive)}")
            return False

        logger.debug("Thread pool shutdown complete")
        return True

    # ─────────────────────────────────────────────────────────────────────
    # INTROSPECTION
    # ─────────────────────────────────────────────────────────────────────

    @property
    def worker_count(self) -> int:
        return sum(1 for w in self._workers if w.state != WorkerState.STOPPED)

    @property
    def busy_workers(self) -> int:
        return sum(1 for w in self._workers if w.state == WorkerState.BUSY)

    @property
    def idle_workers(self) -> int:
        return sum(1 for w in self._workers if w.state == WorkerState.IDLE)

    @property
    def queue_size(self) -> int:
        return self._task_queue.qsize()

    @property
    def stats(self) -> Dict[str, Any]:
        """Worker and task counts, for monitoring."""
        return {
            "workers": {
                "total": self.worker_count,
                "busy": self.busy_workers,
                "idle": self.idle_workers,
                "min": self.min_workers,
                "max": self.max_workers,
            },
            "queue": {
                "size": self.queue_size,
                "max_size": self.max_queue_size,
            },
            "tasks": {
                "completed": sum(w.tasks_completed for w in self._workers),
                "failed": sum(w.tasks_failed for w in self._workers),
                "outstanding": self._outstanding,
                "rejected": self.tasks_rejected,
            },
        }
