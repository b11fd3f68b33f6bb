"""
=============================================================================
SESSION TASK GROUP
=============================================================================

Tracks every running session thread so shutdown can wait for all of them
in one call.

=============================================================================
WHY NOT A BOUNDED THREAD POOL?
=============================================================================

A pool with N workers serves N connections; connection N+1 waits in the
queue until someone disconnects. Our clients stay connected as long as
they like and keep sending packets, so a pool would starve them:

    Pool of 4, five clients connected:

    Worker 1 ── client A (idle, connected)
    Worker 2 ── client B (idle, connected)
    Worker 3 ── client C (idle, connected)
    Worker 4 ── client D (idle, connected)
    Queue    ── client E   ← never served until A..D leave

So every session gets its own thread, and the group is the registry:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                          TaskGroup                                   │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   spawn(session.run)  ──►  SessionThread  ──►  registered           │
    │                                  │                                   │
    │                                  │ run() returns / raises            │
    │                                  ▼                                   │
    │                            deregistered (under the group lock)       │
    │                                                                      │
    │   join()  ──►  waits until the registry is empty                    │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Threads remove themselves, so the registry only ever holds live work and
join() needs no list walking: it waits on a condition that fires when
the count reaches zero.

=============================================================================
"""

import threading
import time
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional


logger = logging.getLogger(__name__)


class TaskState(Enum):
    """Session thread states, for monitoring."""
    PENDING = "pending"    # Created, not started
    RUNNING = "running"    # Executing
    FINISHED = "finished"  # Returned normally
    FAILED = "failed"      # Raised an exception


class SessionThread(threading.Thread):
    """
    Thread that runs one task and reports back to its group.

    Exceptions from the task are logged, never propagated: one broken
    session must not take the server down.
    """

    def __init__(self, group: "TaskGroup", task_id: int, name: str,
                 func: Callable[..., Any], args: tuple = (), kwargs: Optional[dict] = None):
        super().__init__(name=name, daemon=True)
        self.group = group
        self.task_id = task_id
        self.func = func
        self.args = args
        self.kwargs = kwargs or {}
        self.state = TaskState.PENDING
        self.started_at = 0.0

    def run(self):
        self.state = TaskState.RUNNING
        self.started_at = time.time()
        try:
            self.func(*self.args, **self.kwargs)
            self.state = TaskState.FINISHED
        except Exception as e:
            self.state = TaskState.FAILED
            logger.exception(f"{self.name} failed after {time.time() - self.started_at:.3f}s: {e}")
        finally:
            self.group._task_done(self)


class TaskGroup:
    """
    Registry of running session threads with bulk join.

    Usage:
        group = TaskGroup()
        group.spawn(session.run, name=f"Session-{conn.id}")
        ...
        group.close()                 # No more spawns
        group.join(timeout=30.0)      # Wait for the rest
    """

    def __init__(self, name: str = "Session"):
        self.name = name
        self._lock = threading.Lock()
        self._all_done = threading.Condition(self._lock)
        self._active: Dict[int, SessionThread] = {}
        self._closed = False
        self._next_id = 0

        # Metrics
        self.spawned = 0
        self.finished = 0
        self.failed = 0

    def spawn(self, func: Callable[..., Any], args: tuple = (),
              kwargs: Optional[dict] = None, name: Optional[str] = None) -> SessionThread:
        """
        Start func in a new registered thread.

        Raises:
            RuntimeError: The group is closed (shutdown in progress).
        """
        with self._lock:
            if self._closed:
                raise RuntimeError("Task group is closed")

            task_id = self._next_id
            self._next_id += 1
            thread = SessionThread(
                group=self,
                task_id=task_id,
                name=name or f"{self.name}-{task_id}",
                func=func,
                args=args,
                kwargs=kwargs,
            )
            # Registered before start() so a fast task cannot finish unseen
            self._active[task_id] = thread
            self.spawned += 1

        try:
            thread.start()
        except RuntimeError:
            # Could not create the OS thread
            with self._lock:
                self._active.pop(task_id, None)
                self._all_done.notify_all()
            raise

        return thread

    def _task_done(self, thread: SessionThread):
        with self._lock:
            self._active.pop(thread.task_id, None)
            if thread.state == TaskState.FAILED:
                self.failed += 1
            else:
                self.finished += 1
            if not self._active:
                self._all_done.notify_all()

    def close(self):
        """Refuse further spawns. Running tasks are not affected."""
        with self._lock:
            self._closed = True

    def join(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until every registered task has finished.

        Args:
            timeout: Maximum seconds to wait. None = wait forever.

        Returns:
            True if the group drained, False on timeout.
        """
        with self._lock:
            return self._all_done.wait_for(lambda: not self._active, timeout=timeout)

    # =========================================================================
    # MONITORING
    # =========================================================================

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._active)

    @property
    def active_names(self) -> List[str]:
        with self._lock:
            return [t.name for t in self._active.values()]

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def stats(self) -> dict:
        """Counts for logging and health output."""
        with self._lock:
            return {
                "active": len(self._active),
                "spawned": self.spawned,
                "finished": self.finished,
                "failed": self.failed,
            }
