"""
=============================================================================
SHUTDOWN COORDINATOR
=============================================================================

Owns the one shutdown event every blocking loop watches, translates
SIGINT/SIGTERM into it, and runs the drain sequence.

=============================================================================
SIGNAL HANDLING FOR GRACEFUL SHUTDOWN
=============================================================================

SIGINT (2):   Sent when user presses Ctrl+C
SIGTERM (15): Sent by docker stop, systemd stop, kill command

Without signal handling:
    Ctrl+C → Process killed immediately
    └─ A session may die halfway through a reply
    └─ Buffered partial packets are lost

With signal handling:
    Ctrl+C → Signal caught by handler → request_shutdown()
    └─ Stop accepting new connections
    └─ Stop the timestamp timer
    └─ Let every session finish its current packet and flush leftovers
    └─ Close the log file last

=============================================================================
THE ORDER MATTERS
=============================================================================

    request_shutdown()                     finish()
    ──────────────────                     ────────
    1. set shutdown event                  4. close task group (no spawns)
       ├── dispatcher loop exits           5. join timer thread
       ├── sessions leave RECEIVING        6. join every session thread
       └── timer wakes from its sleep      7. close listener socket
    2. stop timer                          8. close the shared log
    3. stop listener (wakes accept)        9. restore signal handlers

The shared log is released only after step 6, so no session and no
timer tick can touch a closed log.

=============================================================================
"""

import signal
import logging
import threading
from typing import Optional

from .core.listener import Listener
from .core.shared_log import SharedLog
from .core.task_group import TaskGroup
from .core.timer import TimestampTimer


logger = logging.getLogger(__name__)


class ShutdownCoordinator:
    """
    Supervises termination of the whole server.

    Usage:
        coordinator = ShutdownCoordinator(event, log, listener, sessions, timer)
        coordinator.install_signal_handlers()
        dispatcher.run()             # returns once the event is set
        coordinator.finish()         # drain and release
    """

    def __init__(
        self,
        shutdown_event: threading.Event,
        log: SharedLog,
        listener: Listener,
        sessions: TaskGroup,
        timer: Optional[TimestampTimer] = None,
        drain_timeout: Optional[float] = None,
    ):
        self.event = shutdown_event
        self.log = log
        self.listener = listener
        self.sessions = sessions
        self.timer = timer
        self.drain_timeout = drain_timeout

        self._original_handlers: dict = {}
        self._finished = False

    @property
    def shutdown_requested(self) -> bool:
        return self.event.is_set()

    # =========================================================================
    # SIGNALS
    # =========================================================================

    def install_signal_handlers(self) -> bool:
        """
        Route SIGINT and SIGTERM to request_shutdown().

        Python only allows this from the main thread; elsewhere (tests,
        embedding) the call is skipped and False is returned.
        """
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not in main thread, signal handlers not installed")
            return False

        def shutdown_handler(signum, frame):
            signal_name = signal.Signals(signum).name
            logger.info(f"Caught {signal_name}, exiting")
            self.request_shutdown(signal_name)

        # Put back by restore_signal_handlers()
        self._original_handlers[signal.SIGTERM] = signal.signal(signal.SIGTERM, shutdown_handler)
        self._original_handlers[signal.SIGINT] = signal.signal(signal.SIGINT, shutdown_handler)
        return True

    def restore_signal_handlers(self) -> None:
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()

    # =========================================================================
    # SHUTDOWN SEQUENCE
    # =========================================================================

    def request_shutdown(self, reason: str = "requested") -> None:
        """
        Stop intake and the timer. Idempotent and safe from signal
        handlers and other threads; does not wait for anything.
        """
        if self.event.is_set():
            return

        logger.info(f"Shutdown {reason}, no longer accepting connections")
        self.event.set()

        if self.timer is not None:
            self.timer.stop()

        self.listener.stop()

    def finish(self) -> bool:
        """
        Drain sessions and release the shared log.

        Call after the dispatcher has returned. Blocks until every
        session is DONE (or drain_timeout expires).

        Returns:
            True if every session drained, False on drain timeout.
        """
        if self._finished:
            return True
        self._finished = True

        self.request_shutdown("completing")
        self.sessions.close()

        if self.timer is not None and self.timer.is_alive():
            self.timer.join()

        active = self.sessions.active_count
        if active:
            logger.info(f"Waiting for {active} active session(s) to finish")

        drained = self.sessions.join(timeout=self.drain_timeout)
        if not drained:
            logger.warning(
                f"Drain timeout after {self.drain_timeout}s, still running: "
                f"{', '.join(self.sessions.active_names)}"
            )

        self.listener.close()
        self.log.close()
        self.restore_signal_handlers()

        stats = self.sessions.stats
        logger.info(
            f"Shutdown complete: {stats['spawned']} sessions served, "
            f"{stats['failed']} failed"
        )
        return drained
