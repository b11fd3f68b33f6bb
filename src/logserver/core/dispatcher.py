"""
=============================================================================
CONNECTION DISPATCHER
=============================================================================

The accept loop. Runs in the server's main thread and hands every new
connection to its own Session thread.

    ┌─────────────────────────────────────────────────────────────────┐
    │                     Accept Loop Flow                             │
    ├─────────────────────────────────────────────────────────────────┤
    │                                                                  │
    │   while not shutdown:                                            │
    │       │                                                          │
    │       ├──► listener.accept()                                     │
    │       │       ├── timeout           → re-check shutdown          │
    │       │       ├── InterruptedError  → retry                      │
    │       │       └── other OSError     → stop dispatching           │
    │       │                                                          │
    │       ├──► Session(conn, shared_log, shutdown_event)             │
    │       │                                                          │
    │       └──► task_group.spawn(session.run)                         │
    │               └── does NOT wait; next accept() right away        │
    │                                                                  │
    └─────────────────────────────────────────────────────────────────┘

Stopping the loop never touches sessions that are already running;
draining them is the ShutdownCoordinator's job.
"""

import socket
import logging
import threading
from typing import Callable

from .connection import Connection
from .listener import Listener
from .session import Session
from .shared_log import SharedLog
from .task_group import TaskGroup


logger = logging.getLogger(__name__)


STOPPED_BY_SHUTDOWN = "shutdown"
STOPPED_BY_LISTENER_ERROR = "listener-error"


class ConnectionDispatcher:
    """Accepts connections and spawns one Session per connection."""

    def __init__(
        self,
        listener: Listener,
        log: SharedLog,
        sessions: TaskGroup,
        shutdown_event: threading.Event,
        session_factory: Callable[[Connection, SharedLog, threading.Event], Session] = Session,
    ):
        self.listener = listener
        self.log = log
        self.sessions = sessions
        self._shutdown_event = shutdown_event
        self._session_factory = session_factory

        self.connections_accepted = 0

    def run(self) -> str:
        """
        Accept until shutdown or a fatal listener error.

        Returns:
            STOPPED_BY_SHUTDOWN or STOPPED_BY_LISTENER_ERROR.
        """
        while not self._shutdown_event.is_set():
            try:
                conn = self.listener.accept()
            except InterruptedError:
                continue
            except socket.timeout:
                continue
            except OSError as e:
                if self._shutdown_event.is_set():
                    logger.debug(f"Accept interrupted by shutdown: {e}")
                    return STOPPED_BY_SHUTDOWN
                logger.error(f"Accept error, no longer accepting connections: {e}")
                return STOPPED_BY_LISTENER_ERROR

            self._dispatch(conn)

        return STOPPED_BY_SHUTDOWN

    def _dispatch(self, conn: Connection) -> None:
        session = self._session_factory(conn, self.log, self._shutdown_event)
        try:
            self.sessions.spawn(session.run, name=f"Session-{conn.id}")
        except RuntimeError as e:
            logger.error(f"[{conn.id}] Could not start session: {e}")
            conn.close()
            return

        self.connections_accepted += 1
