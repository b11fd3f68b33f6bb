"""
=============================================================================
CORE SERVER COMPONENTS
=============================================================================

The moving parts of the log server, leaves first:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                          SHARED LOG                                  │
    │  ─────────────────────────────────────────────────────────────────  │
    │  • One append-only byte stream (file or memory)                     │
    │  • One lock: append and read_all never overlap                      │
    └─────────────────────────────────────────────────────────────────────┘
                 ▲                                       ▲
                 │ append + read_all                     │ append
    ┌────────────┴────────────────────────┐   ┌──────────┴──────────────┐
    │             SESSION                  │   │    TIMESTAMP TIMER      │
    │  ──────────────────────────────────  │   │  ─────────────────────  │
    │  • One thread per client             │   │  • One thread           │
    │  • Frames packets on newlines        │   │  • Every 10 seconds     │
    │  • Replies with the whole log        │   └─────────────────────────┘
    └────────────▲────────────────────────┘
                 │ spawn (TaskGroup)
    ┌────────────┴────────────────────────────────────────────────────────┐
    │                    DISPATCHER + LISTENER                             │
    │  ─────────────────────────────────────────────────────────────────  │
    │  • Accept loop in the main thread                                   │
    │  • Stops when the shutdown event is set or the listener fails       │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from .shared_log import SharedLog, FileLog, MemoryLog, LogError, LogWriteError, LogReadError
from .framing import PacketBuffer
from .connection import Connection
from .session import Session, SessionState
from .timer import TimestampTimer, format_timestamp
from .task_group import TaskGroup, TaskState
from .listener import Listener, ListenerError
from .dispatcher import ConnectionDispatcher

__all__ = [
    "SharedLog",            # Lock-guarded append/read resource
    "FileLog",              # SharedLog on disk
    "MemoryLog",            # SharedLog in memory
    "LogError",
    "LogWriteError",
    "LogReadError",
    "PacketBuffer",         # Newline framing
    "Connection",           # Client socket wrapper
    "Session",              # Per-connection state machine
    "SessionState",
    "TimestampTimer",       # Periodic timestamp writer
    "format_timestamp",
    "TaskGroup",            # Registry of session threads
    "TaskState",
    "Listener",             # Listening socket
    "ListenerError",
    "ConnectionDispatcher", # Accept loop
]
