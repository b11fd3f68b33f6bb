"""
=============================================================================
LOGSERVER - Concurrent Append-Log Socket Server
=============================================================================

A TCP server that keeps one shared, append-only log file. Clients send
newline-terminated packets; each packet is appended and the client gets
the entire log back. A timer thread adds a timestamp line every ten
seconds. SIGINT/SIGTERM stop intake, drain every session, then close
the file.

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    logserver/
    ├── __init__.py          # This file - package exports
    ├── __main__.py          # CLI entry point (python -m logserver)
    ├── server.py            # LogServer orchestrator, logging setup
    ├── shutdown.py          # ShutdownCoordinator, signal handling
    ├── config.py            # ServerConfig dataclass
    ├── daemon.py            # Double-fork daemonization
    └── core/
        ├── shared_log.py    # SharedLog, FileLog, MemoryLog
        ├── framing.py       # Newline packet buffer
        ├── connection.py    # Client socket wrapper
        ├── session.py       # Per-connection state machine
        ├── timer.py         # Timestamp timer thread
        ├── task_group.py    # Registry of session threads
        ├── listener.py      # Listening socket
        └── dispatcher.py    # Accept loop

=============================================================================
QUICK START
=============================================================================

    from logserver import LogServer, ServerConfig

    server = LogServer(ServerConfig(port=9000, log_path="/tmp/data.log"))
    server.run()    # Blocks until Ctrl+C

    $ printf 'hello\\n' | nc localhost 9000
    hello

=============================================================================
"""

__version__ = "1.0.0"

from .server import LogServer, create_server
from .config import ServerConfig

__all__ = ["LogServer", "ServerConfig", "create_server", "__version__"]
