"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Centralized configuration for the append-log socket server.

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── python -m logserver --port 9001                           │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── LOGSERVER_PORT=9001 python -m logserver                   │
    │                                                                      │
    │   3. Default values (in this dataclass)                            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
THE LOG FILE LIFECYCLE
=============================================================================

Three switches decide what happens to the data file across restarts:

    keep_open           One handle for the whole process (True) or a
                        fresh open() for every append/read (False).
    truncate_on_start   Start from an empty log instead of appending to
                        whatever a previous run left behind.
    delete_on_shutdown  Remove the file once every session has drained.

The defaults keep one handle open and never throw data away, so the log
survives a restart.

=============================================================================
"""

import os
from dataclasses import dataclass
from typing import Optional


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class ServerConfig:
    """
    Configuration for the log server.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    NETWORK SETTINGS
    - host, port, backlog, buffer_size, poll_interval, bind_retries

    LOG FILE
    - log_path, keep_open, truncate_on_start, delete_on_shutdown, fsync

    TIMESTAMP TIMER
    - timer_enabled, timer_interval

    SHUTDOWN
    - drain_timeout

    LOGGING
    - log_level, log_format, syslog

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "0.0.0.0"
    """
    The IP address to bind to.
    - "0.0.0.0" - All network interfaces (default, like INADDR_ANY)
    - "127.0.0.1" - Localhost only (tests, development)
    """

    port: int = 9000
    """
    The port number to listen on. 0 lets the OS pick a free port,
    which the tests rely on.
    """

    backlog: int = 20
    """Maximum number of queued, not yet accepted connections."""

    buffer_size: int = 1024
    """
    Size of a single recv() chunk in bytes.
    Packets larger than this simply take several reads.
    """

    poll_interval: float = 0.5
    """
    How often blocking accept() and recv() calls wake up to check for
    shutdown, in seconds.
    """

    bind_retries: int = 10
    """
    How many times bind() is attempted before giving up.
    A restarted server may find the port still held for a moment.
    """

    bind_retry_delay: float = 0.1
    """Base back-off between bind attempts; attempt N sleeps N * delay."""

    # ─────────────────────────────────────────────────────────────────────
    # LOG FILE
    # ─────────────────────────────────────────────────────────────────────

    log_path: str = "/var/tmp/aesdsocketdata"
    """Path of the shared append-only data file."""

    keep_open: bool = True
    """Hold one file handle for the process lifetime (False = reopen per call)."""

    truncate_on_start: bool = False
    """Empty the data file when the server starts."""

    delete_on_shutdown: bool = False
    """Remove the data file after the last session has drained."""

    fsync: bool = False
    """Call os.fsync() after every append, not just flush()."""

    # ─────────────────────────────────────────────────────────────────────
    # TIMESTAMP TIMER
    # ─────────────────────────────────────────────────────────────────────

    timer_enabled: bool = True
    """Append a timestamp line every timer_interval seconds."""

    timer_interval: float = 10.0
    """Seconds between timestamp lines."""

    # ─────────────────────────────────────────────────────────────────────
    # SHUTDOWN
    # ─────────────────────────────────────────────────────────────────────

    drain_timeout: Optional[float] = None
    """
    Maximum time to wait for active sessions at shutdown.
    None = wait until every session has finished.
    """

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    """Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)."""

    log_format: str = "text"
    """
    Log format: 'json' or 'text'.
    JSON is better for log aggregators, text for humans.
    """

    syslog: bool = False
    """Also send diagnostics to the local syslog daemon."""

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Create configuration from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        LOGSERVER_HOST              Bind address (default: 0.0.0.0)
        LOGSERVER_PORT              Port (default: 9000)
        LOGSERVER_LOG_PATH          Data file (default: /var/tmp/aesdsocketdata)
        LOGSERVER_KEEP_OPEN         1/0 (default: 1)
        LOGSERVER_TRUNCATE          1/0 (default: 0)
        LOGSERVER_DELETE_ON_EXIT    1/0 (default: 0)
        LOGSERVER_FSYNC             1/0 (default: 0)
        LOGSERVER_TIMER_INTERVAL    Seconds (default: 10)
        LOGSERVER_TIMER             1/0 (default: 1)
        LOGSERVER_LOG_LEVEL         Logging level (default: INFO)
        LOGSERVER_LOG_FORMAT        text/json (default: text)

        =====================================================================
        """
        return cls(
            host=os.getenv("LOGSERVER_HOST", "0.0.0.0"),
            port=int(os.getenv("LOGSERVER_PORT", "9000")),
            log_path=os.getenv("LOGSERVER_LOG_PATH", "/var/tmp/aesdsocketdata"),
            keep_open=_env_flag("LOGSERVER_KEEP_OPEN", True),
            truncate_on_start=_env_flag("LOGSERVER_TRUNCATE", False),
            delete_on_shutdown=_env_flag("LOGSERVER_DELETE_ON_EXIT", False),
            fsync=_env_flag("LOGSERVER_FSYNC", False),
            timer_interval=float(os.getenv("LOGSERVER_TIMER_INTERVAL", "10")),
            timer_enabled=_env_flag("LOGSERVER_TIMER", True),
            log_level=os.getenv("LOGSERVER_LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOGSERVER_LOG_FORMAT", "text"),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Called once at startup so a bad value fails before the socket is
        bound or the data file is touched.
        """
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.backlog < 1:
            raise ValueError("backlog must be >= 1")

        if self.buffer_size < 1:
            raise ValueError("buffer_size must be >= 1")

        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be > 0")

        if self.bind_retries < 1:
            raise ValueError("bind_retries must be >= 1")

        if self.timer_interval <= 0:
            raise ValueError("timer_interval must be > 0")

        if self.drain_timeout is not None and self.drain_timeout <= 0:
            raise ValueError("drain_timeout must be > 0")

        if not self.log_path:
            raise ValueError("log_path must not be empty")

        if self.log_format not in ("text", "json"):
            raise ValueError(f"Invalid log_format: {self.log_format}. Use 'text' or 'json'.")
