"""
=============================================================================
LOG SERVER
=============================================================================

The orchestrator that wires the components together.

=============================================================================
ARCHITECTURE OVERVIEW
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    LOG SERVER ARCHITECTURE                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │                        ┌─────────────────┐                          │
    │                        │   LogServer     │                          │
    │                        │  (Orchestrator) │                          │
    │                        └────────┬────────┘                          │
    │                                 │                                    │
    │      ┌──────────────┬───────────┼────────────┬──────────────┐       │
    │      ▼              ▼           ▼            ▼              ▼       │
    │  ┌────────┐   ┌──────────┐ ┌─────────┐ ┌──────────┐ ┌───────────┐  │
    │  │Listener│   │Dispatcher│ │TaskGroup│ │  Timer   │ │ Shutdown  │  │
    │  │        │──►│          │►│Sessions │ │          │ │Coordinator│  │
    │  └────────┘   └──────────┘ └────┬────┘ └────┬─────┘ └───────────┘  │
    │                                 │           │                       │
    │                                 ▼           ▼                       │
    │                            ┌─────────────────────┐                  │
    │                            │     SharedLog       │                  │
    │                            └─────────────────────┘                  │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
LIFECYCLE
=============================================================================

    1. START
       └── Bind the listener (fatal on failure, exit 1)
       └── Open the shared log

    2. (OPTIONAL) DAEMONIZE
       └── Fork away from the terminal once the port is ours

    3. SERVE
       └── Timer thread starts
       └── Dispatcher accepts until the shutdown event is set

    4. SHUTDOWN
       └── Coordinator drains sessions and closes the log

=============================================================================
"""

import json
import logging
import logging.handlers
import os
import threading
from typing import Optional, Tuple

from .config import ServerConfig
from .core import (
    SharedLog, FileLog, Listener, ListenerError,
    TaskGroup, TimestampTimer, ConnectionDispatcher,
)
from .core.dispatcher import STOPPED_BY_SHUTDOWN
from .shutdown import ShutdownCoordinator


logger = logging.getLogger(__name__)


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
SYSLOG_IDENT = "aesdsocket"


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for log aggregators."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "time": self.formatTime(record, DATE_FORMAT),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


class LogServer:
    """
    Concurrent append-log TCP server.

    =========================================================================
    USAGE
    =========================================================================

        # Blocking, with signal handling (the CLI path)
        server = LogServer(ServerConfig(port=9000))
        exit_code = server.run()

        # Embedded / tests: serve in a background thread
        server = LogServer(ServerConfig(host="127.0.0.1", port=0))
        server.start()
        thread = threading.Thread(target=server.serve_forever)
        thread.start()
        ...
        server.shutdown()
        thread.join()

    =========================================================================
    """

    def __init__(self, config: Optional[ServerConfig] = None, log: Optional[SharedLog] = None):
        """
        Args:
            config: Server configuration. Uses defaults if not provided.
            log: Shared log to use instead of the configured file.
        """
        self.config = config or ServerConfig()
        self.config.validate()

        # The one cancellation token every loop watches
        self._shutdown_event = threading.Event()

        self._log = log
        self._listener = Listener(self.config)
        self._sessions = TaskGroup()
        self._timer: Optional[TimestampTimer] = None
        self._dispatcher: Optional[ConnectionDispatcher] = None
        self._coordinator: Optional[ShutdownCoordinator] = None

        self._running = False
        self._stopped = threading.Event()
        self.stop_reason: Optional[str] = None

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def address(self) -> Tuple[str, int]:
        """Bound (host, port); valid after start()."""
        return self._listener.address

    @property
    def log(self) -> Optional[SharedLog]:
        return self._log

    @property
    def sessions(self) -> TaskGroup:
        return self._sessions

    @property
    def timer(self) -> Optional[TimestampTimer]:
        return self._timer

    @property
    def is_running(self) -> bool:
        return self._running

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self) -> None:
        """
        Bind the listener and open the shared log. Does not serve yet.

        Raises:
            ListenerError: The socket could not be set up.
            OSError: The log file could not be opened.
        """
        self._listener.open()

        if self._log is None:
            try:
                self._log = FileLog(
                    self.config.log_path,
                    keep_open=self.config.keep_open,
                    truncate=self.config.truncate_on_start,
                    delete_on_close=self.config.delete_on_shutdown,
                    fsync=self.config.fsync,
                )
            except OSError:
                self._listener.close()
                raise

        if self.config.timer_enabled:
            self._timer = TimestampTimer(
                self._log,
                interval=self.config.timer_interval,
                stop_event=self._shutdown_event,
            )

        self._dispatcher = ConnectionDispatcher(
            self._listener, self._log, self._sessions, self._shutdown_event,
        )
        self._coordinator = ShutdownCoordinator(
            self._shutdown_event,
            self._log,
            self._listener,
            self._sessions,
            timer=self._timer,
            drain_timeout=self.config.drain_timeout,
        )

    def serve_forever(self) -> str:
        """
        Run the accept loop, then drain and release everything.

        Blocks until shutdown() is called (or a signal arrives) or the
        listener fails.

        Returns:
            Why dispatching stopped ("shutdown" or "listener-error").
        """
        if self._coordinator is None:
            self.start()

        self._running = True
        if self._timer is not None:
            self._timer.start()

        try:
            self.stop_reason = self._dispatcher.run()
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
            self.stop_reason = STOPPED_BY_SHUTDOWN
        finally:
            self._coordinator.finish()
            self._running = False
            self._stopped.set()

        return self.stop_reason

    def run(self, daemonize: bool = False) -> int:
        """
        Start the server (blocking) the way the CLI does.

        Args:
            daemonize: Detach from the terminal after binding.

        Returns:
            Process exit code: 0 after a requested shutdown, 1 if startup
            failed or the listener became unusable.
        """
        self._setup_logging()

        try:
            self.start()
        except ListenerError as e:
            logger.error(f"Startup failed: {e}")
            return 1
        except OSError as e:
            logger.error(f"Cannot open log file {self.config.log_path}: {e}")
            return 1

        if daemonize:
            from .daemon import daemonize as detach
            detach()

        host, port = self.address
        logger.info(f"Appending to {self.config.log_path}, serving on {host}:{port}")

        self._coordinator.install_signal_handlers()
        reason = self.serve_forever()
        return 0 if reason == STOPPED_BY_SHUTDOWN else 1

    def shutdown(self) -> None:
        """Ask the server to stop. Returns immediately; see wait_stopped()."""
        if self._coordinator is not None:
            self._coordinator.request_shutdown()
        else:
            self._shutdown_event.set()

    def wait_stopped(self, timeout: Optional[float] = None) -> bool:
        """Wait until serve_forever() has drained and released everything."""
        return self._stopped.wait(timeout)

    # =========================================================================
    # LOGGING
    # =========================================================================

    def _setup_logging(self):
        """Configure logging based on config."""
        level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=DATE_FORMAT)

        if self.config.log_format == "json":
            for handler in logging.getLogger().handlers:
                handler.setFormatter(JSONFormatter())

        package_logger = logging.getLogger("logserver")
        package_logger.setLevel(level)

        if self.config.syslog:
            try:
                address = "/dev/log" if os.path.exists("/dev/log") else ("localhost", 514)
                handler = logging.handlers.SysLogHandler(address=address)
            except OSError as e:
                logger.warning(f"Syslog unavailable: {e}")
            else:
                handler.ident = f"{SYSLOG_IDENT}[{os.getpid()}]: "
                handler.setFormatter(logging.Formatter("%(levelname)s %(message)s"))
                package_logger.addHandler(handler)


def create_server(config: Optional[ServerConfig] = None) -> LogServer:
    """
    Create a log server.

    Example:
        server = create_server(ServerConfig(port=9001))
        server.run()
    """
    return LogServer(config)
