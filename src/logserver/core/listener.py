"""
=============================================================================
TCP LISTENER
=============================================================================

Owns the listening socket: create, bind, listen, accept, stop.

SOCKET LIFECYCLE (Server Side):
────────────────────────────────

    1. socket()    Create the TCP socket
    2. setsockopt  SO_REUSEADDR, TCP_NODELAY
    3. bind()      Reserve 0.0.0.0:9000, retried with back-off
    4. listen()    Start queueing connections (backlog 20)
    5. accept()    One new socket per client
    6. shutdown()  Wake a blocked accept() during server shutdown
    7. close()     Release the descriptor

=============================================================================
BIND RETRIES
=============================================================================

A server restarted right after a crash can find its port still held by
the previous process for a moment. Instead of failing at once, bind() is
retried with a linearly growing pause:

    attempt 1 ── fail ── sleep 1 * delay
    attempt 2 ── fail ── sleep 2 * delay
    ...
    attempt N ── fail ── ListenerError (fatal, exit before any session)

=============================================================================
WAKING A BLOCKED accept()
=============================================================================

accept() has a timeout of poll_interval, so the dispatcher re-checks the
shutdown flag regularly. On top of that, stop() calls shutdown() on the
listening socket, which makes a pending accept() fail right away on
Linux. The dispatcher treats that failure as the end of intake.

=============================================================================
"""

import socket
import time
import logging
from typing import Optional, Tuple

from ..config import ServerConfig
from .connection import Connection


logger = logging.getLogger(__name__)


class ListenerError(Exception):
    """The listening socket could not be set up. Fatal at startup."""


class Listener:
    """
    Listening TCP socket that produces Connection objects.

    Usage:
        listener = Listener(config)
        listener.open()
        conn = listener.accept()   # socket.timeout if nobody connected
        listener.stop()
        listener.close()
    """

    def __init__(self, config: ServerConfig):
        self.config = config
        self._socket: Optional[socket.socket] = None
        self._stopped = False

    @property
    def is_open(self) -> bool:
        return self._socket is not None

    @property
    def address(self) -> Tuple[str, int]:
        """Actual bound (host, port); differs from config when port=0."""
        if self._socket is None:
            return (self.config.host, self.config.port)
        host, port = self._socket.getsockname()[:2]
        return (host, port)

    def _create_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)

        # Avoids "Address already in use" while the old socket sits in TIME_WAIT
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

        # Replies go out as soon as they are written
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

        sock.settimeout(self.config.poll_interval)
        return sock

    def open(self) -> None:
        """
        Create, bind and listen.

        Raises:
            ListenerError: Socket creation, bind (after all retries) or
                           listen failed.
        """
        try:
            sock = self._create_socket()
        except OSError as e:
            raise ListenerError(f"Failed to create socket: {e}") from e

        address = (self.config.host, self.config.port)
        last_error: Optional[OSError] = None

        for attempt in range(1, self.config.bind_retries + 1):
            try:
                sock.bind(address)
                last_error = None
                break
            except OSError as e:
                last_error = e
                if attempt < self.config.bind_retries:
                    logger.warning(
                        f"Bind to {address[0]}:{address[1]} failed ({e}), "
                        f"retry {attempt}/{self.config.bind_retries - 1}"
                    )
                    time.sleep(attempt * self.config.bind_retry_delay)

        if last_error is not None:
            sock.close()
            raise ListenerError(
                f"Failed to bind to {address[0]}:{address[1]}: {last_error}"
            ) from last_error

        try:
            sock.listen(self.config.backlog)
        except OSError as e:
            sock.close()
            raise ListenerError(f"listen() failed: {e}") from e

        self._socket = sock
        self._stopped = False
        host, port = self.address
        logger.info(f"Server listening on {host}:{port}")

    def accept(self) -> Connection:
        """
        Wait up to poll_interval for the next client.

        Raises:
            socket.timeout: No client within poll_interval.
            InterruptedError: Interrupted by a signal; retry.
            OSError: The listener was stopped or is unusable.
        """
        if self._socket is None:
            raise OSError("Listener is not open")

        client_socket, client_address = self._socket.accept()
        logger.debug(f"Accepted connection from {client_address[0]}:{client_address[1]}")

        return Connection(
            socket=client_socket,
            address=client_address,
            buffer_size=self.config.buffer_size,
            poll_interval=self.config.poll_interval,
        )

    def stop(self) -> None:
        """Make any blocked or future accept() fail. Safe from any thread."""
        if self._stopped:
            return
        self._stopped = True
        sock = self._socket
        if sock is not None:
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass  # Not supported on every platform for listening sockets

    def close(self) -> None:
        """Close the listening socket."""
        if self._socket is not None:
            try:
                self._socket.close()
            except OSError:
                pass  # Already closed
            self._socket = None
            logger.info("Listener closed")
