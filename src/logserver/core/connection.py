"""
=============================================================================
CONNECTION
=============================================================================

Wraps an accepted client socket with the three operations a session
needs: receive a chunk, send a whole reply, close both directions.

=============================================================================
RECEIVING WITH A POLL INTERVAL
=============================================================================

A plain blocking recv() can wait forever for a silent client, and then
the server could never shut down. So the socket gets a short timeout:

    while True:
        try:
            chunk = conn.receive()     # at most poll_interval seconds
        except socket.timeout:
            if shutting_down:          # checked every poll_interval
                break
            continue

recv() results:

    b"..."            data, append to the packet buffer
    b""               peer closed its side (normal end of session)
    socket.timeout    nothing yet, caller re-checks shutdown
    InterruptedError  transient, caller retries
    other OSError     connection is broken

=============================================================================
SENDING A REPLY
=============================================================================

send() may accept fewer bytes than requested when the kernel buffer is
full. send_all() loops, checking every return value against what is
left, until the whole reply is out:

    reply = 5000 bytes
    send(reply[0:])     → 2048    remaining 2952
    send(reply[2048:])  → 2048    remaining  904
    send(reply[4096:])  →  904    done

A send() that returns 0 means the peer is gone.

=============================================================================
"""

import socket
import time
import logging
from dataclasses import dataclass, field
from typing import Optional
import uuid


logger = logging.getLogger(__name__)


@dataclass
class Connection:
    """
    Represents a client connection.

    Attributes:
        socket: The client socket.
        address: Client's (ip, port) tuple.
        id: Unique connection identifier (for logging).
        created_at: Timestamp when connection was accepted.
        last_activity: Timestamp of last activity.
        bytes_received: Total bytes read from the client.
        bytes_sent: Total bytes written to the client.
    """

    # Required parameters
    socket: socket.socket
    address: tuple

    # Generated/default parameters
    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    bytes_received: int = 0
    bytes_sent: int = 0

    # Configuration (passed from ServerConfig)
    buffer_size: int = 1024             # Max bytes per recv()
    poll_interval: float = 0.5          # recv() wakes up this often
    send_timeout: Optional[float] = 30.0  # Give up on a client that stops reading

    _closed: bool = field(default=False, repr=False)

    def __post_init__(self):
        self.socket.setblocking(True)
        self.socket.settimeout(self.poll_interval)

    @property
    def client_ip(self) -> str:
        """Get the client IP address."""
        return self.address[0]

    @property
    def client_port(self) -> int:
        """Get the client port."""
        return self.address[1]

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def age(self) -> float:
        """Get connection age in seconds."""
        return time.time() - self.created_at

    # =========================================================================
    # READING
    # =========================================================================

    def receive(self) -> bytes:
        """
        Read at most buffer_size bytes.

        Returns:
            Received bytes, or b"" if the peer closed the connection.

        Raises:
            socket.timeout: Nothing arrived within poll_interval.
            InterruptedError: The call was interrupted; retry it.
            OSError: The connection is broken.
        """
        self.socket.settimeout(self.poll_interval)
        data = self.socket.recv(self.buffer_size)
        if data:
            self.bytes_received += len(data)
            self.last_activity = time.time()
        return data

    # =========================================================================
    # WRITING
    # =========================================================================

    def send_all(self, data: bytes) -> None:
        """
        Send every byte of data, in as many send() calls as needed.

        Raises:
            ConnectionError: send() accepted nothing (peer is gone).
            OSError: Any other socket failure, including send_timeout.
        """
        self.socket.settimeout(self.send_timeout)
        view = memoryview(data)
        total = 0

        try:
            while total < len(data):
                try:
                    sent = self.socket.send(view[total:])
                except InterruptedError:
                    continue

                if sent == 0:
                    raise ConnectionError(
                        f"Peer stopped accepting data after {total} of {len(data)} bytes"
                    )
                total += sent
        finally:
            self.bytes_sent += total
            self.last_activity = time.time()
            view.release()

    # =========================================================================
    # CLOSING
    # =========================================================================

    def close(self):
        """
        Shut the connection down in both directions and close it.

        Idempotent; errors from a peer that already vanished are ignored.
        """
        if self._closed:
            return
        self._closed = True

        try:
            self.socket.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # Already disconnected

        try:
            self.socket.close()
        except OSError:
            pass

        logger.debug(
            f"[{self.id}] Connection closed "
            f"({self.bytes_received} bytes in, {self.bytes_sent} bytes out)"
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
