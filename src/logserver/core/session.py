"""
=============================================================================
CLIENT SESSION
=============================================================================

One Session drives one client connection from accept to close. It runs
in its own thread and owns its connection and receive buffer; the only
thing it shares with anyone is the SharedLog.

=============================================================================
SESSION STATE MACHINE
=============================================================================

    RECEIVING ──────► FRAMING_COMPLETE ──────► REPLYING ───┐
      ▲   │              (append packet)     (read_all,    │
      │   │                    │              send reply)  │
      │   │                    │ failure          │        │
      │   │                    ▼                  ▼        │
      │   └──────────────► CLOSING ◄─────────────┘        │
      │   peer closed,        │   (flush incomplete        │
      │   error, shutdown     │    packet, close socket)   │
      │                       ▼                            │
      │                     DONE                           │
      └────────────────────────────────────────────────────┘
                        next packet

=============================================================================
ONE PACKET, ONE CYCLE
=============================================================================

For every newline-terminated packet:

    1. append(packet)       the packet lands in the log atomically
    2. read_all()           snapshot of the WHOLE log, including packets
                            from other sessions and timestamp lines
    3. send_all(snapshot)   the client gets everything, byte for byte

A failure in any step is logged and ends the session. Nothing is
retried and nothing is sent to the client: the protocol has no error
channel, the connection just closes.

When the session ends normally (peer closed, or server shutdown) with
bytes still buffered, those bytes are one last packet without a newline.
They get the same append + reply cycle, best effort.

=============================================================================
"""

import socket
import logging
import threading
from enum import Enum

from .connection import Connection
from .framing import PacketBuffer
from .shared_log import SharedLog, LogError


logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Session lifecycle states."""
    RECEIVING = "receiving"              # Waiting for bytes from the client
    FRAMING_COMPLETE = "framing_complete"  # Packet found, appending it
    REPLYING = "replying"                # Sending the full log back
    CLOSING = "closing"                  # Flushing leftovers, closing socket
    DONE = "done"                        # Connection released


class Session:
    """
    Per-connection state machine.

    Usage:
        session = Session(conn, shared_log, shutdown_event)
        session.run()    # Blocks until the client is done
    """

    def __init__(
        self,
        connection: Connection,
        log: SharedLog,
        shutdown_event: threading.Event,
    ):
        self.connection = connection
        self.log = log
        self._shutdown_event = shutdown_event
        self._buffer = PacketBuffer()

        self.state = SessionState.RECEIVING
        self.packets_handled = 0
        self.failed = False

    @property
    def id(self) -> str:
        return self.connection.id

    @property
    def buffered(self) -> int:
        """Bytes received but not yet part of an appended packet."""
        return len(self._buffer)

    def run(self) -> None:
        """Serve the connection until the peer closes, an error, or shutdown."""
        logger.info(f"[{self.id}] Accepted connection from {self.connection.client_ip}")
        try:
            self._serve()
        finally:
            self._close()

    # =========================================================================
    # RECEIVING
    # =========================================================================

    def _serve(self) -> None:
        while True:
            self.state = SessionState.RECEIVING

            # Everything already buffered goes out before we read again
            while True:
                packet = self._buffer.next_packet()
                if packet is None:
                    break
                if not self._handle_packet(packet):
                    self._fail()
                    return

            if self._shutdown_event.is_set():
                logger.debug(f"[{self.id}] Shutdown requested, closing session")
                return

            try:
                chunk = self.connection.receive()
            except InterruptedError:
                continue
            except socket.timeout:
                continue  # Loop back and re-check shutdown
            except OSError as e:
                logger.warning(f"[{self.id}] Receive failed: {e}")
                return

            if not chunk:
                logger.debug(f"[{self.id}] Peer closed connection")
                return

            self._buffer.feed(chunk)

    # =========================================================================
    # APPEND + REPLY
    # =========================================================================

    def _handle_packet(self, packet: bytes) -> bool:
        """
        Append one packet and send the full log back.

        Returns:
            True on success, False if the session must end.
        """
        self.state = SessionState.FRAMING_COMPLETE
        try:
            self.log.append(packet)
        except LogError as e:
            logger.error(f"[{self.id}] Append of {len(packet)} bytes failed: {e}")
            return False

        self.state = SessionState.REPLYING
        try:
            reply = self.log.read_all()
        except LogError as e:
            logger.error(f"[{self.id}] Reading log for reply failed: {e}")
            return False

        try:
            self.connection.send_all(reply)
        except OSError as e:
            logger.warning(f"[{self.id}] Sending {len(reply)} byte reply failed: {e}")
            return False

        self.packets_handled += 1
        return True

    def _fail(self) -> None:
        # A failed packet is never retried, and neither is what came after it
        self.failed = True
        self._buffer.clear()

    # =========================================================================
    # CLOSING
    # =========================================================================

    def _close(self) -> None:
        self.state = SessionState.CLOSING

        if self._buffer:
            remainder = self._buffer.drain()
            logger.debug(f"[{self.id}] Flushing incomplete packet of {len(remainder)} bytes")
            if not self._handle_packet(remainder):
                self.failed = True

        self.connection.close()
        self.state = SessionState.DONE
        logger.info(
            f"[{self.id}] Closed connection from {self.connection.client_ip} "
            f"after {self.packets_handled} packets"
        )
