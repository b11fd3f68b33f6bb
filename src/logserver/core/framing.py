"""
=============================================================================
NEWLINE PACKET FRAMING
=============================================================================

TCP is a byte stream, not a message protocol. A client that sends

    send(b"one\\ntw")
    send(b"o\\nthr")
    close()

produces three packets on our side, regardless of how recv() slices it:

    b"one\\n"    complete, ends at the first newline
    b"two\\n"    complete, spans two recv() calls
    b"thr"      incomplete, flushed as-is when the session closes

PacketBuffer holds the bytes between recv() calls and hands out complete
packets, newline included. Whatever is left when the connection ends is
the incomplete trailing packet.
"""

from typing import Iterator, Optional


DELIMITER = b"\n"


class PacketBuffer:
    """
    Growable receive buffer that splits a byte stream on newlines.

    The buffer has no size limit: a packet may be arbitrarily long and
    stays in memory until its newline arrives.
    """

    def __init__(self, delimiter: bytes = DELIMITER):
        self.delimiter = delimiter
        self._buffer = bytearray()
        # Bytes already known to contain no delimiter
        self._scanned = 0

    def __len__(self) -> int:
        return len(self._buffer)

    def __bool__(self) -> bool:
        return bool(self._buffer)

    def feed(self, data: bytes) -> None:
        """Append freshly received bytes."""
        self._buffer += data

    def peek_packet(self) -> Optional[bytes]:
        """
        Return the first complete packet without consuming it.

        The packet stays buffered until consume() is called, so a failed
        append can decide what to do with it.
        """
        index = self._buffer.find(self.delimiter, self._scanned)
        if index < 0:
            self._scanned = max(0, len(self._buffer) - len(self.delimiter) + 1)
            return None
        return bytes(self._buffer[:index + len(self.delimiter)])

    def consume(self, count: int) -> None:
        """Drop count bytes from the front, keeping the remainder."""
        del self._buffer[:count]
        self._scanned = 0

    def next_packet(self) -> Optional[bytes]:
        """Remove and return the first complete packet, or None."""
        packet = self.peek_packet()
        if packet is not None:
            self.consume(len(packet))
        return packet

    def packets(self) -> Iterator[bytes]:
        """Yield every complete packet currently buffered."""
        while True:
            packet = self.next_packet()
            if packet is None:
                return
            yield packet

    def drain(self) -> bytes:
        """Remove and return everything left (the incomplete packet)."""
        remainder = bytes(self._buffer)
        self.clear()
        return remainder

    def clear(self) -> None:
        self._buffer.clear()
        self._scanned = 0
