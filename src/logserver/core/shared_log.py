"""
=============================================================================
SHARED APPEND-ONLY LOG
=============================================================================

Every session and the timestamp timer write into ONE byte stream and
every reply is a copy of that whole stream. This module owns the stream
and the lock that keeps it consistent.

=============================================================================
WHY ONE LOCK FOR BOTH APPEND AND READ?
=============================================================================

A reply must show exactly the appends that completed before it, nothing
half-written and nothing reordered:

    Session A                Session B                Timer
    ─────────                ─────────                ─────
    append("one\\n")
                             append("two\\n")
                                                      append("timestamp:...\\n")
    read_all()  ──►  "one\\ntwo\\ntimestamp:...\\n"

If reads did not take the lock, A could observe "one\\ntw" while B's
write is in flight. If appends did not take it, two packets could land
byte-interleaved. So the rule is simple:

    ┌─────────────────────────────────────────────────────────────────────┐
    │  At most ONE of {append, read_all} runs at a time, process-wide.   │
    └─────────────────────────────────────────────────────────────────────┘

The lock is held only for the file operation itself. Sending the reply
to a (possibly slow) client happens after the lock is released, on the
snapshot read_all() returned.

=============================================================================
BACKENDS
=============================================================================

    SharedLog (abstract)   Lock, closed flag, counters, public API
        │
        ├── FileLog        Durable file on disk (the real server)
        │                  keep_open=True   one handle, lifetime of process
        │                  keep_open=False  open() per operation
        │
        └── MemoryLog      bytearray (tests, embedding)

=============================================================================
"""

import os
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import BinaryIO, Optional


logger = logging.getLogger(__name__)


class LogError(Exception):
    """Base class for failures of the shared log."""


class LogWriteError(LogError):
    """An append was rejected, came up short, or could not be flushed."""


class LogReadError(LogError):
    """The log could not be opened or read."""


class SharedLog(ABC):
    """
    Mutual-exclusion guarded append/read resource over one byte stream.

    Subclasses implement the storage primitives; this class guarantees
    that they are never called concurrently and never after close().

    Usage:
        log = FileLog("/var/tmp/aesdsocketdata")
        log.append(b"hello\\n")
        log.read_all()          # b"hello\\n"
        log.close()
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._closed = False

        # Metrics
        self.appends = 0
        self.bytes_appended = 0

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def append(self, data: bytes) -> None:
        """
        Append data verbatim and flush it before returning.

        Raises:
            LogWriteError: The store rejected the write, wrote fewer bytes
                           than requested, or failed to flush.
        """
        with self._lock:
            if self._closed:
                raise LogWriteError("Log is closed")
            self._write(data)
            self.appends += 1
            self.bytes_appended += len(data)

    def read_all(self) -> bytes:
        """
        Return the whole stream from the beginning.

        Raises:
            LogReadError: The store could not be opened or read.
        """
        with self._lock:
            if self._closed:
                raise LogReadError("Log is closed")
            return self._read()

    @property
    def size(self) -> int:
        """Current length of the stream in bytes."""
        with self._lock:
            if self._closed:
                raise LogReadError("Log is closed")
            return self._size()

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Release the store. Safe to call more than once."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._release()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    # =========================================================================
    # STORAGE PRIMITIVES (called with the lock held)
    # =========================================================================

    @abstractmethod
    def _write(self, data: bytes) -> None:
        ...

    @abstractmethod
    def _read(self) -> bytes:
        ...

    @abstractmethod
    def _size(self) -> int:
        ...

    def _release(self) -> None:
        pass


class FileLog(SharedLog):
    """
    Shared log backed by a file.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        FileLog Options                               │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   keep_open=True         open(path, "a+b") once, reuse the handle   │
    │                          O_APPEND puts every write at the end, so   │
    │                          seeking to 0 for reads is harmless         │
    │                                                                      │
    │   keep_open=False        open(path, "ab") / open(path, "rb") per    │
    │                          call, the file can be rotated externally   │
    │                                                                      │
    │   truncate=True          start from an empty file                    │
    │   delete_on_close=True   unlink the file in close()                  │
    │   fsync=True             os.fsync() after every append               │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    Files are opened unbuffered so that write() reports how many bytes
    the OS actually accepted; a short write is an error, not a retry.
    """

    def __init__(
        self,
        path: str,
        keep_open: bool = True,
        truncate: bool = False,
        delete_on_close: bool = False,
        fsync: bool = False,
    ):
        """
        Open (and create if absent) the data file.

        Raises:
            OSError: The file or its directory cannot be created. This
                     happens at startup, before any session exists.
        """
        super().__init__()
        self.path = Path(path).absolute()
        self.keep_open = keep_open
        self.delete_on_close = delete_on_close
        self.fsync = fsync

        self.path.parent.mkdir(parents=True, exist_ok=True)

        if truncate:
            with open(self.path, "wb"):
                pass
        else:
            self.path.touch(exist_ok=True)

        self._file: Optional[BinaryIO] = None
        if keep_open:
            self._file = open(self.path, "a+b", buffering=0)

        logger.debug(
            f"Opened log {self.path} (keep_open={keep_open}, truncate={truncate})"
        )

    def _write(self, data: bytes) -> None:
        try:
            if self._file is not None:
                self._write_to(self._file, data)
            else:
                with open(self.path, "ab", buffering=0) as f:
                    self._write_to(f, data)
        except OSError as e:
            raise LogWriteError(f"Append to {self.path} failed: {e}") from e

    def _write_to(self, f: BinaryIO, data: bytes) -> None:
        written = f.write(data)
        if written != len(data):
            raise LogWriteError(
                f"Short write to {self.path}: {written} of {len(data)} bytes"
            )
        f.flush()
        if self.fsync:
            os.fsync(f.fileno())

    def _read(self) -> bytes:
        try:
            if self._file is not None:
                self._file.seek(0)
                return self._file.read()
            with open(self.path, "rb") as f:
                return f.read()
        except OSError as e:
            raise LogReadError(f"Read of {self.path} failed: {e}") from e

    def _size(self) -> int:
        try:
            if self._file is not None:
                return os.fstat(self._file.fileno()).st_size
            return self.path.stat().st_size
        except OSError as e:
            raise LogReadError(f"Stat of {self.path} failed: {e}") from e

    def _release(self) -> None:
        if self._file is not None:
            try:
                self._file.close()
            except OSError as e:
                logger.error(f"Closing {self.path} failed: {e}")
            self._file = None

        if self.delete_on_close:
            try:
                self.path.unlink()
                logger.info(f"Removed log file {self.path}")
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.error(f"Removing {self.path} failed: {e}")


class MemoryLog(SharedLog):
    """Shared log kept in memory. Same locking rules as FileLog."""

    def __init__(self, initial: bytes = b""):
        super().__init__()
        self._data = bytearray(initial)

    def _write(self, data: bytes) -> None:
        self._data += data

    def _read(self) -> bytes:
        return bytes(self._data)

    def _size(self) -> int:
        return len(self._data)
