"""
=============================================================================
TIMESTAMP TIMER
=============================================================================

A background thread that appends a timestamp record to the shared log
every `interval` seconds, under the same lock as client packets:

    timestamp:Mon, 10 Jun 2024 10:55:36 +0200\\n

The sleep is a wait on the shutdown event, so a shutdown wakes the timer
immediately instead of after up to `interval` seconds:

    while not stop_event.wait(time_until_next_fire):
        append(timestamp line)

Fire times are scheduled from a monotonic deadline, so a slow append
does not push every later tick back.
"""

import time
import logging
import threading
from datetime import datetime
from email.utils import format_datetime
from typing import Callable, Optional

from .shared_log import SharedLog, LogError


logger = logging.getLogger(__name__)


def local_now() -> datetime:
    """Current wall-clock time in the local time zone."""
    return datetime.now().astimezone()


def format_timestamp(now: datetime) -> bytes:
    """
    Render the timestamp record for `now`.

    The date part is RFC 2822 (weekday, day, month, year, time, offset),
    which is locale independent unlike strftime's %a/%b.

    Example:
        >>> format_timestamp(datetime(2024, 6, 10, 10, 55, 36, tzinfo=timezone.utc))
        b'timestamp:Mon, 10 Jun 2024 10:55:36 +0000\\n'
    """
    if now.tzinfo is None:
        now = now.astimezone()
    return f"timestamp:{format_datetime(now)}\n".encode("ascii")


class TimestampTimer(threading.Thread):
    """
    Periodic writer of timestamp lines.

    Failures are logged and counted; the next interval is attempted
    regardless. The thread exits as soon as the stop event is set.
    """

    def __init__(
        self,
        log: SharedLog,
        interval: float = 10.0,
        stop_event: Optional[threading.Event] = None,
        clock: Callable[[], datetime] = local_now,
    ):
        """
        Args:
            log: Shared log to append to.
            interval: Seconds between timestamp lines.
            stop_event: Event that ends the loop. The server passes its
                        shutdown event here; standalone timers get their own.
            clock: Source of the wall-clock time (tests inject a fixed one).
        """
        super().__init__(name="TimestampTimer", daemon=True)
        self.log = log
        self.interval = interval
        self._stop_event = stop_event or threading.Event()
        self._clock = clock

        # Metrics
        self.ticks = 0
        self.failures = 0

    def run(self):
        logger.debug(f"Timestamp timer started (interval {self.interval}s)")

        next_fire = time.monotonic() + self.interval
        while not self._stop_event.wait(max(0.0, next_fire - time.monotonic())):
            next_fire += self.interval
            if self._stop_event.is_set():
                break
            self._tick()

        logger.debug(f"Timestamp timer stopped after {self.ticks} ticks")

    def _tick(self):
        try:
            line = format_timestamp(self._clock())
            self.log.append(line)
        except LogError as e:
            self.failures += 1
            logger.error(f"Appending timestamp failed: {e}")
        except (ValueError, OverflowError) as e:
            self.failures += 1
            logger.error(f"Formatting timestamp failed: {e}")
        else:
            self.ticks += 1
            logger.debug(f"Appended {line!r}")

    def stop(self):
        """Wake the timer and make it exit."""
        self._stop_event.set()
