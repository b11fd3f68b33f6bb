"""
Unit tests for the timestamp timer.
"""

import threading
from datetime import datetime, timedelta, timezone

from logserver.core.shared_log import MemoryLog
from logserver.core.timer import TimestampTimer, format_timestamp

from conftest import wait_for


FIXED = datetime(2024, 6, 10, 10, 55, 36, tzinfo=timezone.utc)


class TestFormatTimestamp:
    """Tests for format_timestamp."""

    def test_utc(self):
        """Test the record layout."""
        assert format_timestamp(FIXED) == b"timestamp:Mon, 10 Jun 2024 10:55:36 +0000\n"

    def test_offset_is_rendered(self):
        """Test a non-UTC zone."""
        tz = timezone(timedelta(hours=2))
        stamp = datetime(2024, 1, 5, 8, 0, 0, tzinfo=tz)

        assert format_timestamp(stamp) == b"timestamp:Fri, 05 Jan 2024 08:00:00 +0200\n"

    def test_naive_time_gets_local_zone(self):
        """Test that a naive datetime still renders an offset."""
        line = format_timestamp(datetime(2024, 6, 10, 10, 55, 36))

        assert line.startswith(b"timestamp:Mon, 10 Jun 2024 10:55:36 ")
        assert line.endswith(b"\n")
        offset = line[len(b"timestamp:Mon, 10 Jun 2024 10:55:36 "):-1]
        assert len(offset) == 5
        assert offset[:1] in (b"+", b"-")


class TestTimestampTimer:
    """Tests for TimestampTimer."""

    def test_appends_periodically(self):
        """Test that lines arrive every interval."""
        log = MemoryLog()
        timer = TimestampTimer(log, interval=0.02, clock=lambda: FIXED)
        timer.start()

        assert wait_for(lambda: timer.ticks >= 3)
        timer.stop()
        timer.join(timeout=2.0)

        lines = log.read_all().split(b"\n")[:-1]
        assert len(lines) == timer.ticks
        assert set(lines) == {b"timestamp:Mon, 10 Jun 2024 10:55:36 +0000"}

    def test_stop_wakes_immediately(self):
        """Test that a long interval does not delay stop."""
        log = MemoryLog()
        timer = TimestampTimer(log, interval=60.0)
        timer.start()

        timer.stop()
        timer.join(timeout=2.0)

        assert not timer.is_alive()
        assert timer.ticks == 0
        assert log.read_all() == b""

    def test_shared_stop_event(self):
        """Test that the timer watches an externally owned event."""
        event = threading.Event()
        timer = TimestampTimer(MemoryLog(), interval=60.0, stop_event=event)
        timer.start()

        event.set()
        timer.join(timeout=2.0)
        assert not timer.is_alive()

    def test_no_ticks_after_stop(self):
        """Test that nothing is appended once stop has returned."""
        log = MemoryLog()
        timer = TimestampTimer(log, interval=0.01)
        timer.start()
        assert wait_for(lambda: timer.ticks >= 1)

        timer.stop()
        timer.join(timeout=2.0)
        size = log.size

        assert not wait_for(lambda: log.size != size, timeout=0.1)

    def test_append_failure_is_counted(self):
        """Test that a closed log is logged and retried next interval."""
        log = MemoryLog()
        log.close()
        timer = TimestampTimer(log, interval=0.01)
        timer.start()

        assert wait_for(lambda: timer.failures >= 2)
        timer.stop()
        timer.join(timeout=2.0)
        assert timer.ticks == 0

    def test_clock_failure_is_counted(self):
        """Test a clock that produces an unusable time."""
        def broken_clock():
            raise OverflowError("clock out of range")

        timer = TimestampTimer(MemoryLog(), interval=0.01, clock=broken_clock)
        timer.start()

        assert wait_for(lambda: timer.failures >= 1)
        timer.stop()
        timer.join(timeout=2.0)

    def test_thread_identity(self):
        """Test thread name and daemon flag."""
        timer = TimestampTimer(MemoryLog())
        assert timer.name == "TimestampTimer"
        assert timer.daemon
