"""
Unit tests for the listening socket and the accept loop.
"""

import socket
import threading
import time

import pytest

from logserver.config import ServerConfig
from logserver.core.dispatcher import (
    ConnectionDispatcher, STOPPED_BY_SHUTDOWN, STOPPED_BY_LISTENER_ERROR,
)
from logserver.core.listener import Listener, ListenerError
from logserver.core.shared_log import MemoryLog
from logserver.core.task_group import TaskGroup

from conftest import wait_for


def listener_config(**overrides) -> ServerConfig:
    values = dict(host="127.0.0.1", port=0, poll_interval=0.05,
                  bind_retries=2, bind_retry_delay=0.01)
    values.update(overrides)
    return ServerConfig(**values)


class TestListener:
    """Tests for Listener."""

    def test_open_binds_ephemeral_port(self):
        """Test port 0 resolves to a real port."""
        listener = Listener(listener_config())
        listener.open()
        try:
            host, port = listener.address
            assert host == "127.0.0.1"
            assert port > 0
            assert listener.is_open
        finally:
            listener.close()
        assert not listener.is_open

    def test_bind_conflict_raises_after_retries(self):
        """Test that an occupied port is fatal once retries run out."""
        first = Listener(listener_config())
        first.open()
        try:
            port = first.address[1]
            second = Listener(listener_config(port=port))

            with pytest.raises(ListenerError):
                second.open()
            assert not second.is_open
        finally:
            first.close()

    def test_accept_returns_connection(self):
        """Test that accept wraps the client socket."""
        listener = Listener(listener_config(buffer_size=512))
        listener.open()
        try:
            client = socket.create_connection(listener.address, timeout=5.0)
            conn = listener.accept()

            assert conn.buffer_size == 512
            assert conn.poll_interval == 0.05
            assert conn.client_ip == "127.0.0.1"
            conn.close()
            client.close()
        finally:
            listener.close()

    def test_accept_times_out(self):
        """Test that accept wakes up after poll_interval."""
        listener = Listener(listener_config())
        listener.open()
        try:
            with pytest.raises(socket.timeout):
                listener.accept()
        finally:
            listener.close()

    def test_stop_wakes_blocked_accept(self):
        """Test that stop makes a long accept fail early."""
        listener = Listener(listener_config(poll_interval=10.0))
        listener.open()
        errors = []

        def accept():
            try:
                listener.accept()
            except OSError as e:
                errors.append(e)

        thread = threading.Thread(target=accept)
        thread.start()
        time.sleep(0.1)

        started = time.monotonic()
        listener.stop()
        thread.join(timeout=5.0)

        assert not thread.is_alive()
        assert time.monotonic() - started < 5.0
        assert errors
        listener.close()

    def test_accept_on_closed_listener(self):
        """Test accept before open."""
        with pytest.raises(OSError):
            Listener(listener_config()).accept()


class TestConnectionDispatcher:
    """Tests for ConnectionDispatcher."""

    def test_spawns_one_session_per_connection(self):
        """Test that every accepted connection gets a session thread."""
        listener = Listener(listener_config())
        listener.open()
        event = threading.Event()
        sessions = TaskGroup()
        served = []

        class RecordingSession:
            def __init__(self, conn, log, shutdown_event):
                self.conn = conn

            def run(self):
                served.append(self.conn.id)
                self.conn.close()

        dispatcher = ConnectionDispatcher(
            listener, MemoryLog(), sessions, event, session_factory=RecordingSession,
        )
        thread = threading.Thread(target=dispatcher.run)
        thread.start()

        clients = [socket.create_connection(listener.address, timeout=5.0) for _ in range(3)]
        assert wait_for(lambda: len(served) == 3)

        event.set()
        listener.stop()
        thread.join(timeout=5.0)
        sessions.join(timeout=5.0)

        assert dispatcher.connections_accepted == 3
        assert len(set(served)) == 3
        for client in clients:
            client.close()
        listener.close()

    def test_returns_shutdown_reason(self):
        """Test the stop reason after the shutdown event."""
        listener = Listener(listener_config())
        listener.open()
        event = threading.Event()
        dispatcher = ConnectionDispatcher(listener, MemoryLog(), TaskGroup(), event)

        result = []
        thread = threading.Thread(target=lambda: result.append(dispatcher.run()))
        thread.start()

        event.set()
        listener.stop()
        thread.join(timeout=5.0)

        assert result == [STOPPED_BY_SHUTDOWN]
        listener.close()

    def test_listener_failure_stops_dispatching(self):
        """Test that an unexpected accept error ends the loop."""
        class BrokenListener:
            def accept(self):
                raise OSError("bad file descriptor")

        dispatcher = ConnectionDispatcher(
            BrokenListener(), MemoryLog(), TaskGroup(), threading.Event(),
        )

        assert dispatcher.run() == STOPPED_BY_LISTENER_ERROR

    def test_retries_interrupted_accept(self):
        """Test that InterruptedError and timeouts are retried."""
        event = threading.Event()

        class FlakyListener:
            calls = 0

            def accept(self):
                self.calls += 1
                if self.calls == 1:
                    raise InterruptedError()
                if self.calls == 2:
                    raise socket.timeout()
                event.set()
                raise OSError("stopped")

        listener = FlakyListener()
        dispatcher = ConnectionDispatcher(listener, MemoryLog(), TaskGroup(), event)

        assert dispatcher.run() == STOPPED_BY_SHUTDOWN
        assert listener.calls == 3

    def test_closed_group_closes_connection(self):
        """Test a connection that arrives after the group stopped taking sessions."""
        listener = Listener(listener_config())
        listener.open()
        sessions = TaskGroup()
        sessions.close()
        dispatcher = ConnectionDispatcher(listener, MemoryLog(), sessions, threading.Event())

        client = socket.create_connection(listener.address, timeout=5.0)
        conn = listener.accept()
        dispatcher._dispatch(conn)

        assert conn.closed
        assert dispatcher.connections_accepted == 0
        client.settimeout(5.0)
        assert client.recv(16) == b""
        client.close()
        listener.close()
