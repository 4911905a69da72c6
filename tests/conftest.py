"""
Pytest configuration and shared fakes for chatbox_relay tests.
"""

import socket
import sys
import threading
from pathlib import Path

import pytest

# Make the package importable without installing it
root_path = Path(__file__).parent.parent
if str(root_path) not in sys.path:
    sys.path.insert(0, str(root_path))

from chatbox_relay.mic_sync import MuteState  # noqa: E402


class RecordingTransmitter:
    """Stands in for ChatTransmitter; remembers every call."""

    def __init__(self, ok: bool = True):
        self.ok = ok
        self.events = []
        self.targets = []
        self.closed = False
        self._lock = threading.Lock()

    @property
    def chats(self):
        return [value for kind, value in self.events if kind == "chat"]

    @property
    def typing(self):
        return [value for kind, value in self.events if kind == "typing"]

    def send_chat(self, text, typing=True):
        with self._lock:
            self.events.append(("chat", text))
        return self.ok

    def send_typing(self, is_typing):
        with self._lock:
            self.events.append(("typing", is_typing))
        return self.ok

    def set_target(self, host, port):
        self.targets.append((host, port))

    def close(self):
        self.closed = True


class FakeReceiver:
    """Stands in for MicSyncReceiver without touching sockets."""

    def __init__(self):
        self.calls = []
        self.listeners = []
        self.is_running = False
        self.mute_state = MuteState()

    def start(self, listen_port):
        self.calls.append(("start", listen_port))
        self.is_running = True

    def stop(self):
        self.calls.append(("stop",))
        self.is_running = False
        self.mute_state = MuteState()

    def add_listener(self, callback):
        self.listeners.append(callback)

    def set_mute(self, muted):
        self.mute_state = MuteState(observed=True, muted=muted)
        for callback in self.listeners:
            callback(self.mute_state)


class ManualClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class ManualTimer:
    def __init__(self, interval, function, args=None, kwargs=None):
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.kwargs = kwargs or {}
        self.daemon = False
        self.started = False
        self.cancelled = False
        self.fired = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if self.cancelled or self.fired:
            return
        self.fired = True
        self.function(*self.args, **self.kwargs)


class ManualTimerFactory:
    def __init__(self):
        self.timers = []

    def __call__(self, interval, function, args=None, kwargs=None):
        timer = ManualTimer(interval, function, args, kwargs)
        self.timers.append(timer)
        return timer

    @property
    def live(self):
        return [t for t in self.timers if t.started and not t.cancelled and not t.fired]


@pytest.fixture
def transmitter():
    return RecordingTransmitter()


@pytest.fixture
def fake_receiver():
    return FakeReceiver()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def timers():
    return ManualTimerFactory()


@pytest.fixture
def udp_sink():
    """Loopback UDP socket on an ephemeral port."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    sock.settimeout(2.0)
    yield sock
    sock.close()


@pytest.fixture
def failing_transmitter():
    return RecordingTransmitter(ok=False)
