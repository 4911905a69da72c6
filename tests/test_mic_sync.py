"""
Tests for the MuteSelf receiver: socket lifecycle, decoding and mute-state tracking.
"""

import errno
import socket
import threading
import time

import pytest
from pythonosc.osc_message_builder import OscMessageBuilder
from pythonosc.udp_client import SimpleUDPClient

from chatbox_relay import mic_sync
from chatbox_relay.errors import AddressInUse, PermissionDenied
from chatbox_relay.mic_sync import MicSyncReceiver, MuteState, ReceiverState
from chatbox_relay.osc_codec import MUTE_SELF_ADDRESS, encode_chatbox_input


class StateRecorder:
    def __init__(self):
        self.states = []
        self._cond = threading.Condition()

    def __call__(self, state):
        with self._cond:
            self.states.append(state)
            self._cond.notify_all()

    def wait_for(self, count, timeout=2.0):
        with self._cond:
            return self._cond.wait_for(lambda: len(self.states) >= count, timeout)


@pytest.fixture
def receiver():
    rx = MicSyncReceiver(bind_host="127.0.0.1", poll_interval=0.05)
    yield rx
    rx.stop()


def started(rx):
    rx.start(0)
    host, port = rx.bound_address
    return SimpleUDPClient(host, port)


def test_start_and_stop(receiver):
    assert receiver.state is ReceiverState.STOPPED
    receiver.start(0)
    assert receiver.state is ReceiverState.LISTENING
    assert receiver.is_running
    assert receiver.bound_address[1] > 0

    receiver.stop()
    assert receiver.state is ReceiverState.STOPPED
    assert receiver.bound_address is None


def test_stop_is_idempotent(receiver):
    receiver.stop()
    receiver.start(0)
    receiver.stop()
    receiver.stop()
    assert receiver.state is ReceiverState.STOPPED


def test_tracks_mute_self(receiver):
    recorder = StateRecorder()
    receiver.add_listener(recorder)
    client = started(receiver)
    assert receiver.mute_state == MuteState(observed=False, muted=False)

    client.send_message(MUTE_SELF_ADDRESS, False)
    assert recorder.wait_for(1)
    assert receiver.mute_state == MuteState(observed=True, muted=False)
    assert receiver.mute_state.allows_send

    client.send_message(MUTE_SELF_ADDRESS, True)
    assert recorder.wait_for(2)
    assert receiver.mute_state == MuteState(observed=True, muted=True)
    assert not receiver.mute_state.allows_send


def test_repeated_value_does_not_notify(receiver):
    recorder = StateRecorder()
    receiver.add_listener(recorder)
    client = started(receiver)

    client.send_message(MUTE_SELF_ADDRESS, True)
    client.send_message(MUTE_SELF_ADDRESS, True)
    client.send_message(MUTE_SELF_ADDRESS, True)
    client.send_message(MUTE_SELF_ADDRESS, False)
    assert recorder.wait_for(2)
    assert [s.muted for s in recorder.states] == [True, False]


def test_junk_traffic_does_not_stop_the_loop(receiver):
    recorder = StateRecorder()
    receiver.add_listener(recorder)
    client = started(receiver)
    target = receiver.bound_address

    raw = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        raw.sendto(b"\x01\x02", target)
        raw.sendto(b"no terminator at all", target)
        raw.sendto(encode_chatbox_input("echo", True), target)
    finally:
        raw.close()
    client.send_message("/avatar/parameters/VelocityX", 0.5)
    client.send_message(MUTE_SELF_ADDRESS, True)

    assert recorder.wait_for(1)
    assert receiver.mute_state.muted
    assert receiver.is_running


def test_start_twice_raises_address_in_use(receiver):
    receiver.start(0)
    port = receiver.bound_address[1]
    with pytest.raises(AddressInUse):
        receiver.start(port)
    assert receiver.is_running
    assert receiver.bound_address[1] == port


def test_port_held_by_another_receiver(receiver):
    receiver.start(0)
    port = receiver.bound_address[1]

    other = MicSyncReceiver(bind_host="127.0.0.1", poll_interval=0.05)
    with pytest.raises(AddressInUse):
        other.start(port)
    assert other.state is ReceiverState.STOPPED


def test_stop_then_start_reuses_port(receiver):
    receiver.start(0)
    port = receiver.bound_address[1]
    receiver.stop()
    receiver.start(port)
    assert receiver.bound_address[1] == port


def test_stop_resets_mute_state(receiver):
    recorder = StateRecorder()
    receiver.add_listener(recorder)
    client = started(receiver)
    client.send_message(MUTE_SELF_ADDRESS, True)
    assert recorder.wait_for(1)

    receiver.stop()
    assert receiver.mute_state == MuteState()


def test_restart_starts_unobserved(receiver):
    receiver.handle_datagram(_mute_dgram(True))
    assert receiver.mute_state.observed
    receiver.restart(0)
    assert receiver.mute_state == MuteState()
    assert receiver.is_running


def wait_until(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


def test_datagram_in_flight_during_stop_is_discarded(receiver, monkeypatch):
    real_parse = mic_sync.parse_mute_self
    entered = threading.Event()
    release = threading.Event()

    def slow_parse(data):
        muted = real_parse(data)
        if muted:
            entered.set()
            release.wait(5.0)
        return muted

    monkeypatch.setattr(mic_sync, "parse_mute_self", slow_parse)
    recorder = StateRecorder()
    receiver.add_listener(recorder)
    client = started(receiver)

    client.send_message(MUTE_SELF_ADDRESS, False)
    assert recorder.wait_for(1)
    client.send_message(MUTE_SELF_ADDRESS, True)
    assert entered.wait(2.0)

    stop_event = receiver._stop_event
    stopper = threading.Thread(target=receiver.stop)
    stopper.start()
    # let the loop go as soon as stop() has either cancelled it or wiped the state
    assert wait_until(lambda: stop_event.is_set() or not receiver.mute_state.observed)
    release.set()
    stopper.join(5.0)

    assert receiver.state is ReceiverState.STOPPED
    assert receiver.mute_state == MuteState()
    assert recorder.states == [MuteState(observed=True, muted=False)]


def failing_bind(monkeypatch, code):
    """Make every socket bind fail with `code`; returns the sockets that tried."""
    attempted = []

    def bind(sock, address):
        attempted.append(sock)
        raise OSError(code, errno.errorcode.get(code, "bind failed"))

    monkeypatch.setattr(socket.socket, "bind", bind)
    return attempted


@pytest.mark.parametrize("code", [errno.EACCES, errno.EPERM])
def test_bind_not_permitted(receiver, monkeypatch, code):
    attempted = failing_bind(monkeypatch, code)
    with pytest.raises(PermissionDenied) as info:
        receiver.start(80)

    assert info.value.port == 80
    assert isinstance(info.value.__cause__, OSError)
    assert receiver.state is ReceiverState.STOPPED
    assert receiver.bound_address is None
    assert [s.fileno() for s in attempted] == [-1]


def test_other_bind_errors_propagate_unchanged(receiver, monkeypatch):
    attempted = failing_bind(monkeypatch, errno.EADDRNOTAVAIL)
    with pytest.raises(OSError) as info:
        receiver.start(9001)

    assert type(info.value) is OSError
    assert info.value.errno == errno.EADDRNOTAVAIL
    assert receiver.state is ReceiverState.STOPPED
    assert [s.fileno() for s in attempted] == [-1]


def _mute_dgram(value):
    builder = OscMessageBuilder(address=MUTE_SELF_ADDRESS)
    builder.add_arg(value)
    return builder.build().dgram


class TestHandleDatagram:
    def test_first_observation_notifies(self):
        rx = MicSyncReceiver()
        recorder = StateRecorder()
        rx.add_listener(recorder)
        rx.handle_datagram(_mute_dgram(False))
        assert recorder.states == [MuteState(observed=True, muted=False)]

    def test_stale_loop_cannot_write(self):
        rx = MicSyncReceiver()
        cancelled = threading.Event()
        cancelled.set()
        rx.handle_datagram(_mute_dgram(True), stop_event=cancelled)
        assert rx.mute_state == MuteState()

    def test_malformed_is_swallowed(self):
        rx = MicSyncReceiver()
        rx.handle_datagram(b"")
        rx.handle_datagram(MUTE_SELF_ADDRESS.encode() + b"\x00,i\x00\x00")
        assert rx.mute_state == MuteState()

    def test_listener_errors_are_contained(self):
        rx = MicSyncReceiver()
        seen = []

        def broken(state):
            raise RuntimeError("ui is gone")

        rx.add_listener(broken)
        rx.add_listener(seen.append)
        rx.handle_datagram(_mute_dgram(True))
        assert seen == [MuteState(observed=True, muted=True)]

        rx.remove_listener(broken)
        rx.remove_listener(broken)
