# mic_sync.py  (listens for VRChat's /avatar/parameters/MuteSelf and tracks the mic mute flag)
from __future__ import annotations

import enum
import errno
import logging
import socket
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from .errors import AddressInUse, MalformedPacket, PermissionDenied
from .osc_codec import parse_mute_self

logger = logging.getLogger(__name__)

# =========================
# Config
# =========================
DEFAULT_BIND_HOST = "0.0.0.0"
RECV_BUFFER_SIZE = 4096
POLL_INTERVAL_SEC = 0.2     # how often the loop looks at its stop event

_ADDR_IN_USE = {errno.EADDRINUSE, getattr(errno, "WSAEADDRINUSE", errno.EADDRINUSE)}
_ACCESS_DENIED = {errno.EACCES, errno.EPERM, getattr(errno, "WSAEACCES", errno.EACCES)}
_SOCKET_GONE = {errno.EBADF, errno.ENOTSOCK}


class ReceiverState(enum.Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    LISTENING = "listening"


@dataclass(frozen=True)
class MuteState:
    observed: bool = False
    muted: bool = False

    @property
    def allows_send(self) -> bool:
        """Chat may flow only once VRChat has told us the mic is open."""
        return self.observed and not self.muted


UNOBSERVED = MuteState()

MuteListener = Callable[[MuteState], None]


class MicSyncReceiver:
    """
    Owns one UDP socket + one receive thread.
    start() / stop() are serialised by a handle lock, so a replacement socket is
    never created while the old loop still holds its port.
    """

    def __init__(
        self,
        *,
        bind_host: str = DEFAULT_BIND_HOST,
        poll_interval: float = POLL_INTERVAL_SEC,
    ):
        self._bind_host = bind_host
        self._poll_interval = poll_interval

        # socket / stop event / thread, swapped together
        self._handle_lock = threading.Lock()
        self._sock: Optional[socket.socket] = None
        self._stop_event: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None
        self._state = ReceiverState.STOPPED

        self._state_lock = threading.Lock()
        self._mute = UNOBSERVED

        self._listeners: List[MuteListener] = []

    # ===== properties =====
    @property
    def state(self) -> ReceiverState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is ReceiverState.LISTENING

    @property
    def mute_state(self) -> MuteState:
        with self._state_lock:
            return self._mute

    @property
    def bound_address(self) -> Optional[Tuple[str, int]]:
        sock = self._sock
        if sock is None:
            return None
        return sock.getsockname()[:2]

    def add_listener(self, callback: MuteListener) -> None:
        self._listeners.append(callback)

    def remove_listener(self, callback: MuteListener) -> None:
        try:
            self._listeners.remove(callback)
        except ValueError:
            pass

    # ===== lifecycle =====
    def start(self, listen_port: int) -> None:
        with self._handle_lock:
            if self._sock is not None:
                raise AddressInUse(listen_port, "receiver is already listening; stop() it first")

            self._state = ReceiverState.STARTING
            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            try:
                sock.bind((self._bind_host, listen_port))
            except OSError as exc:
                sock.close()
                self._state = ReceiverState.STOPPED
                logger.error("event=mic_sync_bind_failed port=%s error=%s", listen_port, exc)
                if exc.errno in _ADDR_IN_USE:
                    raise AddressInUse(listen_port, exc.strerror or "") from exc
                if exc.errno in _ACCESS_DENIED:
                    raise PermissionDenied(listen_port, exc.strerror or "") from exc
                raise
            sock.settimeout(self._poll_interval)
            self._reset_mute()

            stop_event = threading.Event()
            thread = threading.Thread(
                target=self._receive_loop,
                args=(sock, stop_event),
                name=f"mic-sync-{listen_port}",
                daemon=True,
            )
            self._sock, self._stop_event, self._thread = sock, stop_event, thread
            self._state = ReceiverState.LISTENING
            thread.start()
            host, port = sock.getsockname()[:2]

        logger.info("event=mic_sync_started address=%s:%s", host, port)

    def stop(self) -> None:
        """Cancel the loop, wait for it, close the socket. No-op when already stopped."""
        with self._handle_lock:
            sock, stop_event, thread = self._sock, self._stop_event, self._thread
            if sock is None:
                self._reset_mute()
                return

            # the event goes up first so the loop can no longer write mute state
            stop_event.set()
            if thread is not threading.current_thread():
                thread.join(timeout=self._poll_interval * 5 + 1.0)
                if thread.is_alive():
                    logger.warning("event=mic_sync_join_timeout thread=%s", thread.name)
            sock.close()
            self._reset_mute()

            self._sock = self._stop_event = self._thread = None
            self._state = ReceiverState.STOPPED
        logger.info("event=mic_sync_stopped")

    def _reset_mute(self) -> None:
        with self._state_lock:
            self._mute = UNOBSERVED

    def restart(self, listen_port: int) -> None:
        self.stop()
        self.start(listen_port)

    # ===== receive loop =====
    def _receive_loop(self, sock: socket.socket, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            try:
                data, peer = sock.recvfrom(RECV_BUFFER_SIZE)
            except socket.timeout:
                continue
            except OSError as exc:
                if stop_event.is_set() or exc.errno in _SOCKET_GONE:
                    break
                # e.g. ICMP port-unreachable surfacing as ConnectionResetError on Windows
                logger.warning("event=mic_sync_recv_error error=%s", exc)
                stop_event.wait(self._poll_interval)
                continue

            self.handle_datagram(data, peer, stop_event)

    def handle_datagram(self, data: bytes, peer=None, stop_event: Optional[threading.Event] = None) -> None:
        """Decode one datagram and fold it into the mute state. Never raises."""
        try:
            muted = parse_mute_self(data)
        except MalformedPacket as exc:
            logger.debug("event=mic_sync_malformed peer=%s error=%s", peer, exc)
            return
        if muted is None:
            return

        with self._state_lock:
            # a loop that was already told to stop must not touch the fresh state
            if stop_event is not None and stop_event.is_set():
                return
            previous = self._mute
            current = MuteState(observed=True, muted=muted)
            self._mute = current

        if previous.observed and previous.muted == muted:
            return

        if not previous.observed:
            logger.info("event=mic_sync_first_state muted=%s", muted)
        else:
            logger.info("event=mic_sync_changed muted=%s", muted)
        self._notify(current)

    def _notify(self, state: MuteState) -> None:
        for callback in list(self._listeners):
            try:
                callback(state)
            except Exception:
                logger.exception("event=mic_sync_listener_failed callback=%r", callback)
