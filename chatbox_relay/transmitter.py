# transmitter.py  (fire-and-forget OSC sender for the VRChat chatbox)
from __future__ import annotations

import logging
import threading
from typing import Optional, Tuple

from pythonosc.osc_message import OscMessage
from pythonosc.udp_client import UDPClient

from .config import DEFAULT_OSC_HOST, DEFAULT_OSC_PORT
from .errors import MalformedPacket, SendFailed
from .osc_codec import build_chatbox_input, build_typing

logger = logging.getLogger(__name__)


class ChatTransmitter:
    """
    Writes one datagram per call. Errors are logged and reported as False,
    never raised: a dropped chatbox update must not take the relay down.
    """

    def __init__(self, host: str = DEFAULT_OSC_HOST, port: int = DEFAULT_OSC_PORT):
        self._lock = threading.Lock()
        self._target: Tuple[str, int] = (host, port)
        self._client: Optional[UDPClient] = None
        self._closed = False

    @property
    def target(self) -> Tuple[str, int]:
        return self._target

    def set_target(self, host: str, port: int) -> None:
        """Point at a new destination. The old client is dropped, a new one is made lazily."""
        with self._lock:
            if (host, port) == self._target:
                return
            self._target = (host, port)
            self._client = None
            self._closed = False
        logger.info("event=osc_target_changed target=%s:%s", host, port)

    def close(self) -> None:
        with self._lock:
            self._client = None
            self._closed = True

    # ===== primitives =====
    def send_chat(self, text: str, typing: bool = True) -> bool:
        try:
            msg = build_chatbox_input(text, typing)
        except MalformedPacket as exc:
            logger.warning("event=osc_encode_failed error=%s", exc)
            return False
        return self._send(msg)

    def send_typing(self, is_typing: bool) -> bool:
        return self._send(build_typing(is_typing))

    def _send(self, msg: OscMessage) -> bool:
        with self._lock:
            if self._closed:
                logger.debug("event=osc_send_skipped reason=closed address=%s", msg.address)
                return False
            target = self._target
            try:
                if self._client is None:
                    self._client = UDPClient(*target)
                client = self._client
            except OSError as exc:
                logger.warning("event=osc_send_failed %s", SendFailed(msg.address, target, exc))
                return False

        try:
            client.send(msg)
        except OSError as exc:
            logger.warning("event=osc_send_failed %s", SendFailed(msg.address, target, exc))
            return False
        return True
