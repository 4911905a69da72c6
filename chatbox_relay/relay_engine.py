"""
relay_engine.py — composition root of the chatbox relay
========================================================
Wires codec, transmitter, mic-sync receiver, realtime gate and dispatch queue
together and owns their lifecycle. Used by:
  • __main__.py  — stdin host
  • any UI/bridge layer that produces final / interim recognition text
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Optional, Union

from .config import RelayConfig
from .dispatch_queue import DispatchQueue
from .errors import RelayError
from .history import ChatHistory
from .mic_sync import MicSyncReceiver, MuteListener, MuteState
from .realtime_gate import RealtimeGate
from .transmitter import ChatTransmitter

logger = logging.getLogger(__name__)


def compose_display_text(text: str, translated: str = "") -> str:
    """'text(translation)' when a translation is present, else just the text."""
    translated = (translated or "").strip()
    if translated:
        return f"{text}({translated})"
    return text


class RelayEngine:
    """
    Public face of the relay.

    configure(), start() and shutdown() are serialised by one lifecycle lock, so a
    shutdown can never race a receiver restart or a transmitter retarget.
    """

    def __init__(
        self,
        config: Optional[RelayConfig] = None,
        *,
        transmitter: Optional[ChatTransmitter] = None,
        receiver: Optional[MicSyncReceiver] = None,
        clock=time.monotonic,
        timer_factory=threading.Timer,
    ):
        self._config = config or RelayConfig()
        cfg = self._config
        self._lock = threading.RLock()
        self._started = False
        self._closed = False

        self._transmitter = transmitter or ChatTransmitter(cfg.osc_host, cfg.osc_port)
        self._receiver = receiver or MicSyncReceiver()
        self.history = ChatHistory(cfg.history_size)

        self._queue = DispatchQueue(
            self._transmitter,
            gate=self.gate_open,
            max_segment_length=cfg.max_segment_length,
            queue_interval_seconds=cfg.queue_interval_seconds,
            typing_delay_seconds=cfg.typing_delay_seconds,
            on_sent=self.history.add,
        )
        self._realtime = RealtimeGate(
            self._transmitter.send_chat,
            throttle_interval_ms=cfg.throttle_interval_ms,
            debounce_delay_ms=cfg.debounce_delay_ms,
            gate=self._realtime_gate_open,
            clock=clock,
            timer_factory=timer_factory,
        )

    # -- Accessors -------------------------------------------------------------

    @property
    def config(self) -> RelayConfig:
        return self._config

    @property
    def transmitter(self) -> ChatTransmitter:
        return self._transmitter

    @property
    def receiver(self) -> MicSyncReceiver:
        return self._receiver

    @property
    def queue(self) -> DispatchQueue:
        return self._queue

    @property
    def realtime(self) -> RealtimeGate:
        return self._realtime

    @property
    def mute_state(self) -> MuteState:
        return self._receiver.mute_state

    def add_mute_listener(self, callback: MuteListener) -> None:
        self._receiver.add_listener(callback)

    def gate_open(self) -> bool:
        """True when chat may be sent right now."""
        if not self._config.mic_sync_enabled:
            return True
        return self._receiver.mute_state.allows_send

    def _realtime_gate_open(self) -> bool:
        cfg = self._config
        return cfg.enabled and cfg.realtime_enabled and self.gate_open()

    # -- Lifecycle -------------------------------------------------------------

    def start(self) -> None:
        """Start listening for mic state (if enabled). Bind errors propagate."""
        with self._lock:
            if self._closed:
                raise RelayError("relay engine has been shut down")
            if self._started:
                return
            cfg = self._config
            if cfg.mic_sync_enabled:
                self._receiver.start(cfg.listen_port)
            # only after a successful bind, so a failed start() can be retried
            self._started = True
        logger.info(
            "event=relay_started target=%s:%s mic_sync=%s realtime=%s",
            cfg.osc_host, cfg.osc_port, cfg.mic_sync_enabled, cfg.realtime_enabled,
        )

    def configure(self, settings: Union[RelayConfig, dict, None] = None, **changes) -> RelayConfig:
        """
        Apply new settings. Accepts a full RelayConfig or a partial dict (plus keyword
        overrides); "osc_target": (host, port) is accepted as shorthand.
        Raises ConfigurationInvalid and keeps the current config on bad input.
        """
        if isinstance(settings, RelayConfig):
            new = settings.merge_patch(changes) if changes else settings
        else:
            patch = dict(settings or {})
            patch.update(changes)
            if "osc_target" in patch:
                patch["osc_host"], patch["osc_port"] = patch.pop("osc_target")
            new = self._config.merge_patch(patch)

        with self._lock:
            if self._closed:
                raise RelayError("relay engine has been shut down")
            old = self._config
            self._config = new

            if (new.osc_host, new.osc_port) != (old.osc_host, old.osc_port):
                self._transmitter.set_target(new.osc_host, new.osc_port)

            self._queue.configure(
                max_segment_length=new.max_segment_length,
                queue_interval_seconds=new.queue_interval_seconds,
                typing_delay_seconds=new.typing_delay_seconds,
            )
            self._realtime.configure(new.throttle_interval_ms, new.debounce_delay_ms)
            if not (new.enabled and new.realtime_enabled):
                self._realtime.cancel()
            self.history.resize(new.history_size)

            if self._started:
                self._apply_mic_sync(old, new)

        logger.info("event=relay_configured")
        return new

    def _apply_mic_sync(self, old: RelayConfig, new: RelayConfig) -> None:
        if not new.mic_sync_enabled:
            if old.mic_sync_enabled:
                logger.info("event=mic_sync_disabled")
            self._receiver.stop()
            return

        needs_restart = (
            not old.mic_sync_enabled
            or old.listen_port != new.listen_port
            or not self._receiver.is_running
        )
        if needs_restart:
            # stop-before-replace: the old socket is closed before the new bind
            self._receiver.stop()
            self._receiver.start(new.listen_port)

    def shutdown(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._receiver.stop()
            self._realtime.cancel()
            self._queue.close()
            self._transmitter.close()
        logger.info("event=relay_shutdown")

    def __enter__(self) -> "RelayEngine":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown()

    # -- Text entry points -----------------------------------------------------

    def submit_final(self, text: str, translated: str = "") -> bool:
        """Queue finalized text. Returns True if anything was queued."""
        text = (text or "").strip()
        if not text or self._closed:
            return False

        cfg = self._config
        if not cfg.enabled:
            logger.info("event=final_skipped reason=disabled")
            return False

        display = compose_display_text(text, translated)
        if cfg.mic_sync_enabled:
            state = self._receiver.mute_state
            if not state.observed:
                logger.info("event=final_skipped reason=waiting_for_mute_state")
                return False
            if state.muted:
                logger.info("event=final_skipped reason=muted")
                return False

        return self._queue.submit(display) > 0

    def submit_interim(self, text: str, translated: str = "") -> bool:
        """Feed in-progress text to the realtime gate. Returns True if accepted."""
        text = (text or "").strip()
        if not text or self._closed:
            return False

        cfg = self._config
        if not (cfg.enabled and cfg.realtime_enabled):
            return False
        if not self.gate_open():
            return False

        self._realtime.update(compose_display_text(text, translated))
        return True
