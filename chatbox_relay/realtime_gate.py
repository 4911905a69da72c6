# realtime_gate.py  (throttle + debounce for interim speech text)
from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_THROTTLE_MS = 500   # min spacing between two sends
DEFAULT_DEBOUNCE_MS = 300   # quiet period before a flush


def _always_open() -> bool:
    return True


class RealtimeGate:
    """
    Interim text fast path. Only the newest text survives; at most one send per
    throttle window; at most one debounce timer alive at any time.

    update():
      - outside the throttle window -> send now
      - inside it -> (re)arm the debounce timer; when it fires it re-checks the
        window and sends the latest pending text, or does nothing if still inside.
    """

    def __init__(
        self,
        send: Callable[[str], object],
        *,
        throttle_interval_ms: int = DEFAULT_THROTTLE_MS,
        debounce_delay_ms: int = DEFAULT_DEBOUNCE_MS,
        gate: Callable[[], bool] = _always_open,
        clock: Callable[[], float] = time.monotonic,
        timer_factory=threading.Timer,
    ):
        self._send = send
        self._gate = gate
        self._clock = clock
        self._timer_factory = timer_factory
        self.configure(throttle_interval_ms, debounce_delay_ms)

        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._generation = 0
        self._pending = ""
        self._last_send = float("-inf")
        self.send_count = 0

    def configure(self, throttle_interval_ms: int, debounce_delay_ms: int) -> None:
        self._throttle_s = throttle_interval_ms / 1000.0
        self._debounce_s = debounce_delay_ms / 1000.0

    @property
    def pending_text(self) -> str:
        return self._pending

    @property
    def timer_armed(self) -> bool:
        return self._timer is not None

    def update(self, text: str) -> None:
        with self._lock:
            self._pending = text
            now = self._clock()
            if now - self._last_send >= self._throttle_s:
                self._cancel_timer_locked()
                self._last_send = now
            else:
                self._arm_timer_locked()
                return
        self._dispatch(text)

    def cancel(self) -> None:
        """Drop any outstanding timer. Pending text is kept but will not be sent."""
        with self._lock:
            self._cancel_timer_locked()

    # ===== timer handling (lock held) =====
    def _arm_timer_locked(self) -> None:
        self._cancel_timer_locked()
        generation = self._generation
        timer = self._timer_factory(self._debounce_s, self._on_timer, args=(generation,))
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _cancel_timer_locked(self) -> None:
        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return  # superseded
            self._timer = None
            now = self._clock()
            if now - self._last_send < self._throttle_s:
                return
            self._last_send = now
            text = self._pending
        self._dispatch(text)

    def _dispatch(self, text: str) -> None:
        if not self._gate():
            logger.debug("event=realtime_skipped reason=gate_closed")
            return
        try:
            result = self._send(text)
        except Exception:
            logger.exception("event=realtime_send_failed")
            return
        # ChatTransmitter reports a failed write as False
        if result is not False:
            self.send_count += 1
