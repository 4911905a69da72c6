# dispatch_queue.py  (final-text queue: split to chatbox size, pace, gate on mic state)
from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Callable, Deque, List, Optional

logger = logging.getLogger(__name__)

MAX_SEGMENT_LENGTH = 144        # VRChat chatbox limit
QUEUE_INTERVAL_SEC = 8.0        # reading time between two segments
TYPING_DELAY_SEC = 0.4          # pause before the typing indicator goes up
ELLIPSIS = " ..."               # "more is coming"


def split_text(text: str, max_length: int = MAX_SEGMENT_LENGTH) -> List[str]:
    """
    Greedy word packing, at most `max_length` chars per segment.
    Text with no whitespace at all is hard-cut; a single word longer than the
    limit is hard-cut too so nothing is lost.
    """
    text = text or ""
    if len(text) <= max_length:
        return [text]

    if not any(ch.isspace() for ch in text):
        return [text[i:i + max_length] for i in range(0, len(text), max_length)]

    segments: List[str] = []
    current = ""
    for word in text.split():
        while len(word) > max_length:
            if current:
                segments.append(current)
                current = ""
            segments.append(word[:max_length])
            word = word[max_length:]

        if not current:
            current = word
        elif len(current) + 1 + len(word) <= max_length:
            current = f"{current} {word}"
        else:
            segments.append(current)
            current = word

    if current:
        segments.append(current)
    return segments


def _always_open() -> bool:
    return True


class DispatchQueue:
    """
    FIFO of chatbox-sized segments drained by a single background thread.
    A segment that comes up while the gate is closed is consumed and dropped,
    so stale captions never resurface after an unmute.
    """

    def __init__(
        self,
        transmitter,
        *,
        gate: Callable[[], bool] = _always_open,
        max_segment_length: int = MAX_SEGMENT_LENGTH,
        queue_interval_seconds: float = QUEUE_INTERVAL_SEC,
        typing_delay_seconds: float = TYPING_DELAY_SEC,
        on_sent: Optional[Callable[[str], None]] = None,
    ):
        self._transmitter = transmitter
        self._gate = gate
        self._on_sent = on_sent
        self.configure(
            max_segment_length=max_segment_length,
            queue_interval_seconds=queue_interval_seconds,
            typing_delay_seconds=typing_delay_seconds,
        )

        self._lock = threading.Lock()
        self._segments: Deque[str] = deque()
        self._draining = False
        self._drain_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._closed = False
        self.drain_started_count = 0

    def configure(
        self,
        *,
        max_segment_length: int,
        queue_interval_seconds: float,
        typing_delay_seconds: float,
    ) -> None:
        self.max_segment_length = max_segment_length
        self.queue_interval_seconds = queue_interval_seconds
        self.typing_delay_seconds = typing_delay_seconds

    # ===== state =====
    def __len__(self) -> int:
        with self._lock:
            return len(self._segments)

    @property
    def is_draining(self) -> bool:
        return self._draining

    def pending(self) -> List[str]:
        with self._lock:
            return list(self._segments)

    # ===== submit =====
    def submit(self, text: str) -> int:
        """Queue `text` (split as needed). Returns the number of segments queued."""
        segments = split_text(text, self.max_segment_length)

        with self._lock:
            if self._closed:
                logger.debug("event=queue_submit_rejected reason=closed")
                return 0
            self._segments.extend(segments)
            depth = len(self._segments)
            thread = None
            if not self._draining:
                self._draining = True
                self.drain_started_count += 1
                thread = threading.Thread(target=self._drain, name="chatbox-drain", daemon=True)
                self._drain_thread = thread

        logger.info("event=queue_submit segments=%d depth=%d", len(segments), depth)
        if thread is not None:
            thread.start()
        return len(segments)

    # ===== drain loop =====
    def _drain(self) -> None:
        try:
            while not self._stop_event.is_set():
                with self._lock:
                    if not self._segments:
                        self._draining = False
                        self._drain_thread = None
                        return
                    segment = self._segments.popleft()
                    remaining = len(self._segments)

                if not self._gate():
                    logger.info("event=queue_segment_dropped reason=gate_closed remaining=%d", remaining)
                    continue

                message = f"{segment}{ELLIPSIS}" if remaining else segment
                if self._transmitter.send_chat(message):
                    logger.info("event=queue_sent chars=%d remaining=%d", len(message), remaining)
                    if self._on_sent is not None:
                        try:
                            self._on_sent(message)
                        except Exception:
                            logger.exception("event=queue_on_sent_failed")

                if remaining:
                    if self._stop_event.wait(self.typing_delay_seconds):
                        break
                    self._transmitter.send_typing(True)
                    if self._stop_event.wait(self.queue_interval_seconds):
                        break
        except Exception:
            logger.exception("event=queue_drain_failed")
        finally:
            # stopped or crashed; a normal exit already went idle under the lock
            with self._lock:
                if self._drain_thread is threading.current_thread():
                    self._draining = False
                    self._drain_thread = None

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until the current drain run finishes. True if idle."""
        with self._lock:
            thread = self._drain_thread
        if thread is None or thread is threading.current_thread():
            return not self._draining
        thread.join(timeout)
        return not thread.is_alive()

    # ===== teardown =====
    def clear(self) -> int:
        """Drop everything still queued. Returns how many segments were dropped."""
        with self._lock:
            dropped = len(self._segments)
            self._segments.clear()
        return dropped

    def close(self, timeout: Optional[float] = 2.0) -> None:
        """Discard queued segments and stop the drain thread."""
        with self._lock:
            self._closed = True
            thread = self._drain_thread
        self._stop_event.set()
        dropped = self.clear()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        if dropped:
            logger.info("event=queue_discarded segments=%d", dropped)
