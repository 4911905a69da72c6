# history.py  (recent chatbox sends, newest first)
from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Deque, List, Optional

MAX_HISTORY_ENTRIES = 100


@dataclass(frozen=True)
class HistoryEntry:
    time: str       # HH:MM:SS, local
    message: str


class ChatHistory:
    def __init__(self, max_entries: int = MAX_HISTORY_ENTRIES):
        self._lock = threading.Lock()
        self._entries: Deque[HistoryEntry] = deque(maxlen=max_entries)

    def add(self, message: str, when: Optional[datetime] = None) -> HistoryEntry:
        entry = HistoryEntry(time=(when or datetime.now()).strftime("%H:%M:%S"), message=message)
        with self._lock:
            self._entries.appendleft(entry)
        return entry

    def resize(self, max_entries: int) -> None:
        with self._lock:
            if self._entries.maxlen != max_entries:
                # newest are on the left; keep those
                self._entries = deque(list(self._entries)[:max_entries], maxlen=max_entries)

    def entries(self) -> List[HistoryEntry]:
        with self._lock:
            return list(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
