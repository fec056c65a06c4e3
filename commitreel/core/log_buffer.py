"""Bounded output buffer for run sessions."""

from __future__ import annotations

import threading
from collections import deque

from commitreel.constants import LOG_BUFFER_CAPACITY
from commitreel.core.models import LogPage


class LogBuffer:
    """Ring buffer of output lines with a monotonically increasing cursor.

    Cursor N addresses the N-th line ever written. Once more than `capacity`
    lines have been written the oldest are evicted; reading from an evicted
    cursor returns everything still retained.
    """

    def __init__(self, capacity: int = LOG_BUFFER_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._lines: deque[str] = deque(maxlen=capacity)
        self._written = 0
        self._lock = threading.Lock()

    def append(self, line: str) -> None:
        with self._lock:
            self._lines.append(line)
            self._written += 1

    def read(self, since: int = 0) -> LogPage:
        """Return retained lines at or after cursor `since` and the next cursor."""
        with self._lock:
            first = self._written - len(self._lines)
            start = max(since, first) - first
            lines = list(self._lines)[start:] if start < len(self._lines) else []
            return LogPage(lines=lines, next_cursor=self._written)

    @property
    def cursor(self) -> int:
        """Total number of lines ever written."""
        with self._lock:
            return self._written

    def __len__(self) -> int:
        with self._lock:
            return len(self._lines)
