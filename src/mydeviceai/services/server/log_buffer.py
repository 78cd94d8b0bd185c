"""Bounded in-memory log of the supervised server's output."""

from collections import deque
from typing import Literal

from mydeviceai.models.registry import utc_now
from mydeviceai.models.server import LogEntry

DEFAULT_CAPACITY = 1000


class LogBuffer:
    """Fixed-capacity ring of log entries; the oldest entry is evicted first."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        self._entries: deque[LogEntry] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        assert self._entries.maxlen is not None
        return self._entries.maxlen

    def append(self, level: Literal["stdout", "stderr", "system"], message: str) -> LogEntry:
        entry = LogEntry(timestamp=utc_now(), level=level, message=message)
        self._entries.append(entry)
        return entry

    def entries(self, limit: int | None = None) -> list[LogEntry]:
        """Entries oldest first; with ``limit``, only the newest ``limit`` entries."""
        items = list(self._entries)
        if limit is not None:
            items = items[-limit:] if limit > 0 else []
        return items

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
