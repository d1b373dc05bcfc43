# =============================================================================
# takeover_engine/log_stream.py
#
# LogStream — bounded, newest-first record of core decisions.
# A fixed-capacity ring buffer (collections.deque with maxlen); appending
# past capacity silently drops the oldest entry.
# =============================================================================

import collections
import time
import uuid
from typing import Callable, Deque, Iterator, Tuple

from config import LOG_CAPACITY
from takeover_engine.data_structures import LogEntry, Severity
from core.logger import get_logger, level_for

log = get_logger(__name__)


class LogStream:
    """
    Usage:
        stream = LogStream()
        stream.append("Vehicle safely parked.", Severity.INFO)
        for entry in stream:        # newest first
            ...
    """

    def __init__(
        self,
        capacity: int = LOG_CAPACITY,
        clock: Callable[[], float] = time.time,
    ):
        if capacity < 1:
            raise ValueError(f"LogStream capacity must be >= 1, got {capacity}")
        self._entries: Deque[LogEntry] = collections.deque(maxlen=capacity)
        self._clock = clock

    def append(self, message: str, severity: Severity = Severity.INFO) -> LogEntry:
        entry = LogEntry(
            id=uuid.uuid4().hex[:12],
            timestamp_ms=int(self._clock() * 1000),
            message=message,
            severity=Severity(severity),
        )
        # appendleft on a full deque evicts from the right (the oldest)
        self._entries.appendleft(entry)
        log.log(level_for(entry.severity), f"[LogStream] {message}")
        return entry

    def entries(self) -> Tuple[LogEntry, ...]:
        """Immutable copy, newest first."""
        return tuple(self._entries)

    @property
    def capacity(self) -> int:
        return self._entries.maxlen

    def __iter__(self) -> Iterator[LogEntry]:
        return iter(tuple(self._entries))

    def __len__(self) -> int:
        return len(self._entries)
