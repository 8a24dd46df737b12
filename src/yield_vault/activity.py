from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable
from datetime import datetime

from .domain import ActivityEntry, SourceChain, utcnow

logger = logging.getLogger(__name__)


class ActivityLog:
    """Bounded lifecycle log, newest entry first."""

    def __init__(
        self,
        capacity: int = 20,
        origin_label: str = "Reactive",
        destination_label: str = "Sepolia",
        clock: Callable[[], datetime] = utcnow,
    ):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._entries: deque[ActivityEntry] = deque(maxlen=capacity)
        self._labels = {
            SourceChain.ORIGIN: origin_label,
            SourceChain.DESTINATION: destination_label,
        }
        self._clock = clock
        self._listeners: list[Callable[[ActivityEntry], None]] = []

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def capacity(self) -> int:
        return self._entries.maxlen or 0

    def add_listener(self, listener: Callable[[ActivityEntry], None]) -> None:
        self._listeners.append(listener)

    def add(self, source_chain: SourceChain, event_type: str, details: str) -> ActivityEntry:
        entry = ActivityEntry(
            timestamp=self._clock(),
            source_chain=source_chain,
            chain_label=self._labels[source_chain],
            event_type=event_type,
            details=details,
        )
        self._entries.appendleft(entry)
        logger.info("[%s] %s: %s", entry.chain_label, event_type, details)
        for listener in self._listeners:
            listener(entry)
        return entry

    def entries(self) -> list[ActivityEntry]:
        return list(self._entries)
