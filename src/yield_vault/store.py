"""Read model exposed to whatever renders the vault state."""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from enum import Enum
from typing import Any

from .domain import ActivityEntry, Decision, RebalancePhase, VaultSnapshot
from .history import TransactionRecord, load_transaction_history

logger = logging.getLogger(__name__)


class Channel(str, Enum):
    SNAPSHOT = "snapshot"
    DECISION = "decision"
    PHASE = "phase"
    ACTIVITY = "activity"
    ERROR = "error"
    COUNTDOWN = "countdown"


class ReadModel:
    """Latest values of each channel, each replaced as a whole.

    Subscribers are called synchronously with the new value. A subscriber
    that raises is logged and skipped so it cannot break the engine.
    """

    def __init__(self) -> None:
        self.snapshot: VaultSnapshot | None = None
        self.decision: Decision | None = None
        self.phase: RebalancePhase = RebalancePhase.IDLE
        self.error: str | None = None
        self.blocks_until_cron: int | None = None
        self.activity: list[ActivityEntry] = []
        # Static sample records; nothing indexes real callbacks yet
        self.transactions: list[TransactionRecord] = load_transaction_history()
        self._subscribers: dict[Channel, list[Callable[[Any], None]]] = defaultdict(
            list
        )

    @property
    def is_loading(self) -> bool:
        return self.snapshot is None and self.error is None

    def subscribe(
        self, channel: Channel, callback: Callable[[Any], None]
    ) -> Callable[[], None]:
        """Register ``callback`` for ``channel``; returns an unsubscribe function."""
        self._subscribers[channel].append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers[channel]:
                self._subscribers[channel].remove(callback)

        return _unsubscribe

    def _notify(self, channel: Channel, value: Any) -> None:
        for callback in list(self._subscribers[channel]):
            try:
                callback(value)
            except Exception as e:
                logger.error("Subscriber for %s failed: %s", channel.value, e)

    def publish_snapshot(self, snapshot: VaultSnapshot) -> None:
        self.snapshot = snapshot
        self.error = None
        self._notify(Channel.SNAPSHOT, snapshot)

    def publish_decision(self, decision: Decision) -> None:
        self.decision = decision
        self._notify(Channel.DECISION, decision)

    def publish_phase(self, phase: RebalancePhase) -> None:
        if phase == self.phase:
            return
        self.phase = phase
        self._notify(Channel.PHASE, phase)

    def publish_error(self, message: str) -> None:
        """Record a fetch failure; the previous snapshot stays in place."""
        self.error = message
        self._notify(Channel.ERROR, message)

    def publish_activity(self, entries: list[ActivityEntry]) -> None:
        self.activity = entries
        self._notify(Channel.ACTIVITY, entries)

    def publish_countdown(self, blocks: int) -> None:
        self.blocks_until_cron = blocks
        self._notify(Channel.COUNTDOWN, blocks)
