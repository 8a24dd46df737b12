"""Domain models for the vault monitor."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from ..units import ray_to_percent


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PoolQuote:
    """A single pool's rate as read in one polling cycle."""

    pool_id: str
    rate_raw: int  # Ray (1e27)
    fetch_succeeded: bool = True

    @property
    def rate_percent(self) -> str:
        return ray_to_percent(self.rate_raw)


@dataclass(frozen=True)
class VaultSnapshot:
    """One point-in-time read of the vault.

    Snapshots are never patched in place; callers build a new one with
    ``dataclasses.replace``.
    """

    active_pool_id: str
    best_pool_id: str
    best_rate_raw: int
    current_rate_raw: int
    should_rebalance: bool
    rebalance_threshold_raw: int
    quotes: tuple[PoolQuote, ...]
    endpoint: str | None = None
    fetched_at: datetime | None = None

    def quote_for(self, pool_id: str) -> PoolQuote | None:
        wanted = pool_id.lower()
        for quote in self.quotes:
            if quote.pool_id.lower() == wanted:
                return quote
        return None


@dataclass(frozen=True)
class Decision:
    """Outcome of evaluating a snapshot against the rebalance threshold."""

    best_pool_id: str | None
    best_rate_raw: int
    current_rate_raw: int
    spread_raw: int
    threshold_raw: int
    should_rebalance: bool
    insufficient_data: bool = False
    ledger_should_rebalance: bool | None = None

    @classmethod
    def insufficient(cls, snapshot: VaultSnapshot) -> Decision:
        """Degraded decision used when no pool produced a usable quote."""
        return cls(
            best_pool_id=None,
            best_rate_raw=0,
            current_rate_raw=snapshot.current_rate_raw,
            spread_raw=0,
            threshold_raw=snapshot.rebalance_threshold_raw,
            should_rebalance=False,
            insufficient_data=True,
            ledger_should_rebalance=snapshot.should_rebalance,
        )

    @property
    def profit_delta_percent(self) -> str:
        """Positive part of the spread, for display."""
        return ray_to_percent(max(self.spread_raw, 0))


class RebalancePhase(str, Enum):
    IDLE = "idle"
    CONDITION_MET = "condition_met"
    WITHDRAWING = "withdrawing"
    SUPPLYING = "supplying"
    SETTLED = "settled"


@dataclass
class RebalanceTask:
    """The single in-flight rebalance, if any."""

    phase: RebalancePhase
    from_pool: str
    to_pool: str
    started_at: datetime
    target_rate_raw: int


class SourceChain(str, Enum):
    ORIGIN = "origin"
    DESTINATION = "destination"


@dataclass(frozen=True)
class ActivityEntry:
    """One lifecycle log line shown next to the vault."""

    timestamp: datetime
    source_chain: SourceChain
    chain_label: str
    event_type: str
    details: str


__all__ = [
    "ActivityEntry",
    "Decision",
    "PoolQuote",
    "RebalancePhase",
    "RebalanceTask",
    "SourceChain",
    "VaultSnapshot",
    "utcnow",
]
