"""Rebalance lifecycle as an explicit state machine.

IDLE -> CONDITION_MET -> WITHDRAWING -> SUPPLYING -> SETTLED -> IDLE

Each transition is a synchronous method so it can be driven and tested on
its own. ``execute`` sequences them on a single coroutine. The waits between
steps come from a ``BaseSettlement``.
"""

from __future__ import annotations

import asyncio
import dataclasses
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime

from .activity import ActivityLog
from .constants import pool_label
from .domain import (
    Decision,
    RebalancePhase,
    RebalanceTask,
    SourceChain,
    VaultSnapshot,
    utcnow,
)
from .logger import get_logger
from .units import format_spread, ray_to_percent

logger = get_logger(__name__)


class InvalidTransition(RuntimeError):
    """Raised when a step is called from the wrong phase."""


class BaseSettlement(ABC):
    """Waits for each leg of a rebalance to complete.

    A live implementation would submit the withdraw and supply transactions
    and wait for their confirmation instead of a fixed delay.
    """

    @abstractmethod
    async def withdraw(self, task: RebalanceTask) -> None:
        ...

    @abstractmethod
    async def supply(self, task: RebalanceTask) -> None:
        ...


class TimedSettlement(BaseSettlement):
    """Fixed delay per leg, standing in for cross-chain settlement latency."""

    def __init__(self, step_seconds: float = 2.0):
        self.step_seconds = step_seconds

    async def withdraw(self, task: RebalanceTask) -> None:
        await asyncio.sleep(self.step_seconds)

    async def supply(self, task: RebalanceTask) -> None:
        await asyncio.sleep(self.step_seconds)


def _same_pool(a: str | None, b: str | None) -> bool:
    return a is not None and b is not None and a.lower() == b.lower()


class RebalanceOrchestrator:
    """Owns the single rebalance task; at most one exists at a time."""

    def __init__(
        self,
        activity: ActivityLog,
        settlement: BaseSettlement | None = None,
        debounce_seconds: float = 0.5,
        label_for: Callable[[str], str] = pool_label,
        on_phase: Callable[[RebalancePhase], None] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.activity = activity
        self.settlement = settlement or TimedSettlement()
        self.debounce_seconds = debounce_seconds
        self.label_for = label_for
        self.on_phase = on_phase
        self._clock = clock
        self._task: RebalanceTask | None = None
        self._closed = False

    @property
    def task(self) -> RebalanceTask | None:
        return self._task

    @property
    def phase(self) -> RebalancePhase:
        return self._task.phase if self._task else RebalancePhase.IDLE

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Stop all further transitions."""
        self._closed = True

    def _set_phase(self, phase: RebalancePhase) -> None:
        if self._task is not None:
            self._task.phase = phase
        logger.debug("Rebalance phase -> %s", phase.value)
        if self.on_phase is not None:
            self.on_phase(phase)

    def _require(self, phase: RebalancePhase) -> RebalanceTask:
        if self._task is None or self._task.phase is not phase:
            raise InvalidTransition(
                f"Expected phase {phase.value}, current phase is {self.phase.value}"
            )
        return self._task

    def offer(self, decision: Decision, active_pool_id: str) -> bool:
        """Start a rebalance if the decision calls for one and none is running.

        Returns True when a new task entered CONDITION_MET.
        """
        if self._closed:
            return False
        if self._task is not None:
            if decision.should_rebalance:
                logger.debug(
                    "Ignoring rebalance condition while phase is %s",
                    self._task.phase.value,
                )
            return False
        if not decision.should_rebalance or decision.best_pool_id is None:
            return False
        # The active pool can be reported as best after rounding; never move onto itself
        if _same_pool(decision.best_pool_id, active_pool_id):
            return False

        self._task = RebalanceTask(
            phase=RebalancePhase.CONDITION_MET,
            from_pool=active_pool_id,
            to_pool=decision.best_pool_id,
            started_at=self._clock(),
            target_rate_raw=decision.best_rate_raw,
        )
        self._set_phase(RebalancePhase.CONDITION_MET)
        self.activity.add(
            SourceChain.ORIGIN,
            "Logic Check",
            f"Rate Diff {format_spread(decision.spread_raw)}% > "
            f"{ray_to_percent(decision.threshold_raw)}%. Initiating Callback...",
        )
        return True

    def begin_withdraw(self, latest: Decision | None) -> bool:
        """Leave the debounce window.

        Moves to WITHDRAWING if the latest decision still points at the same
        target, otherwise drops the task and returns to IDLE.
        """
        task = self._require(RebalancePhase.CONDITION_MET)
        if self._closed:
            return False

        still_met = (
            latest is not None
            and latest.should_rebalance
            and _same_pool(latest.best_pool_id, task.to_pool)
        )
        if not still_met:
            self._task = None
            self._set_phase(RebalancePhase.IDLE)
            self.activity.add(
                SourceChain.ORIGIN,
                "Condition Cleared",
                f"Spread no longer favours {self.label_for(task.to_pool)}; "
                f"staying in {self.label_for(task.from_pool)}",
            )
            return False

        task.target_rate_raw = latest.best_rate_raw
        self._set_phase(RebalancePhase.WITHDRAWING)
        self.activity.add(
            SourceChain.DESTINATION,
            "Vault Action",
            f"Withdrawing from {self.label_for(task.from_pool)} → "
            f"Supplying to {self.label_for(task.to_pool)}",
        )
        return True

    def begin_supply(self) -> bool:
        task = self._require(RebalancePhase.WITHDRAWING)
        if self._closed:
            return False
        self._set_phase(RebalancePhase.SUPPLYING)
        self.activity.add(
            SourceChain.DESTINATION,
            "Supply",
            f"Supplying to {self.label_for(task.to_pool)}",
        )
        return True

    def settle(self, snapshot: VaultSnapshot | None) -> VaultSnapshot | None:
        """Mark the task settled and return the snapshot moved to the target.

        Returns None when there is no snapshot to update or the orchestrator
        was closed.
        """
        task = self._require(RebalancePhase.SUPPLYING)
        if self._closed:
            return None
        self._set_phase(RebalancePhase.SETTLED)
        self.activity.add(
            SourceChain.DESTINATION,
            "Rebalance Complete",
            f"Vault now active in {self.label_for(task.to_pool)} at "
            f"{ray_to_percent(task.target_rate_raw)}% APY",
        )
        if snapshot is None:
            return None
        return dataclasses.replace(
            snapshot,
            active_pool_id=task.to_pool,
            current_rate_raw=task.target_rate_raw,
            should_rebalance=False,
        )

    def abort(self, error: BaseException) -> None:
        """Drop the in-flight task after a failed settlement leg."""
        if self._task is None or self._closed:
            return
        task = self._task
        self._task = None
        self._set_phase(RebalancePhase.IDLE)
        self.activity.add(
            SourceChain.DESTINATION,
            "Rebalance Failed",
            f"{self.label_for(task.from_pool)} → {self.label_for(task.to_pool)}: {error}",
        )

    def reset(self) -> None:
        task = self._require(RebalancePhase.SETTLED)
        if self._closed:
            return
        self._task = None
        self._set_phase(RebalancePhase.IDLE)
        self.activity.add(
            SourceChain.ORIGIN,
            "Cycle Reset",
            f"Monitoring from {self.label_for(task.to_pool)}",
        )

    async def execute(
        self,
        latest_decision: Callable[[], Decision | None],
        latest_snapshot: Callable[[], VaultSnapshot | None],
        on_settled: Callable[[VaultSnapshot | None, RebalanceTask], None],
    ) -> bool:
        """Drive a CONDITION_MET task to completion.

        Args:
            latest_decision: Returns the newest decision when called.
            latest_snapshot: Returns the newest snapshot when called.
            on_settled: Receives the updated snapshot and the task once settled,
                before the machine returns to IDLE.

        Returns:
            True if the rebalance settled, False if it was dropped or closed.

        Raises:
            Exception: Whatever a settlement leg raised, after the task has
                been aborted back to IDLE.
        """
        task = self._require(RebalancePhase.CONDITION_MET)

        await asyncio.sleep(self.debounce_seconds)
        if not self.begin_withdraw(latest_decision()):
            return False

        try:
            await self.settlement.withdraw(task)
        except Exception as e:
            self.abort(e)
            raise
        if not self.begin_supply():
            return False

        try:
            await self.settlement.supply(task)
        except Exception as e:
            self.abort(e)
            raise
        if self._closed:
            return False
        updated = self.settle(latest_snapshot())
        on_settled(updated, task)
        self.reset()
        logger.info(
            "Rebalance %s -> %s settled",
            self.label_for(task.from_pool),
            self.label_for(task.to_pool),
        )
        return True
