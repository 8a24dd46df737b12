"""Timer-driven engine tying the rate source, decision rule and orchestrator together."""

from __future__ import annotations

import asyncio
import itertools
import random
from collections.abc import Coroutine
from typing import Any

from .activity import ActivityLog
from .constants import CRON_BLOCK_BASE
from .decision import NoValidQuotes, evaluate
from .domain import Decision, RebalanceTask, SourceChain, VaultSnapshot
from .logger import get_logger
from .rebalance import RebalanceOrchestrator, TimedSettlement
from .settings import VaultSettings
from .sources import BaseRateSource, RateChange, RateSourceError, build_rate_source
from .store import ReadModel
from .units import ray_to_percent

logger = get_logger(__name__)


class VaultEngine:
    """Runs the poll and tick timers on the current event loop.

    All state changes happen between awaits on one loop, so a snapshot is
    applied and evaluated as a unit. Fetches may overlap; each one carries a
    sequence number and only results newer than the last applied one are used.
    """

    def __init__(
        self,
        settings: VaultSettings,
        source: BaseRateSource,
        read_model: ReadModel | None = None,
        activity: ActivityLog | None = None,
        orchestrator: RebalanceOrchestrator | None = None,
        rng: random.Random | None = None,
    ):
        self.settings = settings
        self.source = source
        self.read_model = read_model or ReadModel()
        self.activity = activity or ActivityLog(
            capacity=settings.activity_log_size,
            origin_label=settings.origin_chain_label,
            destination_label=settings.destination_chain_label,
        )
        self.activity.add_listener(
            lambda _entry: self.read_model.publish_activity(self.activity.entries())
        )
        self.orchestrator = orchestrator or RebalanceOrchestrator(
            self.activity,
            settlement=TimedSettlement(settings.rebalance.step_seconds),
            debounce_seconds=settings.rebalance.debounce_seconds,
            label_for=source.label_for,
        )
        if self.orchestrator.on_phase is None:
            self.orchestrator.on_phase = self.read_model.publish_phase
        self.rng = rng or random.Random()

        self._request_seq = itertools.count(1)
        self._applied_seq = 0
        self._blocks_until_cron = settings.initial_blocks_until_cron
        self._tasks: set[asyncio.Task[Any]] = set()
        self._started = False
        self._closed = False
        self._stopped = asyncio.Event()

    @classmethod
    def from_settings(
        cls, settings: VaultSettings, rng: random.Random | None = None
    ) -> VaultEngine:
        activity = ActivityLog(
            capacity=settings.activity_log_size,
            origin_label=settings.origin_chain_label,
            destination_label=settings.destination_chain_label,
        )

        def _log_rate_change(change: RateChange) -> None:
            activity.add(
                SourceChain.DESTINATION,
                "Rate Update",
                f"{change.label} rate updated to {ray_to_percent(change.rate_raw)}%",
            )

        source = build_rate_source(settings, on_rate_change=_log_rate_change)
        return cls(settings, source, activity=activity, rng=rng)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def poll_interval(self) -> float:
        if self.settings.is_live:
            return self.settings.poll_interval_seconds
        return self.settings.simulation.drift_interval_seconds

    @property
    def blocks_until_cron(self) -> int:
        return self._blocks_until_cron

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Task %s failed: %s", task.get_name(), exc, exc_info=exc)

    async def start(self) -> None:
        """Fetch once immediately, then keep polling and ticking."""
        if self._started:
            return
        self._started = True
        logger.info(
            "Starting %s monitor (poll every %.1fs, tick every %.1fs)",
            self.source.name,
            self.poll_interval,
            self.settings.tick_interval_seconds,
        )
        self.read_model.publish_countdown(self._blocks_until_cron)
        self._spawn(self._poll_loop(), "poll-loop")
        self._spawn(self._tick_loop(), "tick-loop")

    async def stop(self) -> None:
        """Cancel every timer and in-flight fetch; no state changes afterwards."""
        if self._closed:
            return
        self._closed = True
        self.orchestrator.close()

        current = asyncio.current_task()
        pending = [task for task in self._tasks if task is not current]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        await self.source.close()
        self._stopped.set()
        logger.info("Monitor stopped")

    async def wait_closed(self) -> None:
        await self._stopped.wait()

    async def __aenter__(self) -> VaultEngine:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    async def _poll_loop(self) -> None:
        while not self._closed:
            # Each fetch runs on its own so a slow endpoint never delays the next poll
            self._spawn(self.poll_once(), "fetch")
            await asyncio.sleep(self.poll_interval)

    async def _tick_loop(self) -> None:
        while not self._closed:
            await asyncio.sleep(self.settings.tick_interval_seconds)
            self.tick()

    async def poll_once(self) -> bool:
        """Run one fetch cycle and apply its outcome if it is still the newest."""
        if self._closed:
            return False
        seq = next(self._request_seq)
        try:
            snapshot = await self.source.fetch_snapshot()
        except RateSourceError as e:
            return self._apply_error(seq, e)
        except Exception as e:
            logger.exception("Unexpected error from %s source", self.source.name)
            return self._apply_error(seq, e)
        return self.apply_snapshot(seq, snapshot)

    def apply_snapshot(self, seq: int, snapshot: VaultSnapshot) -> bool:
        if self._closed:
            return False
        if seq <= self._applied_seq:
            logger.debug(
                "Discarding stale snapshot #%d (already applied #%d)",
                seq,
                self._applied_seq,
            )
            return False
        self._applied_seq = seq
        self.read_model.publish_snapshot(snapshot)
        self.evaluate()
        return True

    def _apply_error(self, seq: int, error: Exception) -> bool:
        # A failure carries no data, so it does not advance the applied sequence
        if self._closed or seq <= self._applied_seq:
            return False
        logger.error("Vault read failed, keeping last snapshot: %s", error)
        self.read_model.publish_error(str(error))
        return True

    def evaluate(self) -> Decision | None:
        """Evaluate the current snapshot and offer the result to the orchestrator."""
        snapshot = self.read_model.snapshot
        if snapshot is None or self._closed:
            return None

        try:
            decision = evaluate(snapshot)
        except NoValidQuotes:
            logger.warning("No pool returned a usable rate; holding position")
            decision = Decision.insufficient(snapshot)

        self.read_model.publish_decision(decision)
        if self.orchestrator.offer(decision, snapshot.active_pool_id):
            self._spawn(self._run_rebalance(), "rebalance")
        return decision

    def tick(self) -> None:
        """Advance the cron countdown and re-evaluate the latest snapshot."""
        if self._closed:
            return
        blocks = self._blocks_until_cron - 1
        if blocks <= 0:
            block = CRON_BLOCK_BASE + self.rng.randrange(1000)
            self.activity.add(
                SourceChain.ORIGIN, "Cron Job", f"Triggered (Block #{block})"
            )
            blocks = self.settings.blocks_per_cycle
        self._blocks_until_cron = blocks
        self.read_model.publish_countdown(blocks)
        self.evaluate()

    async def _run_rebalance(self) -> None:
        await self.orchestrator.execute(
            latest_decision=lambda: self.read_model.decision,
            latest_snapshot=lambda: self.read_model.snapshot,
            on_settled=self._on_settled,
        )

    def _on_settled(self, updated: VaultSnapshot | None, task: RebalanceTask) -> None:
        if self._closed:
            return
        self.source.apply_rebalance(task.to_pool)
        if updated is not None:
            self.read_model.publish_snapshot(updated)
            self.evaluate()
