from __future__ import annotations

import asyncio

import pytest

from yield_vault.activity import ActivityLog
from yield_vault.domain import Decision, PoolQuote, RebalancePhase, VaultSnapshot
from yield_vault.rebalance import (
    BaseSettlement,
    InvalidTransition,
    RebalanceOrchestrator,
    TimedSettlement,
)
from yield_vault.units import percent_to_ray

LABELS = {"pool-a": "SparkLend", "pool-b": "Aave V3", "pool-c": "Compound"}


def make_decision(best: str = "pool-a", should: bool = True) -> Decision:
    return Decision(
        best_pool_id=best,
        best_rate_raw=percent_to_ray(5.2),
        current_rate_raw=percent_to_ray(3.9),
        spread_raw=percent_to_ray(1.3),
        threshold_raw=percent_to_ray(1.0),
        should_rebalance=should,
    )


def make_snapshot(active: str = "pool-c") -> VaultSnapshot:
    return VaultSnapshot(
        active_pool_id=active,
        best_pool_id="pool-a",
        best_rate_raw=percent_to_ray(5.2),
        current_rate_raw=percent_to_ray(3.9),
        should_rebalance=True,
        rebalance_threshold_raw=percent_to_ray(1.0),
        quotes=(
            PoolQuote("pool-a", percent_to_ray(5.2)),
            PoolQuote("pool-c", percent_to_ray(3.9)),
        ),
    )


@pytest.fixture
def activity():
    return ActivityLog(capacity=20)


@pytest.fixture
def orchestrator(activity):
    phases: list[RebalancePhase] = []
    orch = RebalanceOrchestrator(
        activity,
        settlement=TimedSettlement(0),
        debounce_seconds=0,
        label_for=LABELS.__getitem__,
        on_phase=phases.append,
    )
    orch.phases = phases  # type: ignore[attr-defined]
    return orch


class GatedSettlement(BaseSettlement):
    """Blocks each leg until the test releases it."""

    def __init__(self):
        self.withdrawn = asyncio.Event()
        self.supplied = asyncio.Event()

    async def withdraw(self, task):
        await self.withdrawn.wait()

    async def supply(self, task):
        await self.supplied.wait()


async def wait_for_phase(orch: RebalanceOrchestrator, phase: RebalancePhase) -> None:
    for _ in range(100):
        if orch.phase is phase:
            return
        await asyncio.sleep(0)
    raise AssertionError(f"phase never reached {phase}, stuck at {orch.phase}")


def test_offer_enters_condition_met(orchestrator, activity):
    assert orchestrator.offer(make_decision(), active_pool_id="pool-c") is True

    assert orchestrator.phase is RebalancePhase.CONDITION_MET
    task = orchestrator.task
    assert task is not None
    assert (task.from_pool, task.to_pool) == ("pool-c", "pool-a")
    entry = activity.entries()[0]
    assert entry.event_type == "Logic Check"
    assert entry.details == "Rate Diff 1.30% > 1.00%. Initiating Callback..."


def test_offer_ignores_active_pool_as_target(orchestrator):
    assert orchestrator.offer(make_decision(best="pool-c"), "pool-c") is False
    assert orchestrator.phase is RebalancePhase.IDLE


def test_offer_ignores_when_below_threshold(orchestrator):
    assert orchestrator.offer(make_decision(should=False), "pool-c") is False
    assert orchestrator.task is None


def test_offer_while_withdrawing_is_noop(orchestrator):
    orchestrator.offer(make_decision(), "pool-c")
    orchestrator.begin_withdraw(make_decision())
    task = orchestrator.task

    assert orchestrator.offer(make_decision(best="pool-b"), "pool-c") is False
    assert orchestrator.task is task
    assert orchestrator.phase is RebalancePhase.WITHDRAWING


def test_condition_cleared_during_debounce_returns_to_idle(orchestrator, activity):
    orchestrator.offer(make_decision(), "pool-c")

    assert orchestrator.begin_withdraw(make_decision(should=False)) is False

    assert orchestrator.phase is RebalancePhase.IDLE
    assert orchestrator.task is None
    assert activity.entries()[0].event_type == "Condition Cleared"


def test_new_target_during_debounce_drops_task(orchestrator):
    orchestrator.offer(make_decision(best="pool-a"), "pool-c")

    assert orchestrator.begin_withdraw(make_decision(best="pool-b")) is False
    assert orchestrator.phase is RebalancePhase.IDLE


def test_step_by_step_lifecycle(orchestrator, activity):
    orchestrator.offer(make_decision(), "pool-c")
    assert orchestrator.begin_withdraw(make_decision()) is True
    assert orchestrator.begin_supply() is True

    updated = orchestrator.settle(make_snapshot())

    assert orchestrator.phase is RebalancePhase.SETTLED
    assert updated is not None
    assert updated.active_pool_id == "pool-a"
    assert updated.current_rate_raw == percent_to_ray(5.2)
    assert updated.should_rebalance is False

    orchestrator.reset()

    assert orchestrator.phase is RebalancePhase.IDLE
    assert orchestrator.phases == [  # type: ignore[attr-defined]
        RebalancePhase.CONDITION_MET,
        RebalancePhase.WITHDRAWING,
        RebalancePhase.SUPPLYING,
        RebalancePhase.SETTLED,
        RebalancePhase.IDLE,
    ]
    assert [e.event_type for e in activity.entries()] == [
        "Cycle Reset",
        "Rebalance Complete",
        "Supply",
        "Vault Action",
        "Logic Check",
    ]
    assert activity.entries()[1].details == "Vault now active in SparkLend at 5.20% APY"
    assert activity.entries()[3].details == (
        "Withdrawing from Compound → Supplying to SparkLend"
    )


def test_steps_from_wrong_phase_raise(orchestrator):
    with pytest.raises(InvalidTransition):
        orchestrator.begin_supply()
    with pytest.raises(InvalidTransition):
        orchestrator.begin_withdraw(make_decision())


def test_closed_orchestrator_stops_transitions(orchestrator):
    orchestrator.offer(make_decision(), "pool-c")
    orchestrator.begin_withdraw(make_decision())
    orchestrator.close()

    assert orchestrator.begin_supply() is False
    assert orchestrator.phase is RebalancePhase.WITHDRAWING
    assert orchestrator.offer(make_decision(), "pool-c") is False


@pytest.mark.asyncio
async def test_execute_runs_to_settlement(orchestrator):
    settled: list = []
    orchestrator.offer(make_decision(), "pool-c")

    result = await orchestrator.execute(
        latest_decision=make_decision,
        latest_snapshot=make_snapshot,
        on_settled=lambda snapshot, task: settled.append((snapshot, task)),
    )

    assert result is True
    assert orchestrator.phase is RebalancePhase.IDLE
    assert len(settled) == 1
    snapshot, task = settled[0]
    assert snapshot.active_pool_id == "pool-a"
    assert task.to_pool == "pool-a"


@pytest.mark.asyncio
async def test_execute_drops_task_when_condition_clears(orchestrator):
    settled: list = []
    orchestrator.offer(make_decision(), "pool-c")

    result = await orchestrator.execute(
        latest_decision=lambda: make_decision(should=False),
        latest_snapshot=make_snapshot,
        on_settled=lambda snapshot, task: settled.append(snapshot),
    )

    assert result is False
    assert settled == []
    assert orchestrator.phase is RebalancePhase.IDLE


@pytest.mark.asyncio
async def test_only_one_task_while_execute_in_flight(activity):
    settlement = GatedSettlement()
    orch = RebalanceOrchestrator(activity, settlement=settlement, debounce_seconds=0)
    orch.offer(make_decision(), "pool-c")

    running = asyncio.create_task(
        orch.execute(make_decision, make_snapshot, lambda snapshot, task: None)
    )
    await wait_for_phase(orch, RebalancePhase.WITHDRAWING)

    assert orch.offer(make_decision(best="pool-b"), "pool-c") is False

    settlement.withdrawn.set()
    await wait_for_phase(orch, RebalancePhase.SUPPLYING)
    assert orch.offer(make_decision(), "pool-c") is False

    settlement.supplied.set()
    assert await running is True
    assert orch.phase is RebalancePhase.IDLE
    assert orch.offer(make_decision(), "pool-c") is True


class RevertingSettlement(BaseSettlement):
    """Fails the given leg the way a reverted transaction would."""

    def __init__(self, leg: str):
        self.leg = leg

    async def withdraw(self, task):
        if self.leg == "withdraw":
            raise RuntimeError("withdraw reverted")

    async def supply(self, task):
        if self.leg == "supply":
            raise RuntimeError("supply reverted")


@pytest.mark.asyncio
@pytest.mark.parametrize("leg", ["withdraw", "supply"])
async def test_failed_settlement_returns_to_idle(activity, leg):
    phases: list[RebalancePhase] = []
    orch = RebalanceOrchestrator(
        activity,
        settlement=RevertingSettlement(leg),
        debounce_seconds=0,
        label_for=LABELS.__getitem__,
        on_phase=phases.append,
    )
    orch.offer(make_decision(), "pool-c")

    with pytest.raises(RuntimeError, match=f"{leg} reverted"):
        await orch.execute(make_decision, make_snapshot, lambda snapshot, task: None)

    assert orch.phase is RebalancePhase.IDLE
    assert orch.task is None
    assert phases[-1] is RebalancePhase.IDLE
    entry = activity.entries()[0]
    assert entry.event_type == "Rebalance Failed"
    assert entry.details == f"Compound → SparkLend: {leg} reverted"

    assert orch.offer(make_decision(), "pool-c") is True
