from __future__ import annotations

import asyncio
import random
import re

import pytest

from yield_vault.domain import PoolQuote, RebalancePhase, VaultSnapshot
from yield_vault.engine import VaultEngine
from yield_vault.settings import VaultSettings
from yield_vault.sources import AllEndpointsUnavailable, BaseRateSource, SimulatedRateSource
from yield_vault.sources.base import DecodeError, EndpointUnreachable
from yield_vault.store import Channel
from yield_vault.units import percent_to_ray


def make_snapshot(
    active: str = "pool-a",
    rates: dict[str, float] | None = None,
    threshold: float = 1.0,
    failed: frozenset[str] = frozenset(),
) -> VaultSnapshot:
    rates = rates or {"pool-a": 5.2, "pool-b": 4.8, "pool-c": 3.9}
    quotes = tuple(
        PoolQuote(pool, percent_to_ray(rate), pool not in failed)
        for pool, rate in rates.items()
    )
    best = max(quotes, key=lambda q: q.rate_raw)
    current = percent_to_ray(rates[active])
    return VaultSnapshot(
        active_pool_id=active,
        best_pool_id=best.pool_id,
        best_rate_raw=best.rate_raw,
        current_rate_raw=current,
        should_rebalance=best.rate_raw - current > percent_to_ray(threshold),
        rebalance_threshold_raw=percent_to_ray(threshold),
        quotes=quotes,
    )


class ControlledSource(BaseRateSource):
    """Each fetch waits on a future the test resolves."""

    def __init__(self):
        self.pending: list[asyncio.Future] = []
        self.applied: list[str] = []
        self.closed = False

    @property
    def name(self) -> str:
        return "controlled"

    async def fetch_snapshot(self) -> VaultSnapshot:
        future = asyncio.get_running_loop().create_future()
        self.pending.append(future)
        return await future

    def apply_rebalance(self, to_pool: str) -> None:
        self.applied.append(to_pool)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def settings():
    return VaultSettings(
        mode="simulated",
        tick_interval_seconds=60,
        rebalance={"debounce_seconds": 0, "step_seconds": 0},
    )


@pytest.fixture
def source():
    return ControlledSource()


@pytest.fixture
def engine(settings, source):
    return VaultEngine(settings, source, rng=random.Random(1))


async def wait_until(predicate, steps: int = 200) -> None:
    for _ in range(steps):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


@pytest.mark.asyncio
async def test_late_older_response_is_discarded(engine, source):
    first = asyncio.create_task(engine.poll_once())
    second = asyncio.create_task(engine.poll_once())
    await wait_until(lambda: len(source.pending) == 2)

    newer = make_snapshot(active="pool-b")
    older = make_snapshot(active="pool-c")
    source.pending[1].set_result(newer)
    assert await second is True

    source.pending[0].set_result(older)
    assert await first is False

    assert engine.read_model.snapshot is newer


@pytest.mark.asyncio
async def test_fetch_failure_keeps_previous_snapshot(engine, source):
    good = make_snapshot()
    ok = asyncio.create_task(engine.poll_once())
    await wait_until(lambda: len(source.pending) == 1)
    source.pending[0].set_result(good)
    await ok

    failing = asyncio.create_task(engine.poll_once())
    await wait_until(lambda: len(source.pending) == 2)
    source.pending[1].set_exception(
        AllEndpointsUnavailable(EndpointUnreachable("https://rpc.example", "down"))
    )
    assert await failing is True

    assert engine.read_model.snapshot is good
    assert "All RPC endpoints failed" in (engine.read_model.error or "")


@pytest.mark.asyncio
async def test_stale_error_after_newer_success_is_ignored(engine, source):
    first = asyncio.create_task(engine.poll_once())
    second = asyncio.create_task(engine.poll_once())
    await wait_until(lambda: len(source.pending) == 2)

    source.pending[1].set_result(make_snapshot())
    await second
    source.pending[0].set_exception(AllEndpointsUnavailable(None))

    assert await first is False
    assert engine.read_model.error is None


@pytest.mark.asyncio
async def test_unexpected_source_error_is_published(engine, source):
    pending = asyncio.create_task(engine.poll_once())
    await wait_until(lambda: len(source.pending) == 1)
    source.pending[0].set_exception(ValueError("Expecting value: line 1 column 1"))

    assert await pending is True

    assert engine.read_model.snapshot is None
    assert engine.read_model.is_loading is False
    assert "Expecting value" in engine.read_model.error


@pytest.mark.asyncio
async def test_decode_error_from_source_is_published(engine, source):
    pending = asyncio.create_task(engine.poll_once())
    await wait_until(lambda: len(source.pending) == 1)
    source.pending[0].set_exception(DecodeError("https://rpc.example", "bad body"))

    assert await pending is True
    assert engine.read_model.error == "https://rpc.example: bad body"


def test_all_failed_quotes_publish_insufficient_decision(engine):
    snapshot = make_snapshot(failed=frozenset({"pool-a", "pool-b", "pool-c"}))

    engine.apply_snapshot(1, snapshot)

    decision = engine.read_model.decision
    assert decision is not None
    assert decision.insufficient_data is True
    assert decision.should_rebalance is False
    assert engine.orchestrator.phase is RebalancePhase.IDLE


@pytest.mark.asyncio
async def test_snapshot_triggers_rebalance_and_settles(engine, source):
    phases: list[RebalancePhase] = []
    engine.read_model.subscribe(Channel.PHASE, phases.append)

    engine.apply_snapshot(1, make_snapshot(active="pool-c", threshold=1.0))

    assert engine.orchestrator.phase is RebalancePhase.CONDITION_MET
    await wait_until(lambda: engine.orchestrator.phase is RebalancePhase.IDLE)

    assert source.applied == ["pool-a"]
    snapshot = engine.read_model.snapshot
    assert snapshot is not None
    assert snapshot.active_pool_id == "pool-a"
    assert snapshot.current_rate_raw == percent_to_ray(5.2)
    decision = engine.read_model.decision
    assert decision.best_pool_id == snapshot.active_pool_id
    assert decision.should_rebalance is False
    assert phases == [
        RebalancePhase.CONDITION_MET,
        RebalancePhase.WITHDRAWING,
        RebalancePhase.SUPPLYING,
        RebalancePhase.SETTLED,
        RebalancePhase.IDLE,
    ]
    events = [entry.event_type for entry in engine.read_model.activity]
    assert events[:5] == [
        "Cycle Reset",
        "Rebalance Complete",
        "Supply",
        "Vault Action",
        "Logic Check",
    ]
    await engine.stop()


def test_no_rebalance_when_active_pool_is_best(engine):
    engine.apply_snapshot(1, make_snapshot(active="pool-a", threshold=2.0))

    assert engine.read_model.decision.should_rebalance is False
    assert engine.orchestrator.phase is RebalancePhase.IDLE


@pytest.mark.asyncio
async def test_stop_cancels_in_flight_fetch_and_blocks_mutation(engine, source):
    await engine.start()
    await wait_until(lambda: len(source.pending) == 1)

    await engine.stop()

    assert source.pending[0].cancelled()
    assert source.closed is True
    assert engine.apply_snapshot(99, make_snapshot()) is False
    assert engine.read_model.snapshot is None
    assert await engine.poll_once() is False


def test_tick_counts_down_and_triggers_cron(settings, source):
    settings.initial_blocks_until_cron = 2
    settings.blocks_per_cycle = 5
    engine = VaultEngine(settings, source, rng=random.Random(3))

    engine.tick()
    assert engine.blocks_until_cron == 1

    engine.tick()
    assert engine.blocks_until_cron == 5
    assert engine.read_model.blocks_until_cron == 5
    cron = engine.read_model.activity[0]
    assert cron.event_type == "Cron Job"
    block = int(re.fullmatch(r"Triggered \(Block #(\d+)\)", cron.details).group(1))
    assert 49_200 <= block < 50_200


@pytest.mark.asyncio
async def test_from_settings_uses_seeded_simulation():
    settings = VaultSettings(
        mode="simulated",
        simulation={"seed": 42, "rate_update_log_percent": 0.0},
    )
    engine = VaultEngine.from_settings(settings)

    assert isinstance(engine.source, SimulatedRateSource)
    assert await engine.poll_once() is True
    first = engine.read_model.snapshot
    assert [q.rate_percent for q in first.quotes] == ["5.20", "4.80", "3.90"]

    assert await engine.poll_once() is True
    assert engine.read_model.snapshot is not first
    assert any(e.event_type == "Rate Update" for e in engine.read_model.activity)
    await engine.stop()
