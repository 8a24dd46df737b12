"""Foreground runner: starts the engine and logs read-model changes."""

from __future__ import annotations

import asyncio

from .domain import Decision, RebalancePhase
from .engine import VaultEngine
from .history import reactive_scan_url, truncate_hash
from .state import AppState
from .store import Channel
from .units import format_spread, ray_to_percent


def _describe(decision: Decision, label: str) -> str:
    if decision.insufficient_data:
        return "insufficient data, holding position"
    return (
        f"best {label} at {ray_to_percent(decision.best_rate_raw)}%, "
        f"current {ray_to_percent(decision.current_rate_raw)}%, "
        f"spread {format_spread(decision.spread_raw)}% "
        f"(threshold {ray_to_percent(decision.threshold_raw)}%)"
    )


async def run_monitor(
    state: AppState,
    duration: float | None = None,
    engine: VaultEngine | None = None,
) -> None:
    """Run the monitor until cancelled, or for ``duration`` seconds.

    Args:
        state: Application state containing settings and logger
        duration: Optional run time in seconds; runs until interrupted if None
        engine: Pre-built engine, mainly for tests
    """
    s = state.settings
    log = state.logger
    engine = engine or VaultEngine.from_settings(s)

    last_seen: dict[str, object] = {}

    def _on_decision(decision: Decision) -> None:
        key = (decision.best_pool_id, decision.should_rebalance, decision.insufficient_data)
        if last_seen.get("decision") == key:
            return
        last_seen["decision"] = key
        label = engine.source.label_for(decision.best_pool_id or "")
        log.info(
            "Decision: rebalance=%s; %s",
            decision.should_rebalance,
            _describe(decision, label),
        )

    def _on_phase(phase: RebalancePhase) -> None:
        log.info("Rebalance phase: %s", phase.value)

    def _on_error(message: str) -> None:
        log.warning("Showing last good snapshot; read error: %s", message)

    engine.read_model.subscribe(Channel.DECISION, _on_decision)
    engine.read_model.subscribe(Channel.PHASE, _on_phase)
    engine.read_model.subscribe(Channel.ERROR, _on_error)

    log.info(
        "Starting monitor",
        extra={"mode": "live" if s.is_live else "simulated", "vault": s.vault_address},
    )
    if engine.read_model.transactions:
        latest = engine.read_model.transactions[0]
        log.info(
            "Last scheduler callback #%d %s (%s)",
            latest.tx_number,
            truncate_hash(latest.reactive_hash),
            reactive_scan_url(latest.tx_number),
        )

    async with engine:
        if duration is None:
            await engine.wait_closed()
        else:
            await asyncio.sleep(duration)

    log.info("Monitor finished")
