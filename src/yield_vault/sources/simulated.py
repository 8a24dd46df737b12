"""Synthetic rate source used when no live vault is configured."""

from __future__ import annotations

import random
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from ..decision import exceeds_threshold, select_best_quote
from ..domain import PoolQuote, VaultSnapshot, utcnow
from ..logger import get_logger
from ..settings import SimulationSettings
from ..units import percent_to_ray, ray_to_percent
from .base import BaseRateSource

logger = get_logger(__name__)


@dataclass
class SimulatedPool:
    pool_id: str
    label: str
    rate_raw: int
    trend: str = "stable"


@dataclass(frozen=True)
class RateChange:
    """A drift step large enough to report."""

    pool_id: str
    label: str
    previous_raw: int
    rate_raw: int


class SimulatedRateSource(BaseRateSource):
    """Pools whose rates drift by a bounded random delta on every fetch.

    The best pool and ``should_rebalance`` are filled in with the same
    functions the decision engine uses, so the engine cannot tell this
    source from a live vault.
    """

    def __init__(
        self,
        pools: Sequence[SimulatedPool],
        active_pool_id: str,
        threshold_raw: int,
        max_drift_raw: int,
        min_rate_raw: int,
        max_rate_raw: int,
        report_change_raw: int = 0,
        trend_raw: int = 0,
        rng: random.Random | None = None,
        on_rate_change: Callable[[RateChange], None] | None = None,
    ):
        if not pools:
            raise ValueError("SimulatedRateSource requires at least one pool")
        self._pools = [
            SimulatedPool(p.pool_id, p.label, p.rate_raw, p.trend) for p in pools
        ]
        if active_pool_id not in {p.pool_id for p in self._pools}:
            raise ValueError(f"Unknown active pool: {active_pool_id}")
        self.active_pool_id = active_pool_id
        self.threshold_raw = threshold_raw
        self.max_drift_raw = max_drift_raw
        self.min_rate_raw = min_rate_raw
        self.max_rate_raw = max_rate_raw
        self.report_change_raw = report_change_raw
        self.trend_raw = trend_raw
        self.rng = rng or random.Random()
        self.on_rate_change = on_rate_change
        self._started = False

    @classmethod
    def from_settings(
        cls,
        settings: SimulationSettings,
        rng: random.Random | None = None,
        on_rate_change: Callable[[RateChange], None] | None = None,
    ) -> SimulatedRateSource:
        pools = [
            SimulatedPool(p.pool_id, p.label, percent_to_ray(p.apy))
            for p in settings.pools
        ]
        return cls(
            pools=pools,
            active_pool_id=settings.initial_active_pool,
            threshold_raw=percent_to_ray(settings.threshold_percent),
            max_drift_raw=percent_to_ray(settings.max_drift_percent),
            min_rate_raw=percent_to_ray(settings.min_apy_percent),
            max_rate_raw=percent_to_ray(settings.max_apy_percent),
            report_change_raw=percent_to_ray(settings.rate_update_log_percent),
            trend_raw=percent_to_ray(settings.trend_percent),
            rng=rng if rng is not None else random.Random(settings.seed),
            on_rate_change=on_rate_change,
        )

    @property
    def name(self) -> str:
        return "simulated"

    @property
    def pools(self) -> list[SimulatedPool]:
        return list(self._pools)

    def label_for(self, pool_id: str) -> str:
        for pool in self._pools:
            if pool.pool_id == pool_id:
                return pool.label
        return super().label_for(pool_id)

    def _rate_of(self, pool_id: str) -> int:
        for pool in self._pools:
            if pool.pool_id == pool_id:
                return pool.rate_raw
        raise KeyError(pool_id)

    def drift(self) -> list[RateChange]:
        """Move every pool by a random delta in ``[-max_drift, +max_drift]``.

        Rates are clamped to ``[min_rate, max_rate]``. Returns the changes
        whose size exceeds ``report_change_raw``.
        """
        changes: list[RateChange] = []
        for pool in self._pools:
            delta = round(self.rng.uniform(-1.0, 1.0) * self.max_drift_raw)
            new_rate = max(
                self.min_rate_raw, min(self.max_rate_raw, pool.rate_raw + delta)
            )
            if delta > self.trend_raw:
                pool.trend = "up"
            elif delta < -self.trend_raw:
                pool.trend = "down"
            else:
                pool.trend = "stable"

            if abs(new_rate - pool.rate_raw) > self.report_change_raw:
                change = RateChange(pool.pool_id, pool.label, pool.rate_raw, new_rate)
                changes.append(change)
                logger.debug(
                    "%s rate drifted %s%% -> %s%%",
                    pool.label,
                    ray_to_percent(pool.rate_raw),
                    ray_to_percent(new_rate),
                )
                if self.on_rate_change is not None:
                    self.on_rate_change(change)
            pool.rate_raw = new_rate
        return changes

    def snapshot(self) -> VaultSnapshot:
        """Current state as a snapshot, without drifting."""
        quotes = tuple(
            PoolQuote(pool_id=p.pool_id, rate_raw=p.rate_raw) for p in self._pools
        )
        best = select_best_quote(quotes)
        current = self._rate_of(self.active_pool_id)
        return VaultSnapshot(
            active_pool_id=self.active_pool_id,
            best_pool_id=best.pool_id,
            best_rate_raw=best.rate_raw,
            current_rate_raw=current,
            should_rebalance=exceeds_threshold(
                best.rate_raw, current, self.threshold_raw
            ),
            rebalance_threshold_raw=self.threshold_raw,
            quotes=quotes,
            endpoint=None,
            fetched_at=utcnow(),
        )

    async def fetch_snapshot(self) -> VaultSnapshot:
        # The startup read shows the configured rates; later reads drift first.
        if self._started:
            self.drift()
        self._started = True
        return self.snapshot()

    def apply_rebalance(self, to_pool: str) -> None:
        self._rate_of(to_pool)
        logger.debug("Simulated vault moved from %s to %s", self.active_pool_id, to_pool)
        self.active_pool_id = to_pool
