"""Best-pool selection and the rebalance threshold rule.

Both the chain-backed and the simulated rate sources go through these
functions, so there is a single decision rule. All comparisons are done on
Ray integers; percentage strings are only produced for logging.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from .domain import Decision, PoolQuote, VaultSnapshot
from .units import format_spread, ray_to_percent

logger = logging.getLogger(__name__)


class NoValidQuotes(Exception):
    """Raised when every pool read in a snapshot failed."""


def select_best_quote(quotes: Iterable[PoolQuote]) -> PoolQuote:
    """Return the highest-rate quote among successful reads.

    Failed quotes are skipped even when their stale rate is the highest.
    On equal rates the earliest quote wins.

    Raises:
        NoValidQuotes: If no quote was fetched successfully.
    """
    best: PoolQuote | None = None
    for quote in quotes:
        if not quote.fetch_succeeded:
            continue
        if best is None or quote.rate_raw > best.rate_raw:
            best = quote
    if best is None:
        raise NoValidQuotes("No pool returned a usable rate")
    return best


def exceeds_threshold(best_rate_raw: int, current_rate_raw: int, threshold_raw: int) -> bool:
    """Rebalance predicate: only a positive spread above the threshold counts."""
    return best_rate_raw - current_rate_raw > threshold_raw


def evaluate(snapshot: VaultSnapshot, threshold_raw: int | None = None) -> Decision:
    """Decide whether the vault should move to the best pool.

    Args:
        snapshot: Latest vault snapshot.
        threshold_raw: Ray threshold override. Defaults to the snapshot's
            ``rebalance_threshold_raw``, which is the ledger value when live.

    Returns:
        Decision with ``should_rebalance == spread_raw > threshold_raw``.

    Raises:
        NoValidQuotes: If no quote in the snapshot is usable.
    """
    threshold = (
        snapshot.rebalance_threshold_raw if threshold_raw is None else threshold_raw
    )
    best = select_best_quote(snapshot.quotes)
    spread = best.rate_raw - snapshot.current_rate_raw
    should_rebalance = exceeds_threshold(
        best.rate_raw, snapshot.current_rate_raw, threshold
    )

    if should_rebalance != snapshot.should_rebalance:
        logger.warning(
            "Local decision (%s) disagrees with vault shouldRebalance (%s): spread %s%% vs threshold %s%%",
            should_rebalance,
            snapshot.should_rebalance,
            format_spread(spread),
            ray_to_percent(threshold),
        )

    return Decision(
        best_pool_id=best.pool_id,
        best_rate_raw=best.rate_raw,
        current_rate_raw=snapshot.current_rate_raw,
        spread_raw=spread,
        threshold_raw=threshold,
        should_rebalance=should_rebalance,
        ledger_should_rebalance=snapshot.should_rebalance,
    )
