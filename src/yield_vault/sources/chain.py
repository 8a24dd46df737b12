"""Vault rate source backed by JSON-RPC endpoints with failover."""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import Callable, Sequence
from typing import Any

import aiohttp
import backoff
from web3 import AsyncWeb3, Web3
from web3.exceptions import BadFunctionCallOutput, Web3Exception

from ..abi import build_async_web3, build_vault_contract
from ..domain import PoolQuote, VaultSnapshot, utcnow
from ..endpoints import EndpointPool
from ..logger import get_logger
from ..settings import VaultSettings
from .base import (
    AllEndpointsUnavailable,
    BaseRateSource,
    DecodeError,
    EndpointUnreachable,
)

logger = get_logger(__name__)

RETRYABLE_ERRORS = (EndpointUnreachable, DecodeError)
TRANSPORT_ERRORS = (
    Web3Exception,
    aiohttp.ClientError,
    asyncio.TimeoutError,
    OSError,
)
# Raised while parsing a response body that is not valid JSON-RPC
DECODE_ERRORS = (ValueError, TypeError, KeyError)


def _as_uint(endpoint: str, value: Any, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise DecodeError(endpoint, f"{field} is not an integer: {value!r}")
    if value < 0:
        raise DecodeError(endpoint, f"{field} is negative: {value}")
    return value


def _as_address(endpoint: str, value: Any, field: str) -> str:
    try:
        return Web3.to_checksum_address(value)
    except (TypeError, ValueError) as e:
        raise DecodeError(endpoint, f"{field} is not an address: {value!r}") from e


def build_snapshot(
    endpoint: str,
    best_pool_result: Sequence[Any],
    all_rates_result: Sequence[Any],
    active_pool: Any,
    threshold: Any,
) -> VaultSnapshot:
    """Turn the four raw call results into a snapshot.

    Raises:
        DecodeError: If any result has an unexpected shape or type.
    """
    if len(best_pool_result) != 4:
        raise DecodeError(
            endpoint, f"getBestPool returned {len(best_pool_result)} values, expected 4"
        )
    if len(all_rates_result) != 3:
        raise DecodeError(
            endpoint,
            f"getAllPoolRates returned {len(all_rates_result)} values, expected 3",
        )

    best_pool, best_rate, current_rate, should_rebalance = best_pool_result
    pools, rates, successes = all_rates_result
    if not (len(pools) == len(rates) == len(successes)):
        raise DecodeError(
            endpoint,
            f"getAllPoolRates arrays differ in length: pools={len(pools)} "
            f"rates={len(rates)} successes={len(successes)}",
        )

    quotes = tuple(
        PoolQuote(
            pool_id=_as_address(endpoint, pool, f"pools[{idx}]"),
            rate_raw=_as_uint(endpoint, rate, f"rates[{idx}]"),
            fetch_succeeded=bool(success),
        )
        for idx, (pool, rate, success) in enumerate(zip(pools, rates, successes))
    )

    return VaultSnapshot(
        active_pool_id=_as_address(endpoint, active_pool, "activePool"),
        best_pool_id=_as_address(endpoint, best_pool, "bestPool"),
        best_rate_raw=_as_uint(endpoint, best_rate, "bestRate"),
        current_rate_raw=_as_uint(endpoint, current_rate, "currentRate"),
        should_rebalance=bool(should_rebalance),
        rebalance_threshold_raw=_as_uint(endpoint, threshold, "rebalanceThresholdRay"),
        quotes=quotes,
        endpoint=endpoint,
        fetched_at=utcnow(),
    )


class ChainRateSource(BaseRateSource):
    """Reads the AutoYieldVault view functions through an endpoint pool.

    The four reads of one cycle are not pinned to a block, so they may observe
    slightly different ledger heights.
    """

    def __init__(
        self,
        vault_address: str,
        endpoints: EndpointPool,
        rpc_timeout: float = 10.0,
        client_factory: Callable[[str], AsyncWeb3] = build_async_web3,
    ):
        self.vault_address = vault_address
        self.endpoints = endpoints
        self.rpc_timeout = rpc_timeout
        self._client_factory = client_factory

    @classmethod
    def from_settings(cls, settings: VaultSettings) -> ChainRateSource:
        return cls(
            vault_address=settings.vault_address_required,
            endpoints=EndpointPool(settings.rpc_endpoints),
            rpc_timeout=settings.rpc_timeout_seconds,
        )

    @property
    def name(self) -> str:
        return "chain"

    async def _read_vault(self, endpoint: str) -> VaultSnapshot:
        """Perform all four reads against one endpoint, or fail as a unit."""
        w3 = self._client_factory(endpoint)
        try:
            vault = build_vault_contract(w3, self.vault_address)
            async with asyncio.timeout(self.rpc_timeout):
                best_pool_result = await vault.functions.getBestPool().call()
                all_rates_result = await vault.functions.getAllPoolRates().call()
                active_pool = await vault.functions.activePool().call()
                threshold = await vault.functions.rebalanceThresholdRay().call()
        except BadFunctionCallOutput as e:
            raise DecodeError(endpoint, str(e)) from e
        except TRANSPORT_ERRORS as e:
            raise EndpointUnreachable(endpoint, e) from e
        except DECODE_ERRORS as e:
            # e.g. an HTML error page served with status 200
            raise DecodeError(endpoint, f"unreadable response: {e}") from e
        finally:
            try:
                await w3.provider.disconnect()  # type: ignore[union-attr]
            except AttributeError as e:
                logger.debug(f"Provider disconnect expected (no disconnect method): {e}")

        return build_snapshot(
            endpoint, best_pool_result, all_rates_result, active_pool, threshold
        )

    async def fetch_snapshot(self) -> VaultSnapshot:
        """Try each endpoint once, starting from the last one that worked.

        Raises:
            AllEndpointsUnavailable: If every endpoint failed this cycle.
        """
        total = len(self.endpoints)
        order = [self.endpoints.index_for(attempt) for attempt in range(total)]
        attempts = itertools.count()

        def _on_backoff(details: Any) -> None:
            logger.warning(
                "RPC attempt %d of %d failed: %s",
                details["tries"],
                total,
                details.get("exception"),
            )

        def _on_giveup(details: Any) -> None:
            logger.error(
                "All %d RPC endpoints failed. Last error: %s",
                details["tries"],
                details.get("exception"),
            )

        @backoff.on_exception(
            backoff.constant,
            RETRYABLE_ERRORS,
            max_tries=total,
            interval=0,
            jitter=None,
            on_backoff=_on_backoff,
            on_giveup=_on_giveup,
        )
        async def _attempt() -> VaultSnapshot:
            index = order[next(attempts)]
            endpoint = self.endpoints.endpoints[index]
            logger.debug("Reading vault %s via %s", self.vault_address, endpoint)
            snapshot = await self._read_vault(endpoint)
            self.endpoints.record_success(index)
            return snapshot

        try:
            return await _attempt()
        except RETRYABLE_ERRORS as e:
            raise AllEndpointsUnavailable(e) from e
