from __future__ import annotations

from abc import ABC, abstractmethod

from ..constants import pool_label
from ..domain import VaultSnapshot


class RateSourceError(Exception):
    """Base class for failures while reading vault state."""


class EndpointUnreachable(RateSourceError):
    """Transport, timeout or revert failure against a single endpoint."""

    def __init__(self, endpoint: str, cause: BaseException | str):
        super().__init__(f"{endpoint}: {cause}")
        self.endpoint = endpoint
        self.cause = cause


class DecodeError(RateSourceError):
    """An endpoint answered but the response could not be interpreted."""

    def __init__(self, endpoint: str, message: str):
        super().__init__(f"{endpoint}: {message}")
        self.endpoint = endpoint


class AllEndpointsUnavailable(RateSourceError):
    """Every endpoint failed within one fetch cycle."""

    def __init__(self, last_error: BaseException | None):
        message = "All RPC endpoints failed"
        if last_error is not None:
            message = f"{message}. Last error: {last_error}"
        super().__init__(message)
        self.last_error = last_error


class BaseRateSource(ABC):
    """Abstract base class for anything that produces vault snapshots."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the name of this source."""
        ...

    @abstractmethod
    async def fetch_snapshot(self) -> VaultSnapshot:
        """Read a complete snapshot or raise ``AllEndpointsUnavailable``."""
        ...

    def apply_rebalance(self, to_pool: str) -> None:
        """Hook called when a rebalance settles. Live sources ignore it."""

    def label_for(self, pool_id: str) -> str:
        return pool_label(pool_id)

    async def close(self) -> None:
        """Release any held resources."""
