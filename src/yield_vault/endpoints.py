"""Ordered RPC endpoint rotation with a last-known-good cursor."""

from __future__ import annotations

import logging
from collections.abc import Sequence

logger = logging.getLogger(__name__)


class EndpointPool:
    """Round-robin over a fixed list of endpoints.

    Each cycle starts at the endpoint that last succeeded. Endpoints are never
    dropped, so one that failed transiently is tried again on the next cycle.
    The only mutable state is ``preferred_index``; a lost update costs at most
    one redundant probe, so no lock is taken.
    """

    def __init__(self, endpoints: Sequence[str], preferred_index: int = 0):
        if not endpoints:
            raise ValueError("EndpointPool requires at least one endpoint")
        self._endpoints: tuple[str, ...] = tuple(endpoints)
        self._preferred_index = preferred_index % len(self._endpoints)

    def __len__(self) -> int:
        return len(self._endpoints)

    @property
    def endpoints(self) -> tuple[str, ...]:
        return self._endpoints

    @property
    def preferred_index(self) -> int:
        return self._preferred_index

    def index_for(self, attempt: int) -> int:
        return (self._preferred_index + attempt) % len(self._endpoints)

    def select_endpoint(self, attempt: int) -> str:
        """Endpoint to use for the given attempt within one fetch cycle."""
        return self._endpoints[self.index_for(attempt)]

    def record_success(self, index: int) -> None:
        """Start the next cycle at ``index``."""
        if not 0 <= index < len(self._endpoints):
            raise IndexError(
                f"Endpoint index {index} out of range for {len(self._endpoints)} endpoints"
            )
        if index != self._preferred_index:
            logger.debug(
                "Preferred endpoint moved from %d to %d (%s)",
                self._preferred_index,
                index,
                self._endpoints[index],
            )
        self._preferred_index = index
