from __future__ import annotations

import random
from collections.abc import Callable

from ..settings import VaultSettings
from .base import (
    AllEndpointsUnavailable,
    BaseRateSource,
    DecodeError,
    EndpointUnreachable,
    RateSourceError,
)
from .chain import ChainRateSource
from .simulated import RateChange, SimulatedRateSource


def build_rate_source(
    settings: VaultSettings,
    rng: random.Random | None = None,
    on_rate_change: Callable[[RateChange], None] | None = None,
) -> BaseRateSource:
    """Pick the live or simulated source according to the run mode."""
    if settings.is_live:
        return ChainRateSource.from_settings(settings)
    return SimulatedRateSource.from_settings(
        settings.simulation, rng=rng, on_rate_change=on_rate_change
    )


__all__ = [
    "AllEndpointsUnavailable",
    "BaseRateSource",
    "ChainRateSource",
    "DecodeError",
    "EndpointUnreachable",
    "RateChange",
    "RateSourceError",
    "SimulatedRateSource",
    "build_rate_source",
]
