from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, localcontext

from .constants import RAY_PERCENT_DIVISOR, UINT256_MAX

logger = logging.getLogger(__name__)

_TWO_PLACES = Decimal("0.01")
# Enough digits for a full uint256 plus the two fractional places
_PRECISION = 100
ZERO_PERCENT = "0.00"


def ray_to_percent(raw_ray: int) -> str:
    """Convert a Ray-scaled rate (1e27) to a percentage string.

    Args:
        raw_ray: Unsigned rate scaled by 1e27.

    Returns:
        The rate as a percentage with two fractional digits, e.g. ``"5.20"``.

    Notes:
        - Display only. Threshold comparisons must use the raw integers.
        - Values that are not integers, are negative, or do not fit in a
          uint256 render as ``"0.00"`` instead of raising.
    """
    if isinstance(raw_ray, bool) or not isinstance(raw_ray, int):
        logger.debug("Cannot display non-integer rate %r", raw_ray)
        return ZERO_PERCENT
    if raw_ray < 0 or raw_ray > UINT256_MAX:
        logger.debug("Rate %d outside uint256 range, displaying zero", raw_ray)
        return ZERO_PERCENT

    try:
        with localcontext() as ctx:
            ctx.prec = _PRECISION
            percent = Decimal(raw_ray) / Decimal(RAY_PERCENT_DIVISOR)
            return str(percent.quantize(_TWO_PLACES, rounding=ROUND_HALF_UP))
    except (InvalidOperation, OverflowError) as e:
        logger.debug("Rate conversion failed for %d: %s", raw_ray, e)
        return ZERO_PERCENT


def percent_to_ray(percent: float | str | Decimal) -> int:
    """Convert a percentage (e.g. ``5.2``) to a Ray-scaled integer.

    Floats go through ``str`` first so ``5.2`` becomes exactly
    ``5.2 * 1e25`` rather than its binary approximation.
    """
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        value = Decimal(str(percent)) * Decimal(RAY_PERCENT_DIVISOR)
        return int(value.to_integral_value(rounding=ROUND_HALF_UP))


def format_spread(spread_raw: int) -> str:
    """Format a signed Ray spread as a percentage string."""
    if spread_raw < 0:
        return f"-{ray_to_percent(-spread_raw)}"
    return ray_to_percent(spread_raw)
