"""
core/price_model.py
Probability -> target price -> concentrated-liquidity tick range.

In these markets the price of the YES side IS the implied probability, so a
likelihood maps to a price by clamping alone. The range is a full-width band
of probability space around that price, converted to ticks and snapped to
the protocol tick spacing.

Fallback ladder for price_to_tick_range:
  1. computed range, clamped to market tick bounds
  2. full market bounds when clamping inverts the range
  3. on any computation failure: market bounds verbatim if known,
     otherwise current_tick ± 1000 snapped to spacing
"""

import logging
import math

from core.constants import (
    FALLBACK_TICK_WIDTH,
    MAX_TARGET_PRICE,
    MIN_TARGET_PRICE,
    PRICE_EPSILON,
    TICK_SPACING,
)
from core.exceptions import InvalidLikelihood, InvalidTickRange
from core.models import PriceRange, TickRange
from core.tick_math import nearest_usable_tick, price_to_tick

logger = logging.getLogger(__name__)


def _is_valid_likelihood(likelihood: float) -> bool:
    return not math.isnan(likelihood) and 0.0 <= likelihood <= 1.0


def likelihood_to_price(
    likelihood: float,
    min_price: float = MIN_TARGET_PRICE,
    max_price: float = MAX_TARGET_PRICE,
) -> float:
    """
    Convert a YES likelihood to a target price.

    Raises
    ------
    InvalidLikelihood
        If likelihood is NaN or outside [0, 1].
    """
    if not _is_valid_likelihood(likelihood):
        raise InvalidLikelihood(likelihood)
    return max(min_price, min(max_price, likelihood))


def _price_bounds(target_price: float, concentration_range: float) -> tuple[float, float]:
    """[target - range/2, target + range/2] kept inside (0, 1)."""
    half_range = concentration_range / 2
    lower = max(PRICE_EPSILON, target_price - half_range)
    upper = min(1 - PRICE_EPSILON, target_price + half_range)
    return lower, upper


def calculate_price_range(target_price: float, concentration_range: float) -> PriceRange:
    """Price band used for the tick range, exposed for reporting."""
    lower, upper = _price_bounds(target_price, concentration_range)
    return PriceRange(lower=lower, upper=upper, center=target_price)


def compute_tick_range(
    target_price: float,
    concentration_range: float,
    market_min_tick: int | None = None,
    market_max_tick: int | None = None,
) -> TickRange:
    """
    Strict tick-range computation with no recovery.

    Raises
    ------
    ValueError
        If target_price or concentration_range is not finite.
    InvalidTickRange
        If the result is empty or inverted.
    """
    if not math.isfinite(target_price) or not math.isfinite(concentration_range):
        raise ValueError(
            f"Non-finite input: target_price={target_price}, "
            f"concentration_range={concentration_range}"
        )

    lower_price, upper_price = _price_bounds(target_price, concentration_range)

    # Floor the lower and ceil the upper raw tick before snapping.
    lower_tick = nearest_usable_tick(price_to_tick(lower_price, "floor"), TICK_SPACING)
    upper_tick = nearest_usable_tick(price_to_tick(upper_price, "ceil"), TICK_SPACING)

    if market_min_tick is not None and market_max_tick is not None:
        clamped_lower = max(lower_tick, market_min_tick)
        clamped_upper = min(upper_tick, market_max_tick)
        if clamped_lower >= clamped_upper:
            logger.info(
                "Range %d..%d falls outside market bounds %d..%d, using full bounds",
                lower_tick, upper_tick, market_min_tick, market_max_tick,
            )
            clamped_lower, clamped_upper = market_min_tick, market_max_tick
        lower_tick, upper_tick = clamped_lower, clamped_upper

    if lower_tick >= upper_tick:
        raise InvalidTickRange(lower_tick, upper_tick)

    return TickRange(lower_tick=lower_tick, upper_tick=upper_tick)


def price_to_tick_range(
    target_price: float,
    current_tick: int,
    concentration_range: float = 0.05,
    market_min_tick: int | None = None,
    market_max_tick: int | None = None,
) -> TickRange:
    """
    Tick range around target_price, always returning some usable range.

    Parameters
    ----------
    target_price : float
        Centre of the band, in (0, 1).
    current_tick : int
        Pool's current tick; only used by the last-resort fallback.
    concentration_range : float
        Full width of the band in probability space.
    market_min_tick, market_max_tick : int | None
        Market tick bounds. Clamping applies only when both are given.
    """
    try:
        return compute_tick_range(
            target_price, concentration_range, market_min_tick, market_max_tick
        )
    except (ValueError, ArithmeticError) as exc:
        logger.warning("Tick range computation failed (%s), using fallback", exc)

    if market_min_tick is not None and market_max_tick is not None:
        return TickRange(lower_tick=market_min_tick, upper_tick=market_max_tick)

    width = (FALLBACK_TICK_WIDTH // TICK_SPACING) * TICK_SPACING
    return TickRange(
        lower_tick=nearest_usable_tick(current_tick - width, TICK_SPACING),
        upper_tick=nearest_usable_tick(current_tick + width, TICK_SPACING),
    )


def deviation(current_price: float, target_price: float) -> float:
    """Fractional distance of current_price from target_price."""
    if target_price == 0:
        raise ValueError("target_price must be non-zero")
    return abs(current_price - target_price) / target_price


def is_price_outside_deviation(
    current_price: float,
    target_price: float,
    deviation_threshold: float,
) -> bool:
    """True when |current - target| / target exceeds the threshold."""
    return deviation(current_price, target_price) > deviation_threshold
