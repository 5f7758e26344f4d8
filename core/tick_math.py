"""
core/tick_math.py
Pure conversions between ticks, prices and sqrtPriceX96.

price      = 1.0001 ** tick
sqrtPriceX96 = floor(sqrt(price) * 2**96)

Float precision is acceptable here: these values drive range selection,
not settlement accounting.
"""

import math

from core.constants import Q96, TICK_BASE, TICK_SPACING

_LOG_TICK_BASE = math.log(TICK_BASE)


def tick_to_price(tick: int) -> float:
    """Price at a tick: 1.0001 ** tick. Overflows to inf, underflows to 0.0."""
    try:
        return TICK_BASE ** tick
    except OverflowError:
        return math.inf


def price_to_tick(price: float, rounding: str = "floor") -> int:
    """
    Tick for a price: log(price) / log(1.0001), rounded.

    Parameters
    ----------
    price : float
        Positive, finite price.
    rounding : str
        "floor" (default), "ceil" or "round".

    Raises
    ------
    ValueError
        If price is non-finite or non-positive, or rounding is unknown.
    """
    if not math.isfinite(price) or price <= 0.0:
        raise ValueError(f"Price must be positive and finite, got {price}")

    raw = math.log(price) / _LOG_TICK_BASE
    if rounding == "floor":
        return math.floor(raw)
    if rounding == "ceil":
        return math.ceil(raw)
    if rounding == "round":
        return math.floor(raw + 0.5)
    raise ValueError(f"Unknown rounding mode: {rounding}")


def tick_to_sqrt_price_x96(tick: int) -> int:
    """sqrt(1.0001 ** tick) in Q64.96 fixed point, as an arbitrary-precision int."""
    return int(math.floor(math.sqrt(tick_to_price(tick)) * Q96))


def sqrt_price_x96_to_price(sqrt_price_x96: int) -> float:
    """Inverse of tick_to_sqrt_price_x96, in float. Overflows to inf."""
    try:
        sqrt_price = sqrt_price_x96 / Q96
        return sqrt_price ** 2
    except OverflowError:
        return math.inf


def nearest_usable_tick(tick: float, spacing: int = TICK_SPACING) -> int:
    """Snap a tick to the nearest multiple of spacing (halves round up)."""
    return int(math.floor(tick / spacing + 0.5)) * spacing
