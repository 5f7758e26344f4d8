"""
app/services/position_policy.py
Deviation / cooldown state machine for tracked liquidity positions.

Per position:
  Active-InRange --price outside band--> Active-Deviating(1)
  Active-Deviating(n) --outside again, n+1 >= 2--> emit AdjustmentRequest,
      counter reset, Active-Cooldown(now + cooldown_period)
  Active-Deviating(n) --back inside--> Active-InRange
  Active-Cooldown --now >= until--> Active-InRange
  inactive snapshot --> removed

Two consecutive out-of-band readings are required so a single noisy print
never triggers a close-and-reopen. A confirmed deviation larger than the
emergency threshold is flagged so the agent closes and stops trading that
market instead of recentering.

Called by the scheduler every max(5 s, polling_interval / 2).
"""

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace

from core.constants import MIN_MONITOR_INTERVAL_SECONDS, REQUIRED_CONSECUTIVE_DEVIATIONS
from core.models import AdjustmentRequest, LiquidityPosition
from core.price_model import deviation

logger = logging.getLogger(__name__)

PriceReader = Callable[[LiquidityPosition], Awaitable[float]]


def monitor_interval(polling_interval: float) -> float:
    """Seconds between monitoring passes."""
    return max(MIN_MONITOR_INTERVAL_SECONDS, polling_interval / 2)


@dataclass
class PositionTrackingState:
    position: LiquidityPosition
    last_checked: float
    consecutive_deviations: int = 0
    cooldown_until: float | None = None


class PositionPolicy:
    """Decides when a tracked position needs to be recentered."""

    def __init__(
        self,
        max_positions: int,
        deviation_threshold: float,
        cooldown_period: float,
        emergency_threshold: float | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_positions = max_positions
        self.deviation_threshold = deviation_threshold
        self.cooldown_period = cooldown_period
        self.emergency_threshold = emergency_threshold
        self._clock = clock
        self._states: dict[str, PositionTrackingState] = {}

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------

    def track(self, position: LiquidityPosition) -> None:
        """Start (or restart) tracking a copy of position."""
        self._states[position.id] = PositionTrackingState(
            position=replace(position),
            last_checked=self._clock(),
        )

    def untrack(self, position_id: str) -> None:
        self._states.pop(position_id, None)

    def state_of(self, position_id: str) -> PositionTrackingState | None:
        return self._states.get(position_id)

    def has_max_positions(self) -> bool:
        return len(self._states) >= self.max_positions

    def is_in_cooldown(self, position_id: str) -> bool:
        state = self._states.get(position_id)
        if state is None or state.cooldown_until is None:
            return False
        return self._clock() < state.cooldown_until

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate(self, position_id: str, current_price: float) -> AdjustmentRequest | None:
        """
        Feed one price observation for a tracked position.

        Returns
        -------
        AdjustmentRequest | None
            A request when this observation confirms a deviation, else None.
        """
        state = self._states[position_id]
        now = self._clock()
        state.last_checked = now

        target = state.position.target_price
        if target == 0:
            logger.warning("Position %s has zero target price, skipping check", position_id)
            return None

        drift = deviation(current_price, target)
        if drift <= self.deviation_threshold:
            if state.consecutive_deviations:
                logger.info("Position %s back in range (price=%.4f)", position_id, current_price)
            state.consecutive_deviations = 0
            return None

        state.consecutive_deviations += 1
        logger.info(
            "Position %s outside band: price=%.4f target=%.4f drift=%.2f%% (%d/%d)",
            position_id, current_price, target, drift * 100,
            state.consecutive_deviations, REQUIRED_CONSECUTIVE_DEVIATIONS,
        )
        if state.consecutive_deviations < REQUIRED_CONSECUTIVE_DEVIATIONS:
            return None

        state.consecutive_deviations = 0
        state.cooldown_until = now + self.cooldown_period

        emergency = (
            self.emergency_threshold is not None and drift > self.emergency_threshold
        )
        if emergency:
            logger.warning(
                "Emergency stop for %s: drift %.2f%% exceeds %.2f%%",
                position_id, drift * 100, self.emergency_threshold * 100,
            )

        return AdjustmentRequest(
            position=replace(state.position),
            current_price=current_price,
            requested_at=now,
            emergency=emergency,
        )

    async def check_all(self, price_for: PriceReader) -> list[AdjustmentRequest]:
        """
        One monitoring pass over every tracked position.

        A failed price read skips that position for this pass only; its
        counters are left untouched.
        """
        requests: list[AdjustmentRequest] = []

        for position_id, state in list(self._states.items()):
            if not state.position.is_active:
                self.untrack(position_id)
                continue

            if self.is_in_cooldown(position_id):
                continue

            try:
                current_price = await price_for(state.position)
            except Exception as exc:
                logger.error("Price read failed for position %s: %s", position_id, exc)
                continue

            request = self.evaluate(position_id, current_price)
            if request is not None:
                requests.append(request)

        return requests

    def position_stats(self) -> dict:
        """Counts and average age (seconds) of tracked positions."""
        now = self._clock()
        states = list(self._states.values())
        average_age = (
            sum(now - s.position.created_at for s in states) / len(states)
            if states else 0.0
        )
        return {
            "total_positions": len(states),
            "active_positions": sum(1 for s in states if s.position.is_active),
            "positions_in_cooldown": sum(1 for pid in self._states if self.is_in_cooldown(pid)),
            "average_age_seconds": round(average_age),
        }
