"""
app/services/market_agent.py
The liquidity agent: turns probability estimates into liquidity positions
and keeps them centred.

Two producers feed it:
  1. Market scan (polling): lists unsettled markets, asks the oracle for
     P(YES) and opens a position on every eligible market.
  2. Attestation poll: prediction attestations from trusted attesters are
     queued and opened the same way, with the attested likelihood.
The position monitor adds AdjustmentRequests to the same bounded queue.

A single consumer drains the queue. Every tick (scan, monitor pass, poll
or one queued item) runs under one lock, so position mutations never
interleave.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from agents import ProbabilityEstimate
from app.services.attestation_source import AttestationSource
from app.services.chain_client import ChainClient
from app.services.events import EventJournal, LPEventType
from app.services.lifecycle import PositionLifecycleCoordinator
from app.services.market_listing import MarketListingClient
from app.services.position_policy import PositionPolicy
from core.constants import MAX_TARGET_PRICE, MIN_TARGET_PRICE
from core.exceptions import InsufficientCollateral, PositionRejected
from core.models import (
    AdjustmentRequest,
    LiquidityPosition,
    Market,
    ParsedAttestation,
    TickRange,
)
from core.price_model import calculate_price_range, likelihood_to_price, price_to_tick_range
from core.tick_math import price_to_tick, sqrt_price_x96_to_price

logger = logging.getLogger(__name__)

Oracle = Callable[[str, str | None, str | None], Awaitable[ProbabilityEstimate]]
WorkItem = AdjustmentRequest | ParsedAttestation


def current_tick_of(market: Market) -> int:
    """floor(log(price) / log(1.0001)) of the market's current price."""
    price = sqrt_price_x96_to_price(market.current_sqrt_price_x96)
    try:
        return price_to_tick(price, "floor")
    except ValueError:
        return 0


class LiquidityAgent:
    """Scans markets, reacts to attestations and recentres positions."""

    def __init__(
        self,
        chain_for: Callable[[str], ChainClient],
        coordinator: PositionLifecycleCoordinator,
        journal: EventJournal,
        oracle: Oracle | None = None,
        listing: MarketListingClient | None = None,
        attestations: AttestationSource | None = None,
        concentration_range: float = 0.05,
        collateral_amount: int = 10 ** 18,
        queue_size: int = 100,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._chain_for = chain_for
        self.coordinator = coordinator
        self.journal = journal
        self._oracle = oracle
        self._listing = listing
        self._attestations = attestations
        self.concentration_range = concentration_range
        self.collateral_amount = collateral_amount
        self._clock = clock

        self._queue: asyncio.Queue[WorkItem] = asyncio.Queue(maxsize=queue_size)
        self._lock = asyncio.Lock()
        self._consumer: asyncio.Task | None = None
        self._stopping = False
        self._started_at: float | None = None
        self._halted: set[tuple[str, int]] = set()
        self._last_scan: dict | None = None

    @property
    def policy(self) -> PositionPolicy:
        return self.coordinator.policy

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the queue consumer."""
        if self._consumer is not None:
            logger.warning("Agent already running")
            return
        self._stopping = False
        self._started_at = self._clock()
        self._consumer = asyncio.create_task(self._consume(), name="lp-agent-consumer")
        logger.info("Liquidity agent started")

    async def stop(self) -> None:
        """Let the in-flight tick finish, then drop queued work."""
        self._stopping = True
        if self._consumer is not None:
            await self._consumer
            self._consumer = None

        async with self._lock:
            dropped = 0
            while not self._queue.empty():
                self._queue.get_nowait()
                self._queue.task_done()
                dropped += 1
        if dropped:
            logger.warning("Dropped %d queued work items on shutdown", dropped)
        logger.info(
            "Liquidity agent stopped with %d open positions",
            len(self.coordinator.active_positions()),
        )

    @property
    def running(self) -> bool:
        return self._consumer is not None and not self._stopping

    # ------------------------------------------------------------------
    # Halted markets (emergency stop)
    # ------------------------------------------------------------------

    @staticmethod
    def _key(group_address: str, market_id: int) -> tuple[str, int]:
        return group_address.lower(), market_id

    def is_halted(self, group_address: str, market_id: int) -> bool:
        return self._key(group_address, market_id) in self._halted

    def halted_markets(self) -> list[tuple[str, int]]:
        return sorted(self._halted)

    # ------------------------------------------------------------------
    # Shared open path
    # ------------------------------------------------------------------

    def _tick_range_for(self, market: Market, target_price: float) -> TickRange:
        return price_to_tick_range(
            target_price,
            current_tick_of(market),
            self.concentration_range,
            market.min_tick,
            market.max_tick,
        )

    async def _open_for_market(
        self, group_address: str, market_id: int, likelihood: float
    ) -> LiquidityPosition:
        market = await self._chain_for(group_address).get_market(market_id)
        target_price = likelihood_to_price(likelihood)
        tick_range = self._tick_range_for(market, target_price)
        logger.info(
            "Market %d: likelihood=%.4f target=%.4f ticks %d..%d",
            market_id, likelihood, target_price, tick_range.lower_tick, tick_range.upper_tick,
        )
        return await self.coordinator.open_position(
            market, target_price, tick_range, self.collateral_amount,
            calculate_price_range(target_price, self.concentration_range),
        )

    # ------------------------------------------------------------------
    # Producer 1: market scan
    # ------------------------------------------------------------------

    async def run_market_scan(self) -> dict:
        """One pass over every unsettled market. Returns a summary."""
        if self._listing is None or self._oracle is None:
            raise RuntimeError("Market scan needs a market listing client and an oracle")

        async with self._lock:
            markets = await self._listing.list_unsettled_markets()
            now = self._clock()
            summary = {"markets": len(markets), "opened": 0, "skipped": 0, "errors": 0}

            for m in markets:
                if not m.group_address:
                    logger.warning("Market %d has no group address, skipping", m.market_id)
                    summary["skipped"] += 1
                    continue
                if m.end_timestamp is not None and now > m.end_timestamp:
                    logger.info("Market %d expired at %d, skipping", m.market_id, m.end_timestamp)
                    summary["skipped"] += 1
                    continue
                if self.is_halted(m.group_address, m.market_id):
                    logger.info("Market %d is halted, skipping", m.market_id)
                    summary["skipped"] += 1
                    continue
                if self.policy.has_max_positions():
                    logger.warning(
                        "Maximum positions (%d) reached, ending scan", self.policy.max_positions
                    )
                    break

                try:
                    existing = await self.coordinator.find_active_position(
                        m.group_address, m.market_id
                    )
                    if existing is not None:
                        logger.info(
                            "Market %d: position %d exists, skipping", m.market_id, existing.token_id
                        )
                        summary["skipped"] += 1
                        continue

                    estimate = await self._oracle(m.question, m.claim_yes, m.claim_no)
                    logger.info(
                        "Market %d: oracle P(YES)=%.2f%% | %s",
                        m.market_id, estimate.probability_yes * 100, estimate.reasoning or "",
                    )
                    position = await self._open_for_market(
                        m.group_address, m.market_id, estimate.probability_yes
                    )
                    logger.info("Created position %s for market %d", position.id, m.market_id)
                    summary["opened"] += 1

                except InsufficientCollateral as exc:
                    logger.warning("%s; no more creations this scan", exc)
                    break
                except PositionRejected as exc:
                    logger.warning("Skipping: %s", exc)
                    summary["skipped"] += 1
                except Exception as exc:
                    logger.error("Market %d failed: %s", m.market_id, exc)
                    summary["errors"] += 1
                    await self.journal.emit(
                        LPEventType.ERROR,
                        source="market_scan",
                        market_id=m.market_id,
                        error=str(exc),
                    )

            self._last_scan = {**summary, "finished_at": self._clock()}
            logger.info(
                "Market scan: %d markets, %d opened, %d skipped, %d errors",
                summary["markets"], summary["opened"], summary["skipped"], summary["errors"],
            )
            return summary

    # ------------------------------------------------------------------
    # Producer 2: attestation poll
    # ------------------------------------------------------------------

    async def poll_attestations(self) -> int:
        """Queue every new attestation. Returns the number queued."""
        if self._attestations is None:
            raise RuntimeError("Attestation polling needs an attestation source")

        async with self._lock:
            attestations = await self._attestations.poll()

        queued = 0
        for attestation in attestations:
            await self.journal.emit(
                LPEventType.ATTESTATION_RECEIVED,
                attestation_id=attestation.attestation_id,
                attester=attestation.attester,
                market_address=attestation.market_address,
                market_id=attestation.market_id,
                likelihood=attestation.likelihood,
                reasoning=attestation.reasoning,
            )
            if self._enqueue(attestation):
                queued += 1
        return queued

    # ------------------------------------------------------------------
    # Producer 3: position monitor
    # ------------------------------------------------------------------

    async def _read_price(self, position: LiquidityPosition) -> float:
        chain = self._chain_for(position.group_address)
        return sqrt_price_x96_to_price(await chain.get_sqrt_price(position.market_id))

    async def run_monitor(self) -> int:
        """One monitoring pass. Returns the number of requests queued."""
        async with self._lock:
            requests = await self.policy.check_all(self._read_price)

        queued = 0
        for request in requests:
            await self.journal.emit(
                LPEventType.POSITION_NEEDS_ADJUSTMENT,
                position=request.position,
                current_price=request.current_price,
                emergency=request.emergency,
            )
            if self._enqueue(request):
                queued += 1
        return queued

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    def _enqueue(self, item: WorkItem) -> bool:
        if self._stopping:
            logger.warning("Agent stopping, not queueing %s", type(item).__name__)
            return False
        try:
            self._queue.put_nowait(item)
            return True
        except asyncio.QueueFull:
            logger.error("Work queue full (%d), dropping %s", self._queue.maxsize, type(item).__name__)
            return False

    @property
    def queue_depth(self) -> int:
        return self._queue.qsize()

    async def _consume(self) -> None:
        while not self._stopping:
            try:
                item = await asyncio.wait_for(self._queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue

            try:
                async with self._lock:
                    await self.handle(item)
            except Exception as exc:
                logger.error("Work item %s failed: %s", type(item).__name__, exc)
                await self.journal.emit(
                    LPEventType.ERROR,
                    source=type(item).__name__,
                    error=str(exc),
                )
            finally:
                self._queue.task_done()

    async def handle(self, item: WorkItem) -> None:
        """Process one work item. Callers hold the tick lock."""
        if isinstance(item, AdjustmentRequest):
            await self._handle_adjustment(item)
        elif isinstance(item, ParsedAttestation):
            await self._handle_attestation(item)
        else:
            raise TypeError(f"Unknown work item: {item!r}")

    async def _handle_attestation(self, attestation: ParsedAttestation) -> None:
        group, market_id = attestation.market_address, attestation.market_id

        if self.is_halted(group, market_id):
            logger.info("Market %d is halted, ignoring attestation %s",
                        market_id, attestation.attestation_id)
            return
        if self.policy.has_max_positions():
            logger.warning(
                "Maximum positions (%d) reached, ignoring attestation %s",
                self.policy.max_positions, attestation.attestation_id,
            )
            return

        try:
            position = await self._open_for_market(group, market_id, attestation.likelihood)
        except PositionRejected as exc:
            logger.warning("Attestation %s not acted on: %s", attestation.attestation_id, exc)
            return

        logger.info(
            "Created position %s for market %d from attestation %s",
            position.id, market_id, attestation.attestation_id,
        )

    async def _handle_adjustment(self, request: AdjustmentRequest) -> None:
        old = request.position

        if request.emergency:
            self._halted.add(self._key(old.group_address, old.market_id))
            logger.warning(
                "Emergency stop: closing %s and halting market %d (price=%.4f target=%.4f)",
                old.id, old.market_id, request.current_price, old.target_price,
            )
            current = self.coordinator.get(old.id) or old
            if not await self.coordinator.close_position(current):
                self.coordinator.retire(current)
            return

        new_target = max(MIN_TARGET_PRICE, min(MAX_TARGET_PRICE, request.current_price))
        market = await self._chain_for(old.group_address).get_market(old.market_id)
        tick_range = self._tick_range_for(market, new_target)

        logger.info(
            "Adjusting %s: price=%.4f target %.4f -> %.4f, ticks %d..%d",
            old.id, request.current_price, old.target_price, new_target,
            tick_range.lower_tick, tick_range.upper_tick,
        )
        new_position = await self.coordinator.adjust_position(
            old, tick_range, new_target, self.collateral_amount,
            calculate_price_range(new_target, self.concentration_range),
        )
        if new_position is None:
            logger.info("Position %s was already settled, retired without reopening", old.id)
            return

        await self.journal.emit(
            LPEventType.POSITION_ADJUSTED,
            old_position_id=old.id,
            position=new_position,
        )

    async def close_manually(self, position: LiquidityPosition) -> bool:
        """Operator-requested close, run as its own tick."""
        async with self._lock:
            return await self.coordinator.close_position(position)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def status(self) -> dict:
        now = self._clock()
        return {
            "running": self.running,
            "uptime_seconds": round(now - self._started_at) if self._started_at else 0,
            "queue_depth": self.queue_depth,
            "halted_markets": [
                {"group_address": g, "market_id": m} for g, m in self.halted_markets()
            ],
            "positions": self.policy.position_stats(),
            "last_scan": self._last_scan,
        }
