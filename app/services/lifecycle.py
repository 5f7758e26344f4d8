"""
app/services/lifecycle.py
Position lifecycle coordinator: opens, closes and recenters liquidity
positions on the protocol contract.

The coordinator is the only component that writes on-chain state and owns
the authoritative set of positions this process opened. Every open is
guarded, in order, by:
  (a) market not settled
  (b) market not past its end time
  (c) no active liquidity position for the market in the wallet's
      on-chain position enumeration (never a local cache)
  (d) tracked-position ceiling not reached
  (e) wallet collateral balance covers the amount (soft failure)
All of them raise before the first transaction is submitted.

Transactions use zero slippage (both minimum amounts are 0) and a
TX_DEADLINE_SECONDS deadline.
"""

import logging
import time
from collections.abc import Callable

from app.services.chain_client import ChainClient
from app.services.chain_codec import extract_minted_token_id
from app.services.events import EventJournal, LPEventType
from app.services.position_policy import PositionPolicy
from core.constants import LIQUIDITY_POSITION_KIND, MAX_UINT256, SLIPPAGE_MIN_AMOUNT
from core.exceptions import (
    ChainReadError,
    DuplicatePosition,
    InsufficientCollateral,
    InvalidTickRange,
    MarketNotOpen,
    MaxPositionsReached,
)
from core.models import LiquidityPosition, Market, OnchainPosition, PriceRange, TickRange
from core.tick_math import tick_to_sqrt_price_x96

logger = logging.getLogger(__name__)

_FALLBACK_SYMBOL = "TOKEN"


class CollateralInfoCache:
    """Collateral token symbol for log lines, refetched when the asset changes."""

    def __init__(self) -> None:
        self._address: str | None = None
        self._symbol: str = _FALLBACK_SYMBOL

    async def symbol(self, chain: ChainClient, collateral_asset: str) -> str:
        if self._address == collateral_asset.lower():
            return self._symbol
        try:
            self._symbol = await chain.get_token_symbol(collateral_asset)
        except ChainReadError as exc:
            logger.warning("Could not read symbol for %s (%s), using %s",
                           collateral_asset, exc, _FALLBACK_SYMBOL)
            self._symbol = _FALLBACK_SYMBOL
        self._address = collateral_asset.lower()
        return self._symbol


def _format_units(amount: int, decimals: int = 18) -> str:
    return f"{amount / 10 ** decimals:.6f}"


class PositionLifecycleCoordinator:
    """Open / close / adjust liquidity positions against the protocol."""

    def __init__(
        self,
        chain_for: Callable[[str], ChainClient],
        policy: PositionPolicy,
        journal: EventJournal,
        tx_deadline: int = 3600,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._chain_for = chain_for
        self.policy = policy
        self.journal = journal
        self._tx_deadline = tx_deadline
        self._clock = clock
        self.collateral_info = CollateralInfoCache()
        self._positions: dict[str, LiquidityPosition] = {}

    # ------------------------------------------------------------------
    # Local position set
    # ------------------------------------------------------------------

    def get(self, position_id: str) -> LiquidityPosition | None:
        return self._positions.get(position_id)

    def active_positions(self) -> list[LiquidityPosition]:
        return [p for p in self._positions.values() if p.is_active]

    # ------------------------------------------------------------------
    # Chain queries
    # ------------------------------------------------------------------

    async def find_active_position(
        self, group_address: str, market_id: int
    ) -> OnchainPosition | None:
        """
        Enumerate the wallet's position NFTs and return the first active
        liquidity position on market_id, or None.
        """
        chain = self._chain_for(group_address)
        owner = chain.wallet_address
        count = await chain.balance_of(owner)

        for index in range(count):
            token_id = await chain.token_of_owner_by_index(owner, index)
            record = await chain.get_position(token_id)
            if (
                record.kind == LIQUIDITY_POSITION_KIND
                and not record.settled
                and record.market_id == market_id
            ):
                return record

        return None

    async def ensure_collateral_approval(
        self, chain: ChainClient, collateral_asset: str, amount: int
    ) -> None:
        """Approve the protocol for MAX_UINT256 when the allowance is below amount."""
        allowance = await chain.get_allowance(
            collateral_asset, chain.wallet_address, chain.contract_address
        )
        if allowance >= amount:
            logger.debug("Allowance %d covers %d, no approval needed", allowance, amount)
            return

        logger.info("Allowance %d below %d, approving %s", allowance, amount, collateral_asset)
        pending = await chain.approve(collateral_asset, chain.contract_address, MAX_UINT256)
        confirmation = await pending.wait()
        logger.info("Approval confirmed in block %d", confirmation.block_number)

    # ------------------------------------------------------------------
    # Open
    # ------------------------------------------------------------------

    async def _check_preconditions(self, chain: ChainClient, market: Market, amount: int) -> None:
        now = self._clock()

        if market.settled:
            raise MarketNotOpen(market.market_id, "market is settled")
        if market.is_expired(now):
            raise MarketNotOpen(market.market_id, f"market ended at {market.end_time}")

        existing = await self.find_active_position(market.group_address, market.market_id)
        if existing is not None:
            raise DuplicatePosition(
                market.market_id, f"active liquidity position {existing.token_id} already held"
            )

        if self.policy.has_max_positions():
            raise MaxPositionsReached(
                market.market_id, f"tracking {self.policy.max_positions} positions already"
            )

        balance = await chain.get_token_balance(market.collateral_asset, chain.wallet_address)
        if balance < amount:
            raise InsufficientCollateral(market.market_id, balance, amount)

    async def open_position(
        self,
        market: Market,
        target_price: float,
        tick_range: TickRange,
        collateral_amount: int,
        price_range: PriceRange | None = None,
    ) -> LiquidityPosition:
        """
        Open a liquidity position on market centred on target_price.

        price_range, when given, is the probability band the range was
        derived from and is recorded on the creation event.

        Raises
        ------
        PositionRejected
            A precondition failed; nothing was submitted.
        InvalidTickRange
            The range collapses after re-clamping to the fresh market bounds.
        ChainReadError, ChainWriteError, TokenIdExtractionFailed
            The chain calls failed.
        """
        chain = self._chain_for(market.group_address)
        await self._check_preconditions(chain, market, collateral_amount)

        # Bounds and price may have moved since the range was computed.
        fresh = await chain.get_market(market.market_id)
        lower_tick = max(tick_range.lower_tick, fresh.min_tick)
        upper_tick = min(tick_range.upper_tick, fresh.max_tick)
        if lower_tick >= upper_tick:
            raise InvalidTickRange(lower_tick, upper_tick)
        if (lower_tick, upper_tick) != (tick_range.lower_tick, tick_range.upper_tick):
            logger.info(
                "Market %d: range %d..%d narrowed to %d..%d by market bounds",
                market.market_id, tick_range.lower_tick, tick_range.upper_tick,
                lower_tick, upper_tick,
            )

        quote = await chain.quote_liquidity(
            fresh.market_id,
            collateral_amount,
            fresh.current_sqrt_price_x96,
            tick_to_sqrt_price_x96(lower_tick),
            tick_to_sqrt_price_x96(upper_tick),
        )

        symbol = await self.collateral_info.symbol(chain, fresh.collateral_asset)
        logger.info(
            "Market %d: opening %d..%d target=%.4f collateral=%s %s "
            "(base=%d quote=%d liquidity=%d)",
            fresh.market_id, lower_tick, upper_tick, target_price,
            _format_units(collateral_amount), symbol,
            quote.amount_base, quote.amount_quote, quote.liquidity,
        )

        await self.ensure_collateral_approval(chain, fresh.collateral_asset, collateral_amount)

        params = {
            "marketId": fresh.market_id,
            "amountBaseToken": quote.amount_base,
            "amountQuoteToken": quote.amount_quote,
            "collateralAmount": collateral_amount,
            "lowerTick": lower_tick,
            "upperTick": upper_tick,
            "minAmountBaseToken": SLIPPAGE_MIN_AMOUNT,
            "minAmountQuoteToken": SLIPPAGE_MIN_AMOUNT,
            "deadline": int(self._clock()) + self._tx_deadline,
        }
        pending = await chain.create_position(params)
        confirmation = await pending.wait()
        logger.info(
            "Market %d: creation confirmed in block %d (gas %d)",
            fresh.market_id, confirmation.block_number, confirmation.gas_used,
        )

        token_id = extract_minted_token_id(confirmation, chain.wallet_address)

        now = self._clock()
        position = LiquidityPosition(
            id=f"position-{token_id}",
            market_id=fresh.market_id,
            group_address=market.group_address,
            lower_tick=lower_tick,
            upper_tick=upper_tick,
            liquidity=quote.liquidity,
            target_price=target_price,
            token_id=token_id,
            created_at=now,
            last_updated=now,
        )
        self._positions[position.id] = position
        self.policy.track(position)

        await self.journal.emit(
            LPEventType.POSITION_CREATED,
            position=position,
            tx_hash=confirmation.tx_hash,
            block_number=confirmation.block_number,
            price_range=price_range,
        )
        return position

    # ------------------------------------------------------------------
    # Close
    # ------------------------------------------------------------------

    async def close_position(self, position: LiquidityPosition) -> bool:
        """
        Close position on-chain.

        Returns False, without submitting anything, when the on-chain record
        is not a liquidity position or is already settled.

        Raises
        ------
        ValueError
            If the position has no token id.
        """
        if position.token_id is None:
            raise ValueError(f"Position {position.id} has no token id")

        chain = self._chain_for(position.group_address)
        record = await chain.get_position(position.token_id)
        if record.kind != LIQUIDITY_POSITION_KIND or record.settled:
            logger.info(
                "Position %s not closable (kind=%d settled=%s), nothing to do",
                position.id, record.kind, record.settled,
            )
            return False

        params = {
            "positionId": position.token_id,
            "amount0Min": SLIPPAGE_MIN_AMOUNT,
            "amount1Min": SLIPPAGE_MIN_AMOUNT,
            "tradeSlippage": SLIPPAGE_MIN_AMOUNT,
            "deadline": int(self._clock()) + self._tx_deadline,
        }
        pending = await chain.close_position(params)
        confirmation = await pending.wait()

        # callers may hold a policy copy; update the owned entity
        position = self._positions.setdefault(position.id, position)
        position.is_active = False
        position.last_updated = self._clock()
        self.policy.untrack(position.id)

        logger.info("Position %s closed in block %d", position.id, confirmation.block_number)
        await self.journal.emit(
            LPEventType.POSITION_CLOSED,
            position=position,
            tx_hash=confirmation.tx_hash,
            block_number=confirmation.block_number,
        )
        return True

    def retire(self, position: LiquidityPosition) -> LiquidityPosition:
        """Stop managing a position that can no longer be closed (settled)."""
        retired = self._positions.get(position.id, position)
        retired.is_active = False
        retired.last_updated = self._clock()
        self._positions[retired.id] = retired
        self.policy.untrack(retired.id)
        return retired

    # ------------------------------------------------------------------
    # Adjust
    # ------------------------------------------------------------------

    async def adjust_position(
        self,
        old: LiquidityPosition,
        new_tick_range: TickRange,
        new_target_price: float,
        collateral_amount: int,
        price_range: PriceRange | None = None,
    ) -> LiquidityPosition | None:
        """
        Close old, then open a new position on the same market.

        Not atomic: if the open fails after the close succeeded the market
        has no position until the next cycle.

        Returns None when the old position was not closable; it is retired
        and no new position is opened.
        """
        current = self._positions.get(old.id, old)
        if not await self.close_position(current):
            self.retire(current)
            return None

        chain = self._chain_for(current.group_address)
        market = await chain.get_market(current.market_id)
        return await self.open_position(
            market, new_target_price, new_tick_range, collateral_amount, price_range
        )
