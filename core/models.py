"""
core/models.py
Domain types shared by the price model, the position policy and the
lifecycle coordinator. Plain dataclasses; persistence lives in
database/models.py.
"""

import time
from dataclasses import dataclass, field


def _now() -> float:
    return time.time()


@dataclass(frozen=True)
class TickRange:
    """A tick interval [lower_tick, upper_tick)."""
    lower_tick: int
    upper_tick: int


@dataclass(frozen=True)
class PriceRange:
    """Price band around a target price. Derived, never persisted."""
    lower: float
    upper: float
    center: float


@dataclass(frozen=True)
class Market:
    """A market as read from the protocol contract.

    Re-read on every use; only ``settled``, ``settlement_price_d18`` and
    ``current_sqrt_price_x96`` change between reads.
    """
    market_id: int
    group_address: str
    start_time: int
    end_time: int
    pool: str
    base_token: str
    quote_token: str
    min_price_d18: int
    max_price_d18: int
    min_tick: int
    max_tick: int
    settled: bool
    settlement_price_d18: int
    current_sqrt_price_x96: int
    collateral_asset: str
    claim_yes: str = ""
    claim_no: str = ""

    def is_expired(self, now: float) -> bool:
        return now > self.end_time


@dataclass
class LiquidityPosition:
    """A liquidity position opened by this agent.

    An adjustment never mutates the range of an existing entity: the old one
    is closed (is_active=False) and a new one is created.
    """
    id: str
    market_id: int
    group_address: str
    lower_tick: int
    upper_tick: int
    liquidity: int
    target_price: float
    token_id: int | None = None
    created_at: float = field(default_factory=_now)
    last_updated: float = field(default_factory=_now)
    is_active: bool = True


@dataclass(frozen=True)
class OnchainPosition:
    """Decoded getPosition() record."""
    token_id: int
    kind: int
    market_id: int
    deposited_collateral: int
    borrowed_v_quote: int
    borrowed_v_base: int
    v_quote_amount: int
    v_base_amount: int
    uniswap_position_id: int
    settled: bool


@dataclass(frozen=True)
class LiquidityQuote:
    """quoteLiquidityPositionTokens() result."""
    amount_base: int
    amount_quote: int
    liquidity: int


@dataclass(frozen=True)
class MarketSummary:
    """One row of the unsettled-markets listing."""
    market_id: int
    group_address: str
    collateral_asset: str
    question: str = ""
    claim_yes: str | None = None
    claim_no: str | None = None
    end_timestamp: int | None = None


@dataclass(frozen=True)
class ParsedAttestation:
    """A prediction attestation decoded into a likelihood."""
    attestation_id: str
    attester: str
    market_address: str
    market_id: int
    likelihood: float
    reasoning: str
    timestamp: float
    block_number: int = 0


@dataclass(frozen=True)
class AdjustmentRequest:
    """Emitted by the position policy after a confirmed deviation."""
    position: LiquidityPosition
    current_price: float
    requested_at: float
    emergency: bool = False
