"""
tests/conftest.py
Shared fixtures and fakes for the test suite.
"""

import os

# Required settings must exist before any module reads get_settings().
os.environ.setdefault("RPC_URL", "http://localhost:8545")
os.environ.setdefault("PRIVATE_KEY", "0x" + "11" * 32)
os.environ.setdefault("CHAIN_ID", "42161")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from collections.abc import AsyncGenerator
from dataclasses import replace

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

import database.models as _models  # noqa: F401  registers table metadata
from app.services.chain_codec import LogEntry, TxConfirmation
from app.services.events import EventJournal
from app.services.lifecycle import PositionLifecycleCoordinator
from app.services.position_policy import PositionPolicy
from core.constants import TRANSFER_EVENT_TOPIC, ZERO_ADDRESS
from core.exceptions import ChainWriteError
from core.models import LiquidityQuote, Market, OnchainPosition
from core.tick_math import tick_to_sqrt_price_x96

WALLET = "0x1111111111111111111111111111111111111111"
GROUP = "0x2222222222222222222222222222222222222222"
COLLATERAL = "0x3333333333333333333333333333333333333333"
NOW = 1_700_000_000.0


def address_topic(address: str) -> str:
    return "0x" + "0" * 24 + address[2:].lower()


def token_topic(token_id: int) -> str:
    return "0x" + format(token_id, "064x")


def make_market(**overrides) -> Market:
    """Helper to create a Market with sensible defaults (price ~0.726)."""
    defaults = dict(
        market_id=1,
        group_address=GROUP,
        start_time=int(NOW) - 86_400,
        end_time=int(NOW) + 86_400,
        pool="0x4444444444444444444444444444444444444444",
        base_token="0x5555555555555555555555555555555555555555",
        quote_token="0x6666666666666666666666666666666666666666",
        min_price_d18=0,
        max_price_d18=10 ** 18,
        min_tick=-92200,
        max_tick=0,
        settled=False,
        settlement_price_d18=0,
        current_sqrt_price_x96=tick_to_sqrt_price_x96(-3200),
        collateral_asset=COLLATERAL,
    )
    defaults.update(overrides)
    return Market(**defaults)


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, now: float = NOW) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakePending:
    def __init__(self, confirmation: TxConfirmation | None = None, error: Exception | None = None) -> None:
        self.tx_hash = confirmation.tx_hash if confirmation else "0xdead"
        self._confirmation = confirmation
        self._error = error

    async def wait(self) -> TxConfirmation:
        if self._error is not None:
            raise self._error
        return self._confirmation


class FakeChain:
    """In-memory stand-in for ChainClient on one market group."""

    wallet_address = WALLET
    contract_address = GROUP

    def __init__(self, *markets: Market, token_balance: int = 10 ** 20, allowance: int = 0) -> None:
        self.markets: dict[int, Market] = {m.market_id: m for m in markets}
        self.positions: dict[int, OnchainPosition] = {}
        self.owned: list[int] = []
        self.token_balance = token_balance
        self.allowance = allowance
        self.quote = LiquidityQuote(amount_base=5 * 10 ** 17, amount_quote=4 * 10 ** 17, liquidity=123_456)
        self.writes: list[tuple[str, dict]] = []
        self.reads: list[str] = []
        self.emit_mint_log = True
        self.fail_create: Exception | None = None
        self.quote_args: tuple | None = None
        self._next_token_id = 1
        self._block = 100

    def _confirmation(self, logs: tuple[LogEntry, ...] = ()) -> TxConfirmation:
        self._block += 1
        return TxConfirmation(tx_hash=f"0x{self._block:064x}", block_number=self._block, gas_used=21_000, logs=logs)

    def add_position(self, token_id: int, market_id: int, kind: int = 1, settled: bool = False) -> None:
        self.positions[token_id] = OnchainPosition(
            token_id=token_id, kind=kind, market_id=market_id,
            deposited_collateral=10 ** 18, borrowed_v_quote=0, borrowed_v_base=0,
            v_quote_amount=0, v_base_amount=0, uniswap_position_id=token_id, settled=settled,
        )
        self.owned.append(token_id)
        self._next_token_id = max(self._next_token_id, token_id + 1)

    # reads
    async def get_market(self, market_id: int) -> Market:
        self.reads.append("getMarket")
        return self.markets[market_id]

    async def get_sqrt_price(self, market_id: int) -> int:
        return self.markets[market_id].current_sqrt_price_x96

    async def get_position(self, token_id: int) -> OnchainPosition:
        self.reads.append("getPosition")
        return self.positions[token_id]

    async def balance_of(self, owner: str) -> int:
        self.reads.append("balanceOf")
        return len(self.owned)

    async def token_of_owner_by_index(self, owner: str, index: int) -> int:
        return self.owned[index]

    async def get_token_balance(self, token: str, owner: str) -> int:
        self.reads.append("tokenBalance")
        return self.token_balance

    async def get_allowance(self, token: str, owner: str, spender: str) -> int:
        return self.allowance

    async def get_token_symbol(self, token: str) -> str:
        return "sUSDS"

    async def quote_liquidity(self, market_id, collateral_amount, current, lower, upper) -> LiquidityQuote:
        self.quote_args = (market_id, collateral_amount, current, lower, upper)
        return self.quote

    # writes
    async def create_position(self, params: dict) -> FakePending:
        self.writes.append(("create", params))
        if self.fail_create is not None:
            return FakePending(error=self.fail_create)

        token_id = self._next_token_id
        self.add_position(token_id, params["marketId"])
        logs: tuple[LogEntry, ...] = ()
        if self.emit_mint_log:
            logs = (LogEntry(
                address=GROUP,
                topics=(
                    TRANSFER_EVENT_TOPIC,
                    address_topic(ZERO_ADDRESS),
                    address_topic(WALLET),
                    token_topic(token_id),
                ),
            ),)
        return FakePending(self._confirmation(logs))

    async def close_position(self, params: dict) -> FakePending:
        self.writes.append(("close", params))
        token_id = params["positionId"]
        # a fully closed liquidity position is cleared on-chain
        self.positions[token_id] = replace(self.positions[token_id], kind=0)
        return FakePending(self._confirmation())

    async def approve(self, token: str, spender: str, amount: int) -> FakePending:
        self.writes.append(("approve", {"token": token, "spender": spender, "amount": amount}))
        self.allowance = amount
        return FakePending(self._confirmation())


class FailingCreate(ChainWriteError):
    def __init__(self) -> None:
        super().__init__("createLiquidityPosition", "execution reverted")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain(make_market())


@pytest.fixture
def journal() -> EventJournal:
    return EventJournal()


@pytest.fixture
def policy(clock: FakeClock) -> PositionPolicy:
    return PositionPolicy(
        max_positions=10,
        deviation_threshold=0.02,
        cooldown_period=300.0,
        emergency_threshold=0.10,
        clock=clock,
    )


@pytest.fixture
def coordinator(
    chain: FakeChain, policy: PositionPolicy, journal: EventJournal, clock: FakeClock
) -> PositionLifecycleCoordinator:
    return PositionLifecycleCoordinator(
        lambda _group: chain, policy, journal, tx_deadline=3600, clock=clock
    )


@pytest_asyncio.fixture
async def db_session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """In-memory SQLite session factory shared by one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def async_db_session(
    db_session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Provide an in-memory SQLite async session for tests."""
    async with db_session_factory() as session:
        yield session
