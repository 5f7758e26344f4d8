"""
tests/test_positions.py
Tests for the position ledger and agent HTTP endpoints.
"""

from datetime import datetime, timedelta, timezone

import httpx
import pytest
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncSession

from app.routes.agent import router as agent_router
from app.routes.positions import router as positions_router
from app.services.market_agent import LiquidityAgent
from core.models import TickRange
from database.connection import get_session
from database.models import PositionRecord
from tests.conftest import GROUP, make_market


def _make_record(**overrides) -> PositionRecord:
    """Helper to create a PositionRecord with sensible defaults."""
    defaults = dict(
        position_id="position-1",
        market_id=1,
        group_address=GROUP,
        token_id=1,
        lower_tick=-3400,
        upper_tick=-2800,
        liquidity=str(2 ** 100),
        target_price=0.73,
        is_active=True,
        opened_at=datetime.now(timezone.utc),
    )
    defaults.update(overrides)
    return PositionRecord(**defaults)


@pytest.fixture
def agent(chain, coordinator, journal, clock) -> LiquidityAgent:
    return LiquidityAgent(lambda _g: chain, coordinator, journal, clock=clock)


@pytest.fixture
def api(db_session_factory, agent) -> FastAPI:
    app = FastAPI()
    app.include_router(agent_router)
    app.include_router(positions_router)

    async def override_session():
        async with db_session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    app.state.agent = agent
    return app


def _client(app: FastAPI) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
class TestListPositions:
    async def test_lists_newest_first(self, api, async_db_session: AsyncSession):
        now = datetime.now(timezone.utc)
        async_db_session.add(_make_record(position_id="position-1", opened_at=now - timedelta(hours=1)))
        async_db_session.add(_make_record(position_id="position-2", opened_at=now))
        await async_db_session.commit()

        async with _client(api) as client:
            resp = await client.get("/positions")

        assert resp.status_code == 200
        body = resp.json()
        assert body["count"] == 2
        assert [p["position_id"] for p in body["positions"]] == ["position-2", "position-1"]
        assert body["positions"][0]["liquidity"] == str(2 ** 100)

    async def test_active_filter(self, api, async_db_session: AsyncSession):
        async_db_session.add(_make_record(position_id="position-1"))
        async_db_session.add(_make_record(
            position_id="position-2", is_active=False, closed_at=datetime.now(timezone.utc),
        ))
        await async_db_session.commit()

        async with _client(api) as client:
            closed = (await client.get("/positions", params={"active": "false"})).json()

        assert [p["position_id"] for p in closed["positions"]] == ["position-2"]
        assert closed["positions"][0]["closed_at"] is not None


@pytest.mark.asyncio
class TestClosePositionEndpoint:
    async def test_close(self, api, agent, chain):
        await agent.coordinator.open_position(
            make_market(), 0.73, TickRange(lower_tick=-3400, upper_tick=-2800), 10 ** 18
        )

        async with _client(api) as client:
            resp = await client.post("/positions/position-1/close")

        assert resp.status_code == 200
        assert resp.json() == {"position_id": "position-1", "closed": True, "detail": "closed"}
        assert chain.writes[-1][0] == "close"

    async def test_already_closed(self, api, agent):
        await agent.coordinator.open_position(
            make_market(), 0.73, TickRange(lower_tick=-3400, upper_tick=-2800), 10 ** 18
        )
        async with _client(api) as client:
            await client.post("/positions/position-1/close")
            resp = await client.post("/positions/position-1/close")

        assert resp.status_code == 400

    async def test_unknown_position(self, api):
        async with _client(api) as client:
            resp = await client.post("/positions/position-404/close")
        assert resp.status_code == 404

    async def test_agent_not_running(self, api):
        del api.state.agent
        async with _client(api) as client:
            resp = await client.post("/positions/position-1/close")
        assert resp.status_code == 503


@pytest.mark.asyncio
class TestAgentEndpoints:
    async def test_status(self, api):
        async with _client(api) as client:
            resp = await client.get("/agent/status")

        assert resp.status_code == 200
        body = resp.json()
        assert body["running"] is False
        assert body["positions"]["total_positions"] == 0
        assert body["halted_markets"] == []

    async def test_scan_without_listing_conflicts(self, api):
        async with _client(api) as client:
            resp = await client.post("/agent/scan")
        assert resp.status_code == 409

    async def test_events(self, api, agent):
        await agent.coordinator.open_position(
            make_market(), 0.73, TickRange(lower_tick=-3400, upper_tick=-2800), 10 ** 18
        )
        async with _client(api) as client:
            resp = await client.get("/agent/events", params={"limit": 10})

        body = resp.json()
        assert body["count"] == 1
        assert body["events"][0]["type"] == "positionCreated"
