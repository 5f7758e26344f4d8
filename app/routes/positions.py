"""
app/routes/positions.py
Position endpoints: view the position ledger and close positions manually.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, select

from app.services.market_agent import LiquidityAgent
from core.exceptions import LiquidityAgentError
from database.connection import get_session
from database.models import PositionRecord

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/positions", tags=["positions"])


# ------------------------------------------------------------------
# Response models
# ------------------------------------------------------------------

class PositionRow(BaseModel):
    """A single ledger row."""
    position_id: str
    market_id: int
    group_address: str
    token_id: int | None
    lower_tick: int
    upper_tick: int
    liquidity: str
    target_price: float
    is_active: bool
    opened_at: str
    closed_at: str | None


class PositionsResponse(BaseModel):
    """Response for GET /positions."""
    count: int
    positions: list[PositionRow]


class CloseResponse(BaseModel):
    """Response for POST /positions/{position_id}/close."""
    position_id: str
    closed: bool
    detail: str


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def get_agent(request: Request) -> LiquidityAgent:
    agent = getattr(request.app.state, "agent", None)
    if agent is None:
        raise HTTPException(status_code=503, detail="Agent not running")
    return agent


def _record_to_row(r: PositionRecord) -> PositionRow:
    return PositionRow(
        position_id=r.position_id,
        market_id=r.market_id,
        group_address=r.group_address,
        token_id=r.token_id,
        lower_tick=r.lower_tick,
        upper_tick=r.upper_tick,
        liquidity=r.liquidity,
        target_price=r.target_price,
        is_active=r.is_active,
        opened_at=r.opened_at.isoformat() if r.opened_at else "",
        closed_at=r.closed_at.isoformat() if r.closed_at else None,
    )


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------

@router.get("", response_model=PositionsResponse)
async def list_positions(
    active: bool | None = Query(None, description="Only active (true) or closed (false) positions"),
    session: AsyncSession = Depends(get_session),
) -> PositionsResponse:
    """List ledger positions, newest first."""
    query = select(PositionRecord).order_by(col(PositionRecord.opened_at).desc())
    if active is not None:
        query = query.where(PositionRecord.is_active == active)

    rows = (await session.execute(query)).scalars().all()
    positions = [_record_to_row(r) for r in rows]
    return PositionsResponse(count=len(positions), positions=positions)


@router.post("/{position_id}/close", response_model=CloseResponse)
async def close_position_endpoint(
    position_id: str,
    agent: LiquidityAgent = Depends(get_agent),
) -> CloseResponse:
    """Manually close a position opened by this process."""
    position = agent.coordinator.get(position_id)
    if position is None:
        raise HTTPException(status_code=404, detail="Position not found")
    if not position.is_active:
        raise HTTPException(status_code=400, detail="Position already closed")

    try:
        closed = await agent.close_manually(position)
    except LiquidityAgentError as exc:
        logger.error("Manual close of %s failed: %s", position_id, exc)
        raise HTTPException(status_code=502, detail=str(exc))

    detail = "closed" if closed else "position is settled or not a liquidity position"
    return CloseResponse(position_id=position_id, closed=closed, detail=detail)
