"""
app/routes/agent.py
Agent endpoints: status, on-demand market scan, recent events.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from app.routes.positions import get_agent
from app.services.market_agent import LiquidityAgent

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/agent", tags=["agent"])


# ------------------------------------------------------------------
# Response models
# ------------------------------------------------------------------

class PositionStats(BaseModel):
    total_positions: int
    active_positions: int
    positions_in_cooldown: int
    average_age_seconds: int


class HaltedMarket(BaseModel):
    group_address: str
    market_id: int


class AgentStatus(BaseModel):
    """Response for GET /agent/status."""
    running: bool
    uptime_seconds: int
    queue_depth: int
    halted_markets: list[HaltedMarket]
    positions: PositionStats
    last_scan: dict[str, Any] | None


class ScanResponse(BaseModel):
    """Response for POST /agent/scan."""
    markets: int
    opened: int
    skipped: int
    errors: int


class EventRow(BaseModel):
    type: str
    timestamp: float
    data: dict[str, Any]


class EventsResponse(BaseModel):
    """Response for GET /agent/events."""
    count: int
    events: list[EventRow]


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------

@router.get("/status", response_model=AgentStatus)
async def agent_status(agent: LiquidityAgent = Depends(get_agent)) -> AgentStatus:
    """Running flag, uptime, position counts and halted markets."""
    return AgentStatus(**agent.status())


@router.post("/scan", response_model=ScanResponse)
async def trigger_scan(agent: LiquidityAgent = Depends(get_agent)) -> ScanResponse:
    """Run one market scan now."""
    try:
        summary = await agent.run_market_scan()
    except RuntimeError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return ScanResponse(**summary)


@router.get("/events", response_model=EventsResponse)
async def recent_events(
    limit: int = Query(50, ge=1, le=500, description="Max events to return"),
    agent: LiquidityAgent = Depends(get_agent),
) -> EventsResponse:
    """Most recent journaled events, oldest first."""
    events = [EventRow(**e.to_dict()) for e in agent.journal.recent(limit)]
    return EventsResponse(count=len(events), events=events)
