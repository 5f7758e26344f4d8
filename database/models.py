"""
database/models.py
SQLModel table definitions for the liquidity agent.

The chain is the source of truth for positions; these tables are the
agent's own record of what it opened, closed and observed.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    """Timezone-aware UTC now (replaces the deprecated utcnow call)."""
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# PositionRecord: one row per liquidity position the agent opened
# ---------------------------------------------------------------------------

class PositionRecord(SQLModel, table=True):
    """Ledger row for a liquidity position, upserted on create and close."""

    id: Optional[int] = Field(default=None, primary_key=True)

    position_id: str = Field(index=True, unique=True)      # "position-<tokenId>"
    market_id: int = Field(index=True)
    group_address: str
    token_id: Optional[int] = None

    lower_tick: int
    upper_tick: int
    liquidity: str                                          # uint128, kept as text
    target_price: float

    is_active: bool = Field(default=True, index=True)
    opened_at: datetime = Field(default_factory=_utcnow)
    closed_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# PositionEvent: journal of every event the agent emitted
# ---------------------------------------------------------------------------

class PositionEvent(SQLModel, table=True):
    """One journaled agent event."""

    id: Optional[int] = Field(default=None, primary_key=True)

    event_type: str = Field(index=True)
    position_id: Optional[str] = Field(default=None, index=True)
    market_id: Optional[int] = None
    payload: str                                            # JSON
    created_at: datetime = Field(default_factory=_utcnow)
