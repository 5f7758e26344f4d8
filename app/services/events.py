"""
app/services/events.py
Structured agent events.

Every event is logged, kept in an in-memory ring buffer for the status API
and, when a session factory is configured, written to the positionevent
table. positionCreated / positionClosed also upsert the PositionRecord
ledger row.
"""

import json
import logging
import time
from collections import deque
from collections.abc import Callable
from dataclasses import asdict, dataclass, field, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from core.constants import EVENT_BUFFER_SIZE
from core.models import LiquidityPosition
from database.models import PositionEvent, PositionRecord

logger = logging.getLogger(__name__)


class LPEventType(str, Enum):
    POSITION_CREATED = "positionCreated"
    POSITION_CLOSED = "positionClosed"
    POSITION_NEEDS_ADJUSTMENT = "positionNeedsAdjustment"
    POSITION_ADJUSTED = "positionAdjusted"
    ATTESTATION_RECEIVED = "attestationReceived"
    ERROR = "error"


@dataclass
class LPEvent:
    type: LPEventType
    data: dict[str, Any]
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "timestamp": self.timestamp, "data": self.data}


def _jsonable(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return {k: _jsonable(v) for k, v in asdict(value).items()}
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    # uint256 amounts do not fit a JSON number safely
    if isinstance(value, int) and not isinstance(value, bool) and abs(value) > 2 ** 53:
        return str(value)
    return value


class EventJournal:
    """Fan-out for agent events: log, ring buffer and database."""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] | None = None,
        buffer_size: int = EVENT_BUFFER_SIZE,
    ) -> None:
        self._session_factory = session_factory
        self._buffer: deque[LPEvent] = deque(maxlen=buffer_size)

    def recent(self, limit: int | None = None) -> list[LPEvent]:
        """Newest-last list of buffered events."""
        events = list(self._buffer)
        return events[-limit:] if limit else events

    async def emit(self, event_type: LPEventType, **data: Any) -> LPEvent:
        event = LPEvent(type=event_type, data=_jsonable(data))
        self._buffer.append(event)

        if event_type == LPEventType.ERROR:
            logger.error("Agent event %s: %s", event_type.value, event.data)
        else:
            logger.info("Agent event %s: %s", event_type.value, event.data)

        if self._session_factory is not None:
            try:
                await self._persist(event, data.get("position"))
            except Exception as exc:
                # persistence failures are logged, never raised
                logger.error("Failed to persist %s event: %s", event_type.value, exc)

        return event

    async def _persist(self, event: LPEvent, position: Any) -> None:
        position_id = None
        market_id = event.data.get("market_id")
        if isinstance(position, LiquidityPosition):
            position_id = position.id
            market_id = position.market_id

        async with self._session_factory() as session:
            session.add(PositionEvent(
                event_type=event.type.value,
                position_id=position_id,
                market_id=market_id,
                payload=json.dumps(event.data, default=str),
                created_at=datetime.fromtimestamp(event.timestamp, timezone.utc),
            ))

            if isinstance(position, LiquidityPosition) and event.type in (
                LPEventType.POSITION_CREATED,
                LPEventType.POSITION_CLOSED,
            ):
                await _upsert_record(session, position)

            await session.commit()


async def _upsert_record(session: AsyncSession, position: LiquidityPosition) -> None:
    record = (await session.execute(
        select(PositionRecord).where(PositionRecord.position_id == position.id)
    )).scalars().first()

    if record is None:
        record = PositionRecord(
            position_id=position.id,
            market_id=position.market_id,
            group_address=position.group_address,
            token_id=position.token_id,
            lower_tick=position.lower_tick,
            upper_tick=position.upper_tick,
            liquidity=str(position.liquidity),
            target_price=position.target_price,
            opened_at=datetime.fromtimestamp(position.created_at, timezone.utc),
        )

    record.is_active = position.is_active
    if not position.is_active:
        record.closed_at = datetime.fromtimestamp(position.last_updated, timezone.utc)

    session.add(record)
