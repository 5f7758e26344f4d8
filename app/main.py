"""
app/main.py
FastAPI entry point for the prediction-market liquidity agent.
"""

import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator
from datetime import datetime, timezone

from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

import database.models as _models  # noqa: F401  registers tables with SQLModel metadata
from agents.forecaster.oracle import estimate_probability_async
from app.routes.agent import router as agent_router
from app.routes.positions import router as positions_router
from app.services.attestation_source import AttestationSource
from app.services.chain_client import ChainGateway, connect_chain
from app.services.events import EventJournal
from app.services.lifecycle import PositionLifecycleCoordinator
from app.services.market_agent import LiquidityAgent
from app.services.market_listing import MarketListingClient
from app.services.position_policy import PositionPolicy
from core.config import Settings, get_settings
from core.constants import SYSTEM_VERSION
from database.connection import async_session, get_session, init_db

logging.basicConfig(
    level=get_settings().LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def build_agent(
    settings: Settings,
    gateway: ChainGateway,
    listing: MarketListingClient,
) -> LiquidityAgent:
    """Wire policy, coordinator, journal and producers from settings."""
    journal = EventJournal(async_session)
    policy = PositionPolicy(
        max_positions=settings.MAX_POSITIONS,
        deviation_threshold=settings.DEVIATION_THRESHOLD,
        cooldown_period=settings.COOLDOWN_PERIOD_SECONDS,
        emergency_threshold=settings.EMERGENCY_STOP_THRESHOLD,
    )
    coordinator = PositionLifecycleCoordinator(
        gateway.for_group, policy, journal, tx_deadline=settings.TX_DEADLINE_SECONDS
    )

    attestations = None
    if settings.AGENT_MODE == "attestation":
        attestations = AttestationSource(
            gateway.eas(settings.EAS_CONTRACT_ADDRESS),
            settings.EAS_SCHEMA_ID,
            settings.eas_target_addresses,
            settings.EAS_START_FROM_DAYS_AGO,
        )

    return LiquidityAgent(
        gateway.for_group,
        coordinator,
        journal,
        oracle=estimate_probability_async,
        listing=listing,
        attestations=attestations,
        concentration_range=settings.CONCENTRATION_RANGE,
        collateral_amount=settings.DEFAULT_COLLATERAL_AMOUNT,
        queue_size=settings.WORK_QUEUE_SIZE,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup: DB, chain, agent, scheduler. Shutdown: reverse order."""
    from app.services.scheduler import start_scheduler, stop_scheduler

    settings = get_settings()

    await init_db()
    logger.info("Database initialized: tables created")

    gateway = await connect_chain(settings)
    listing = MarketListingClient(settings.GRAPHQL_ENDPOINT)
    agent = build_agent(settings, gateway, listing)
    app.state.agent = agent

    agent.start()
    start_scheduler(agent, settings)
    try:
        yield
    finally:
        stop_scheduler()
        await agent.stop()
        await listing.close()
        await gateway.close()


app = FastAPI(
    title="Prediction Market Liquidity Agent",
    version=SYSTEM_VERSION,
    lifespan=lifespan,
)

app.include_router(agent_router)
app.include_router(positions_router)


@app.get("/health")
async def health_check(session: AsyncSession = Depends(get_session)) -> dict:
    """Prove the API and database are alive."""
    try:
        await session.execute(text("SELECT 1"))
        return {
            "status": "healthy",
            "db": "connected",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    except Exception as exc:
        return JSONResponse(
            status_code=503,
            content={
                "status": "unhealthy",
                "db": str(exc),
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )
