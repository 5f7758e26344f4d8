"""
app/services/scheduler.py
APScheduler-based background job scheduler.

Recurring jobs:
  1. Market scan: every MARKET_SCAN_INTERVAL_SECONDS (market mode)
  2. Attestation poll: every EAS_POLLING_INTERVAL_SECONDS (attestation mode)
  3. Position monitor: every max(5 s, EAS_POLLING_INTERVAL_SECONDS / 2)

All jobs run with max_instances=1 and coalesce=True so a slow tick is never
overlapped by the next one.
"""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from app.services.market_agent import LiquidityAgent
from app.services.position_policy import monitor_interval
from core.config import Settings
from core.constants import MIN_SCAN_INTERVAL_SECONDS

logger = logging.getLogger(__name__)

_scheduler: AsyncIOScheduler | None = None


def _make_jobs(agent: LiquidityAgent):
    async def _job_market_scan() -> None:
        """Scheduled job: scan unsettled markets."""
        try:
            await agent.run_market_scan()
        except Exception as exc:
            logger.error("Scheduled market scan failed: %s", exc)

    async def _job_attestation_poll() -> None:
        """Scheduled job: queue new attestations."""
        try:
            await agent.poll_attestations()
        except Exception as exc:
            logger.error("Attestation poll failed: %s", exc)

    async def _job_position_monitor() -> None:
        """Scheduled job: check tracked positions for deviation."""
        try:
            await agent.run_monitor()
        except Exception as exc:
            logger.error("Position monitor failed: %s", exc)

    return _job_market_scan, _job_attestation_poll, _job_position_monitor


def start_scheduler(agent: LiquidityAgent, settings: Settings) -> AsyncIOScheduler:
    """Initialize and start the APScheduler with the jobs for AGENT_MODE."""
    global _scheduler

    if _scheduler is not None:
        logger.warning("Scheduler already running")
        return _scheduler

    scan_job, poll_job, monitor_job = _make_jobs(agent)
    job_defaults = {"max_instances": 1, "coalesce": True}
    _scheduler = AsyncIOScheduler(job_defaults=job_defaults)

    if settings.AGENT_MODE == "attestation":
        _scheduler.add_job(
            poll_job,
            "interval",
            seconds=settings.EAS_POLLING_INTERVAL_SECONDS,
            id="attestation_poll",
            name="Attestation Poll",
        )
    else:
        scan_seconds = max(MIN_SCAN_INTERVAL_SECONDS, settings.MARKET_SCAN_INTERVAL_SECONDS)
        _scheduler.add_job(
            scan_job,
            "interval",
            seconds=scan_seconds,
            id="market_scan",
            name="Market Scan",
        )

    monitor_seconds = monitor_interval(settings.EAS_POLLING_INTERVAL_SECONDS)
    _scheduler.add_job(
        monitor_job,
        "interval",
        seconds=monitor_seconds,
        id="position_monitor",
        name="Position Monitor",
    )

    _scheduler.start()
    logger.info(
        "Scheduler started in %s mode, monitor every %.0fs",
        settings.AGENT_MODE, monitor_seconds,
    )
    return _scheduler


def stop_scheduler() -> None:
    """Stop firing new jobs. In-flight ticks are awaited by the agent."""
    global _scheduler

    if _scheduler is None:
        return

    _scheduler.shutdown(wait=False)
    _scheduler = None
    logger.info("Scheduler stopped")
