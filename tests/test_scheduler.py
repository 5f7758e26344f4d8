"""
tests/test_scheduler.py
Tests for scheduler job wiring and settings parsing.
"""

import pytest

from app.services.scheduler import start_scheduler, stop_scheduler
from core.config import Settings


def _settings(**overrides) -> Settings:
    values = dict(RPC_URL="http://localhost:8545", PRIVATE_KEY="0x" + "11" * 32, CHAIN_ID=42161)
    values.update(overrides)
    return Settings(**values)


class _IdleAgent:
    async def run_market_scan(self):
        return {}

    async def poll_attestations(self):
        return 0

    async def run_monitor(self):
        return 0


def _interval(scheduler, job_id: str) -> float:
    return scheduler.get_job(job_id).trigger.interval.total_seconds()


class TestSettings:
    def test_target_addresses_split(self):
        settings = _settings(EAS_TARGET_ADDRESSES=" 0xaaa, ,0xbbb ")
        assert settings.eas_target_addresses == ["0xaaa", "0xbbb"]

    def test_target_addresses_empty(self):
        assert _settings().eas_target_addresses == []

    def test_defaults(self):
        settings = _settings()
        assert settings.AGENT_MODE == "market"
        assert settings.CONCENTRATION_RANGE == 0.05
        assert settings.DEVIATION_THRESHOLD == 0.02
        assert settings.MAX_POSITIONS == 10
        assert settings.EMERGENCY_STOP_THRESHOLD == 0.10


@pytest.mark.asyncio
class TestScheduler:
    async def test_market_mode_jobs(self):
        scheduler = start_scheduler(_IdleAgent(), _settings(MARKET_SCAN_INTERVAL_SECONDS=2))
        try:
            assert scheduler.get_job("attestation_poll") is None
            assert _interval(scheduler, "market_scan") == 5
            assert _interval(scheduler, "position_monitor") == 30
        finally:
            stop_scheduler()

    async def test_attestation_mode_jobs(self):
        settings = _settings(AGENT_MODE="attestation", EAS_POLLING_INTERVAL_SECONDS=6)
        scheduler = start_scheduler(_IdleAgent(), settings)
        try:
            assert scheduler.get_job("market_scan") is None
            assert _interval(scheduler, "attestation_poll") == 6
            assert _interval(scheduler, "position_monitor") == 5
        finally:
            stop_scheduler()

    async def test_second_start_returns_running_scheduler(self):
        first = start_scheduler(_IdleAgent(), _settings())
        try:
            assert start_scheduler(_IdleAgent(), _settings()) is first
        finally:
            stop_scheduler()

    async def test_stop_without_start_is_noop(self):
        stop_scheduler()
