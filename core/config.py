"""
core/config.py
Environment-based configuration using pydantic-settings.
Loads from .env file automatically; fails fast if required keys are missing.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings

from core.constants import DEFAULT_EAS_CONTRACT, DEFAULT_EAS_SCHEMA_ID


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # --- Chain (required) ---
    RPC_URL: str
    PRIVATE_KEY: str
    CHAIN_ID: int

    # --- Agent mode: "market" (polling) or "attestation" ---
    AGENT_MODE: str = "market"

    # --- Market listing (GraphQL) ---
    GRAPHQL_ENDPOINT: str = "http://localhost:3000/graphql"
    MARKET_SCAN_INTERVAL_SECONDS: int = 60

    # --- Probability oracle (LiteLLM, OpenAI-compatible) ---
    LLM_BASE_URL: str = ""
    LLM_API_KEY: str = ""
    LLM_MODEL: str = "gpt-4o-mini"

    # --- Attestation monitoring ---
    EAS_CONTRACT_ADDRESS: str = DEFAULT_EAS_CONTRACT
    EAS_SCHEMA_ID: str = DEFAULT_EAS_SCHEMA_ID
    EAS_TARGET_ADDRESSES: str = ""
    EAS_POLLING_INTERVAL_SECONDS: float = 60.0
    EAS_START_FROM_DAYS_AGO: float = 1.0

    # --- LP management ---
    CONCENTRATION_RANGE: float = 0.05
    DEVIATION_THRESHOLD: float = 0.02
    DEFAULT_COLLATERAL_AMOUNT: int = 1_000_000_000_000_000_000

    # --- Risk management ---
    MAX_POSITIONS: int = 10
    COOLDOWN_PERIOD_SECONDS: float = 300.0
    EMERGENCY_STOP_THRESHOLD: float = 0.10

    # --- Transactions ---
    TX_DEADLINE_SECONDS: int = 3600
    TX_RECEIPT_TIMEOUT_SECONDS: float = 180.0

    # --- Runtime ---
    WORK_QUEUE_SIZE: int = 100
    LOG_LEVEL: str = "INFO"

    # --- Database ---
    DATABASE_URL: str = "sqlite+aiosqlite:///./lp_agent.db"

    model_config = {
        "env_file": ".env",
        "extra": "ignore",
    }

    @property
    def eas_target_addresses(self) -> list[str]:
        """Comma-separated EAS_TARGET_ADDRESSES as a list."""
        return [a.strip() for a in self.EAS_TARGET_ADDRESSES.split(",") if a.strip()]


@lru_cache
def get_settings() -> Settings:
    """Singleton access to application settings."""
    return Settings()
