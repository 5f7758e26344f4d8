"""
core/constants.py
Hard-coded protocol rails and system constants.
These values are NOT configurable via environment: they are fixed policy
for the one target protocol.
"""

from typing import Final

# ---------------------------------------------------------------------------
# Tick math
# ---------------------------------------------------------------------------
TICK_BASE: Final[float] = 1.0001
TICK_SPACING: Final[int] = 200                  # protocol tick spacing
Q96: Final[int] = 2 ** 96
PRICE_EPSILON: Final[float] = 1e-6              # keeps log() away from 0 and 1
FALLBACK_TICK_WIDTH: Final[int] = 1000          # ±ticks around current when all else fails

# ---------------------------------------------------------------------------
# Price model
# ---------------------------------------------------------------------------
MIN_TARGET_PRICE: Final[float] = 0.01
MAX_TARGET_PRICE: Final[float] = 0.99

# ---------------------------------------------------------------------------
# Position policy
# ---------------------------------------------------------------------------
REQUIRED_CONSECUTIVE_DEVIATIONS: Final[int] = 2
MIN_MONITOR_INTERVAL_SECONDS: Final[float] = 5.0
MIN_SCAN_INTERVAL_SECONDS: Final[int] = 5

# ---------------------------------------------------------------------------
# Chain
# ---------------------------------------------------------------------------
LIQUIDITY_POSITION_KIND: Final[int] = 1         # 1 = LP, 2 = trader
MAX_UINT256: Final[int] = 2 ** 256 - 1
ZERO_ADDRESS: Final[str] = "0x0000000000000000000000000000000000000000"
TRANSFER_EVENT_TOPIC: Final[str] = (
    "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
)
SLIPPAGE_MIN_AMOUNT: Final[int] = 0             # zero slippage: always fill

# ---------------------------------------------------------------------------
# Attestations (EAS on Arbitrum)
# ---------------------------------------------------------------------------
DEFAULT_EAS_CONTRACT: Final[str] = "0xbD75f629A22Dc1ceD33dDA0b68c546A1c035c458"
DEFAULT_EAS_SCHEMA_ID: Final[str] = (
    "0x2dbb0921fa38ebc044ab0a7fe109442c456fb9ad39a68ce0a32f193744d17744"
)
ATTESTATION_SCHEMA_TYPES: Final[tuple[str, ...]] = (
    "address", "uint256", "bytes32", "uint160", "string",
)
ARBITRUM_BLOCKS_PER_DAY: Final[int] = 345_600
MAX_TRACKED_ATTESTATIONS: Final[int] = 1000
RETAINED_ATTESTATIONS: Final[int] = 500

# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------
EVENT_BUFFER_SIZE: Final[int] = 500

# ---------------------------------------------------------------------------
# System
# ---------------------------------------------------------------------------
SYSTEM_VERSION: Final[str] = "v1.0-liquidity-agent"
