"""
core/exceptions.py
Error taxonomy for the liquidity agent.

Per-market / per-position errors are caught at the batch boundary and
logged; only configuration and startup connection failures are fatal.
"""


class LiquidityAgentError(Exception):
    """Base class for every error raised by the agent."""


# ---------------------------------------------------------------------------
# Price model
# ---------------------------------------------------------------------------

class InvalidLikelihood(LiquidityAgentError, ValueError):
    """Likelihood is NaN or outside [0, 1]."""

    def __init__(self, likelihood: float) -> None:
        super().__init__(f"Invalid likelihood: {likelihood}")
        self.likelihood = likelihood


class InvalidTickRange(LiquidityAgentError, ValueError):
    """Tick range is empty or inverted (lower >= upper)."""

    def __init__(self, lower_tick: int, upper_tick: int) -> None:
        super().__init__(f"Invalid tick range: lower {lower_tick} >= upper {upper_tick}")
        self.lower_tick = lower_tick
        self.upper_tick = upper_tick


# ---------------------------------------------------------------------------
# Chain boundary
# ---------------------------------------------------------------------------

class ChainReadError(LiquidityAgentError):
    """A contract read failed."""


class ChainWriteError(LiquidityAgentError):
    """A transaction failed to submit, reverted, or was never confirmed."""

    def __init__(self, action: str, reason: str | None = None) -> None:
        message = f"{action} failed"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.action = action
        self.reason = reason


class TokenIdExtractionFailed(LiquidityAgentError):
    """No mint Transfer(0x0 -> wallet) log in the creation receipt."""


class DecodeError(LiquidityAgentError):
    """Malformed contract return value, attestation, or market payload."""


# ---------------------------------------------------------------------------
# Position preconditions (raised before any chain write)
# ---------------------------------------------------------------------------

class PositionRejected(LiquidityAgentError):
    """An open-position precondition failed."""

    def __init__(self, market_id: int, reason: str) -> None:
        super().__init__(f"Market {market_id}: {reason}")
        self.market_id = market_id
        self.reason = reason


class MarketNotOpen(PositionRejected):
    """Market is settled or past its end time."""


class DuplicatePosition(PositionRejected):
    """An active liquidity position already exists for the market."""


class MaxPositionsReached(PositionRejected):
    """Tracked position ceiling reached."""


class InsufficientCollateral(PositionRejected):
    """Wallet cannot fund the creation. Soft: stop creating this cycle."""

    def __init__(self, market_id: int, balance: int, required: int) -> None:
        super().__init__(
            market_id, f"insufficient collateral (balance={balance}, required={required})"
        )
        self.balance = balance
        self.required = required
