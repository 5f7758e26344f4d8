"""
agents/__init__.py
Shared types for the probability oracle.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class ProbabilityEstimate:
    """Oracle output for one market."""
    probability_yes: float    # 0.00 - 1.00
    reasoning: str | None = None
