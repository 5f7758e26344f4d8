"""
agents/forecaster/oracle.py
LLM forecaster: asks an OpenAI-compatible model for the probability that
a market resolves YES.

Uses smolagents LiteLLMModel pointed at LLM_BASE_URL.
"""

import asyncio
import json
import logging
import math
import re

from smolagents import LiteLLMModel

from agents import ProbabilityEstimate
from core.config import get_settings

logger = logging.getLogger(__name__)

NEUTRAL_PROBABILITY = 0.5

SYSTEM_PROMPT = (
    "You are a cautious, concise forecaster. Return a single probability "
    "between 0 and 1 for YES being true. Include a one-sentence rationale. "
    "Output JSON with keys probabilityYes and reasoning."
)


def _get_model() -> LiteLLMModel:
    """Create a LiteLLM model instance from settings."""
    settings = get_settings()
    return LiteLLMModel(
        model_id=f"openai/{settings.LLM_MODEL}",
        api_base=settings.LLM_BASE_URL or None,
        api_key=settings.LLM_API_KEY or None,
        temperature=0.2,
    )


def _call_llm(model: LiteLLMModel, prompt: str) -> str:
    """Make a single LLM call and return the text response."""
    messages = [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": prompt},
    ]
    response = model(messages, stop_sequences=None)
    if hasattr(response, "content"):
        return response.content or ""
    return str(response)


def build_prompt(question: str, claim_yes: str | None = None, claim_no: str | None = None) -> str:
    parts = [f"Question: {question}"]
    if claim_yes:
        parts.append(f"YES statement: {claim_yes}")
    if claim_no:
        parts.append(f"NO statement: {claim_no}")
    parts.append("Return JSON only.")
    return "\n".join(parts)


def parse_prediction(raw: str) -> ProbabilityEstimate:
    """
    Parse the model's JSON answer.

    Non-numeric, missing or non-finite probabilities become 0.5 and an
    explicit null reads as 0. Values are clamped to [0, 1]. An unparseable
    answer is 0.5 with no reasoning.
    """
    try:
        match = re.search(r"\{.*\}", raw, re.DOTALL)
        parsed = json.loads(match.group() if match else raw)
        if not isinstance(parsed, dict):
            raise ValueError("expected a JSON object")
    except (json.JSONDecodeError, TypeError, ValueError):
        logger.warning("Unparseable oracle response, using %.1f: %.200s", NEUTRAL_PROBABILITY, raw)
        return ProbabilityEstimate(probability_yes=NEUTRAL_PROBABILITY)

    value = parsed.get("probabilityYes")
    if value is None and "probabilityYes" in parsed:
        probability = 0.0
    else:
        try:
            probability = float(value)
        except (TypeError, ValueError):
            probability = NEUTRAL_PROBABILITY
    if not math.isfinite(probability):
        probability = NEUTRAL_PROBABILITY
    probability = max(0.0, min(1.0, probability))

    reasoning = parsed.get("reasoning")
    return ProbabilityEstimate(
        probability_yes=probability,
        reasoning=str(reasoning) if reasoning is not None else None,
    )


def estimate_probability(
    question: str,
    claim_yes: str | None = None,
    claim_no: str | None = None,
) -> ProbabilityEstimate:
    """
    Ask the model for P(YES). Blocking; API errors propagate.
    """
    model = _get_model()
    raw = _call_llm(model, build_prompt(question, claim_yes, claim_no))
    estimate = parse_prediction(raw)
    logger.info("Oracle: %.3f for %r", estimate.probability_yes, question[:80])
    return estimate


async def estimate_probability_async(
    question: str,
    claim_yes: str | None = None,
    claim_no: str | None = None,
) -> ProbabilityEstimate:
    """estimate_probability off the event loop."""
    return await asyncio.to_thread(estimate_probability, question, claim_yes, claim_no)
