"""
tests/test_oracle.py
Tests for the LLM forecaster's prompt and answer parsing (no network).
"""

import pytest

import agents.forecaster.oracle as oracle
from agents.forecaster.oracle import build_prompt, parse_prediction


class TestBuildPrompt:
    def test_question_only(self):
        assert build_prompt("Will it rain?") == "Question: Will it rain?\nReturn JSON only."

    def test_with_claims(self):
        prompt = build_prompt("Will it rain?", "It rains", "It stays dry")
        assert prompt.splitlines() == [
            "Question: Will it rain?",
            "YES statement: It rains",
            "NO statement: It stays dry",
            "Return JSON only.",
        ]


class TestParsePrediction:
    def test_plain_json(self):
        estimate = parse_prediction('{"probabilityYes": 0.73, "reasoning": "Trend is up."}')
        assert estimate.probability_yes == 0.73
        assert estimate.reasoning == "Trend is up."

    def test_json_inside_prose(self):
        estimate = parse_prediction('Sure!\n```json\n{"probabilityYes": "0.4"}\n```')
        assert estimate.probability_yes == 0.4
        assert estimate.reasoning is None

    def test_clamped_to_unit_interval(self):
        assert parse_prediction('{"probabilityYes": 1.7}').probability_yes == 1.0
        assert parse_prediction('{"probabilityYes": -3}').probability_yes == 0.0

    @pytest.mark.parametrize("value", ['"likely"', '"NaN"', '"inf"'])
    def test_non_numeric_is_neutral(self, value):
        estimate = parse_prediction('{"probabilityYes": %s, "reasoning": "x"}' % value)
        assert estimate.probability_yes == 0.5
        assert estimate.reasoning == "x"

    def test_missing_key_is_neutral(self):
        assert parse_prediction('{"reasoning": "no number"}').probability_yes == 0.5

    def test_explicit_null_reads_as_zero(self):
        estimate = parse_prediction('{"probabilityYes": null, "reasoning": "x"}')
        assert estimate.probability_yes == 0.0
        assert estimate.reasoning == "x"

    def test_unparseable_is_neutral_without_reasoning(self):
        estimate = parse_prediction("I think it is quite likely.")
        assert estimate.probability_yes == 0.5
        assert estimate.reasoning is None

    def test_json_array_is_neutral(self):
        assert parse_prediction("[0.7]").probability_yes == 0.5


class TestEstimateProbability:
    def test_calls_model_with_prompt(self, monkeypatch):
        seen = {}

        def fake_call(model, prompt):
            seen["model"] = model
            seen["prompt"] = prompt
            return '{"probabilityYes": 0.61, "reasoning": "ok"}'

        monkeypatch.setattr(oracle, "_get_model", lambda: "model")
        monkeypatch.setattr(oracle, "_call_llm", fake_call)

        estimate = oracle.estimate_probability("Will it rain?", "It rains")

        assert estimate.probability_yes == 0.61
        assert seen["model"] == "model"
        assert "YES statement: It rains" in seen["prompt"]

    @pytest.mark.asyncio
    async def test_async_wrapper(self, monkeypatch):
        monkeypatch.setattr(oracle, "_get_model", lambda: None)
        monkeypatch.setattr(oracle, "_call_llm", lambda model, prompt: '{"probabilityYes": 0.2}')

        estimate = await oracle.estimate_probability_async("Q?")

        assert estimate.probability_yes == 0.2

    def test_api_errors_propagate(self, monkeypatch):
        def boom(model, prompt):
            raise ConnectionError("LLM down")

        monkeypatch.setattr(oracle, "_get_model", lambda: None)
        monkeypatch.setattr(oracle, "_call_llm", boom)

        with pytest.raises(ConnectionError):
            oracle.estimate_probability("Q?")
