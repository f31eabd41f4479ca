"""
Unit tests for decision oracle parsing and the LLM-backed oracle.
"""

import pytest

from ai_task_router.core.errors import ConfigurationError, DecisionParseError
from ai_task_router.core.oracle import (
    Decision,
    LLMDecisionOracle,
    build_oracle_prompt,
    parse_decision,
)
from ai_task_router.config.loader import OracleConfig

from fakes import FakeProvider, registry_for

VALID_ANSWER = (
    '{"selectedModel": "llama-3.1-8b-instant", "reasoning": "short factual question", '
    '"estimatedTokens": 250, "taskComplexity": "simple"}'
)


class TestParseDecision:
    """Test the required-field answer contract."""

    def test_parse_plain_json(self):
        decision = parse_decision(VALID_ANSWER)

        assert decision.model == "llama-3.1-8b-instant"
        assert decision.reasoning == "short factual question"
        assert decision.estimated_tokens == 250
        assert decision.complexity == "simple"

    def test_parse_json_in_prose(self):
        text = f"Here is my choice:\n{VALID_ANSWER}\nLet me know if you need more."
        assert parse_decision(text).model == "llama-3.1-8b-instant"

    def test_parse_json_in_code_fence(self):
        text = f"```json\n{VALID_ANSWER}\n```"
        assert parse_decision(text).estimated_tokens == 250

    def test_integral_float_estimate_accepted(self):
        text = VALID_ANSWER.replace("250", "250.0")
        assert parse_decision(text).estimated_tokens == 250

    def test_complexity_normalized(self):
        text = VALID_ANSWER.replace('"simple"', '"  Complex "')
        assert parse_decision(text).complexity == "complex"

    @pytest.mark.parametrize("text", [
        None,
        "",
        "no json here",
        "{broken: json,}",
        '{"reasoning": "x", "estimatedTokens": 10, "taskComplexity": "simple"}',
        '{"selectedModel": "", "reasoning": "x", "estimatedTokens": 10, "taskComplexity": "simple"}',
        '{"selectedModel": "m", "estimatedTokens": 10, "taskComplexity": "simple"}',
        '{"selectedModel": "m", "reasoning": "x", "taskComplexity": "simple"}',
        '{"selectedModel": "m", "reasoning": "x", "estimatedTokens": "500", "taskComplexity": "simple"}',
        '{"selectedModel": "m", "reasoning": "x", "estimatedTokens": 0, "taskComplexity": "simple"}',
        '{"selectedModel": "m", "reasoning": "x", "estimatedTokens": -5, "taskComplexity": "simple"}',
        '{"selectedModel": "m", "reasoning": "x", "estimatedTokens": 12.5, "taskComplexity": "simple"}',
        '{"selectedModel": "m", "reasoning": "x", "estimatedTokens": true, "taskComplexity": "simple"}',
        '{"selectedModel": "m", "reasoning": "x", "estimatedTokens": 10}',
        '{"selectedModel": "m", "reasoning": "x", "estimatedTokens": 10, "taskComplexity": "trivial"}',
        '{"selectedModel": 7, "reasoning": "x", "estimatedTokens": 10, "taskComplexity": "simple"}',
    ])
    def test_malformed_answers_rejected(self, text):
        with pytest.raises(DecisionParseError):
            parse_decision(text)

    def test_non_finite_estimate_rejected(self):
        # json accepts the Infinity literal
        text = VALID_ANSWER.replace("250", "Infinity")
        with pytest.raises(DecisionParseError):
            parse_decision(text)


class TestDecision:
    """Test Decision validation."""

    def test_empty_model_rejected(self):
        with pytest.raises(ValueError):
            Decision("", "x", 10)

    def test_unknown_complexity_rejected(self):
        with pytest.raises(ValueError):
            Decision("m", "x", 10, "epic")

    def test_redirect_keeps_estimate(self):
        original = Decision("a", "best fit", 300, "complex")
        redirected = original.redirect("b", "Fallback after a failed")

        assert redirected.model == "b"
        assert redirected.reasoning == "Fallback after a failed"
        assert redirected.estimated_tokens == 300
        assert redirected.complexity == "complex"
        assert original.model == "a"


class TestLLMDecisionOracle:
    """Test the oracle backed by a provider."""

    def test_prompt_contains_candidates_and_task(self):
        prompt = build_oracle_prompt("route well", "- a (alpha, rank 1)", "translate this")

        assert prompt.startswith("route well")
        assert "AVAILABLE MODELS:\n- a (alpha, rank 1)" in prompt
        assert 'USER TASK:\n"translate this"' in prompt
        assert '"selectedModel"' in prompt

    def test_consult_uses_oracle_model_and_temperature(self):
        provider = FakeProvider(text=VALID_ANSWER)
        oracle = LLMDecisionOracle(registry_for(google=provider), origin="google", model="judge", temperature=0.3)

        decision = oracle.consult("route well", "- a", "what is 2+2?")

        assert decision.model == "llama-3.1-8b-instant"
        assert len(provider.calls) == 1
        assert provider.calls[0]["model"] == "judge"
        assert provider.calls[0]["temperature"] == 0.3
        assert "what is 2+2?" in provider.calls[0]["prompt"]

    def test_consult_propagates_parse_errors(self):
        oracle = LLMDecisionOracle(registry_for(google=FakeProvider(text="I pick a")), "google", "judge")

        with pytest.raises(DecisionParseError):
            oracle.consult("route well", "- a", "task")

    def test_consult_unknown_origin(self):
        oracle = LLMDecisionOracle(registry_for(), "google", "judge")

        with pytest.raises(ConfigurationError):
            oracle.consult("route well", "- a", "task")

    def test_from_config(self):
        config = OracleConfig(origin="google", model="gemini-2.5-flash", temperature=0.1)
        oracle = LLMDecisionOracle.from_config(registry_for(), config)

        assert oracle.origin == "google"
        assert oracle.model == "gemini-2.5-flash"
        assert oracle.temperature == 0.1

    def test_update_switches_model(self):
        google, groq = FakeProvider(text=VALID_ANSWER), FakeProvider(text=VALID_ANSWER)
        oracle = LLMDecisionOracle(registry_for(google=google, groq=groq), "google", "judge")

        oracle.update(" Groq ", "llama-3.3-70b-versatile")
        oracle.consult("route well", "- a", "task")

        assert oracle.origin == "groq"
        assert oracle.model == "llama-3.3-70b-versatile"
        assert google.calls == []
        assert groq.calls[0]["model"] == "llama-3.3-70b-versatile"

    def test_update_to_unusable_origin_keeps_current(self):
        oracle = LLMDecisionOracle(registry_for(google=FakeProvider()), "google", "judge")

        with pytest.raises(ConfigurationError):
            oracle.update("groq", "llama-3.3-70b-versatile")

        assert (oracle.origin, oracle.model) == ("google", "judge")

    def test_update_rejects_empty_model(self):
        oracle = LLMDecisionOracle(registry_for(google=FakeProvider()), "google", "judge")

        with pytest.raises(ValueError):
            oracle.update("google", " ")
