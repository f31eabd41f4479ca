"""
Decision oracle contract and answer parsing.

The oracle recommends a model for a task. Its answer is loosely
structured text, so extraction enforces a strict required-field contract
and raises DecisionParseError on anything short of it.
"""

import json
import math
import re
from dataclasses import dataclass, replace
from typing import Any, Dict, Protocol

import structlog

from .errors import DecisionParseError

logger = structlog.get_logger(__name__)

COMPLEXITY_LEVELS = ("simple", "moderate", "complex")

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)

RESPONSE_FORMAT = """Analyze this task and select the best model. Respond ONLY with valid JSON matching this format:
{
  "selectedModel": "model-name",
  "reasoning": "explanation of choice",
  "estimatedTokens": 500,
  "taskComplexity": "simple"
}"""


@dataclass(frozen=True)
class Decision:
    """A model chosen for a task, with the oracle's (or fallback's) reasoning."""
    model: str
    reasoning: str
    estimated_tokens: int
    complexity: str = "moderate"

    def __post_init__(self):
        """Validate the decision is usable by the router."""
        if not self.model:
            raise ValueError("decision model cannot be empty")
        if self.estimated_tokens < 0:
            raise ValueError("estimated_tokens cannot be negative")
        if self.complexity not in COMPLEXITY_LEVELS:
            raise ValueError(f"complexity must be one of: {list(COMPLEXITY_LEVELS)}")

    def redirect(self, model: str, reasoning: str) -> "Decision":
        """Same estimate and complexity, pointed at another model."""
        return replace(self, model=model, reasoning=reasoning)


class DecisionOracle(Protocol):
    """Pluggable capability that recommends a model for a task."""

    def consult(self, system_prompt: str, candidate_description: str, task: str) -> Decision:
        ...


def parse_decision(text: str) -> Decision:
    """Extract a Decision from an oracle's text answer.

    The answer must contain one JSON object with non-empty
    ``selectedModel`` and ``reasoning`` strings, a positive integer
    ``estimatedTokens`` and a ``taskComplexity`` of simple, moderate
    or complex. Anything else is rejected.

    Args:
        text: Raw oracle output, possibly wrapped in prose or code fences

    Returns:
        Parsed Decision

    Raises:
        DecisionParseError: If the answer is missing, unparseable or incomplete
    """
    if not text or not isinstance(text, str):
        raise DecisionParseError("Oracle returned an empty answer")

    match = _JSON_OBJECT.search(text)
    if not match:
        raise DecisionParseError("Oracle did not return a JSON object")

    try:
        payload = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise DecisionParseError(f"Oracle returned invalid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise DecisionParseError("Oracle answer must be a JSON object")

    return Decision(
        model=_require_str(payload, "selectedModel"),
        reasoning=_require_str(payload, "reasoning"),
        estimated_tokens=_require_tokens(payload),
        complexity=_require_complexity(payload)
    )


def build_oracle_prompt(system_prompt: str, candidate_description: str, task: str) -> str:
    """Assemble the full prompt sent to an LLM acting as the oracle."""
    return (
        f"{system_prompt}\n\n"
        f"AVAILABLE MODELS:\n{candidate_description}\n\n"
        f"USER TASK:\n\"{task}\"\n\n"
        f"{RESPONSE_FORMAT}"
    )


class LLMDecisionOracle:
    """Decision oracle backed by one model on a registered provider."""

    def __init__(self, registry, origin: str, model: str, temperature: float = 0.2):
        """
        Args:
            registry: ProviderRegistry used to resolve the oracle's origin
            origin: Origin of the oracle model
            model: Oracle model name
            temperature: Sampling temperature for the oracle call
        """
        self.registry = registry
        self.origin = origin
        self.model = model
        self.temperature = temperature

    @classmethod
    def from_config(cls, registry, oracle_config) -> "LLMDecisionOracle":
        return cls(
            registry,
            origin=oracle_config.origin,
            model=oracle_config.model,
            temperature=oracle_config.temperature
        )

    def update(self, origin: str, model: str) -> None:
        """Switch the oracle to another model at runtime.

        The origin is resolved first; on failure the current oracle is kept.

        Raises:
            ValueError: If model is empty
            ConfigurationError: If the origin has no usable provider
        """
        if not model or not model.strip():
            raise ValueError("oracle model cannot be empty")
        origin = origin.strip().lower()
        self.registry.get_provider(origin)
        logger.info("oracle_updated", origin=origin, model=model.strip(), previous=self.model)
        self.origin = origin
        self.model = model.strip()

    def consult(self, system_prompt: str, candidate_description: str, task: str) -> Decision:
        """Ask the oracle model to pick a candidate.

        Raises:
            ConfigurationError: If the oracle origin is not usable
            ProviderExecutionError / ProviderTimeoutError: If the oracle call fails
            DecisionParseError: If the answer breaks the required-field contract
        """
        provider = self.registry.get_provider(self.origin)
        logger.debug("oracle_consulted", origin=self.origin, model=self.model)
        result = provider.generate_content(
            self.model,
            build_oracle_prompt(system_prompt, candidate_description, task),
            temperature=self.temperature
        )
        return parse_decision(result.text)


def _require_str(payload: Dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise DecisionParseError(f"Oracle answer missing required field '{key}'")
    return value.strip()


def _require_tokens(payload: Dict[str, Any]) -> int:
    value = payload.get("estimatedTokens")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise DecisionParseError("Oracle answer missing required field 'estimatedTokens'")
    if not math.isfinite(value) or value != int(value) or value <= 0:
        raise DecisionParseError("'estimatedTokens' must be a positive integer")
    return int(value)


def _require_complexity(payload: Dict[str, Any]) -> str:
    value = payload.get("taskComplexity")
    if not isinstance(value, str) or value.strip().lower() not in COMPLEXITY_LEVELS:
        raise DecisionParseError(
            f"'taskComplexity' must be one of: {list(COMPLEXITY_LEVELS)}"
        )
    return value.strip().lower()
