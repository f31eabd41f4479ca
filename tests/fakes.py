"""
Test doubles shared across the test suite.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Set

from ai_task_router.core.errors import DecisionParseError, ProviderExecutionError
from ai_task_router.core.oracle import Decision
from ai_task_router.providers.base import GenerationResult
from ai_task_router.providers.registry import ProviderRegistry
from ai_task_router.storage.models import ModelDescriptor


class FakeClock:
    """Controllable replacement for datetime.now."""
    
    def __init__(self, start: datetime = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)):
        self.now = start
    
    def __call__(self) -> datetime:
        return self.now
    
    def advance(self, seconds: float = 0, days: float = 0) -> None:
        self.now = self.now + timedelta(seconds=seconds, days=days)


class FakeProvider:
    """Provider that answers every prompt, or fails for selected models."""
    
    def __init__(
        self,
        text: str = "done",
        tokens_used: Optional[int] = 42,
        fail_models: Optional[Set[str]] = None,
        error: Optional[Exception] = None
    ):
        self.text = text
        self.tokens_used = tokens_used
        self.fail_models = fail_models or set()
        self.error = error
        self.calls: List[Dict] = []
    
    def generate_content(self, model, prompt, temperature=None):
        self.calls.append({"model": model, "prompt": prompt, "temperature": temperature})
        if model in self.fail_models:
            raise self.error or ProviderExecutionError(f"{model} is down", model=model)
        return GenerationResult(text=self.text, tokens_used=self.tokens_used)


class StubOracle:
    """Oracle returning a fixed decision, or raising a fixed error."""
    
    def __init__(self, decision: Optional[Decision] = None, error: Optional[Exception] = None):
        self.decision = decision
        self.error = error
        self.calls: List[Dict] = []
    
    def consult(self, system_prompt, candidate_description, task):
        self.calls.append({
            "system_prompt": system_prompt,
            "candidates": candidate_description,
            "task": task
        })
        if self.error is not None:
            raise self.error
        if self.decision is None:
            raise DecisionParseError("no decision configured")
        return self.decision


def make_model(name: str, origin: str = "alpha", rank: int = 1, **overrides) -> ModelDescriptor:
    """Model with generous default quotas."""
    values = dict(
        name=name,
        origin=origin,
        rank=rank,
        description=f"{name} test model",
        enabled=True,
        rpm_allowed=10,
        tpm_total=10000,
        rpd_total=100,
        tpd_total=100000,
    )
    values.update(overrides)
    return ModelDescriptor(**values)


def registry_for(**providers) -> ProviderRegistry:
    """Registry mapping each keyword origin to a fixed provider instance."""
    return ProviderRegistry({origin: (lambda p=provider: p) for origin, provider in providers.items()})
