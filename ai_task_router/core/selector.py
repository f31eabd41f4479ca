"""
Candidate selection.

Builds the candidate set for a task from the quota ledger, consults the
decision oracle, validates its answer against real-time capacity, and
falls back to a deterministic rank-based rule when the answer is unusable.

Selection Order:
1. Candidate set - enabled, capacity left, provider configured, failure rate under threshold
2. Oracle answer - accepted only if it names a candidate that still has capacity
3. Deterministic fallback - lowest rank with enough tokens, else the first candidate
4. Emergency fallback - first model of an unfiltered availability list
"""

from dataclasses import dataclass
from typing import List, Optional

import structlog

from ai_task_router.config.loader import SelectionConfig
from ai_task_router.storage.models import ModelStats
from .errors import CapacityExhaustedError, NoProvidersAvailableError
from .oracle import Decision

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Candidate:
    """A model that survived enabled, capacity and failure-rate filtering."""
    stats: ModelStats
    failure_rate: float

    @property
    def name(self) -> str:
        return self.stats.name

    @property
    def rank(self) -> int:
        return self.stats.rank

    def describe(self) -> str:
        """Compact description handed to the decision oracle."""
        stats = self.stats
        success_rate = stats.success_rate
        success_text = "N/A" if success_rate is None else f"{success_rate:.1f}%"
        return (
            f"- {stats.name} ({stats.origin}, rank {stats.rank})\n"
            f"  Description: {stats.descriptor.description}\n"
            f"  Available: {stats.remaining_rpm} RPM, {stats.remaining_tpm} TPM, "
            f"{stats.remaining_rpd} RPD, {stats.remaining_tpd} TPD\n"
            f"  Success Rate: {success_text} "
            f"({stats.successful_tasks} ok, {stats.failed_tasks} failed)\n"
            f"  Recent Failure Rate: {self.failure_rate:.1f}%"
        )


def describe_candidates(candidates: List[Candidate]) -> str:
    return "\n\n".join(candidate.describe() for candidate in candidates)


class CandidateSelector:
    """Chooses a model for each task.

    The fallback paths never call the oracle again: they are pure functions
    of the ledger snapshot, so selection always terminates.
    """

    def __init__(self, ledger, registry, oracle, config: SelectionConfig, system_prompt: str = ""):
        """
        Args:
            ledger: QuotaLedger answering capacity and failure-rate queries
            registry: ProviderRegistry used to drop origins without credentials
            oracle: DecisionOracle consulted for a recommendation
            config: Selection strategy parameters
            system_prompt: Instructions passed to the oracle
        """
        self.ledger = ledger
        self.registry = registry
        self.oracle = oracle
        self.config = config
        self.system_prompt = system_prompt

    def select_model_for_task(self, task: str) -> Decision:
        """Pick the model that should execute a task.

        Args:
            task: Task text

        Returns:
            Decision naming the chosen model

        Raises:
            CapacityExhaustedError: If no model survives candidate filtering
            NoProvidersAvailableError: If selection failed and the emergency fallback found nothing
        """
        try:
            candidates = self.build_candidates()
            if not candidates:
                raise CapacityExhaustedError("No models available: all rate limits exceeded")
            return self._choose(task, candidates)
        except CapacityExhaustedError:
            raise
        except Exception as e:
            logger.error("selection_failed", error=str(e), error_type=type(e).__name__)
            return self._emergency_fallback()

    def build_candidates(self, min_tokens: Optional[int] = None, exclude=()) -> List[Candidate]:
        """Ranked candidate set for the given token floor.

        Keeps available models whose origin has a usable provider and whose
        recent failure rate does not exceed the configured threshold.

        Args:
            min_tokens: Token floor; defaults to the configured candidate floor
            exclude: Model names to leave out

        Returns:
            Candidates sorted by rank ascending
        """
        floor = self.config.candidate_floor_tokens if min_tokens is None else min_tokens
        candidates = []
        for stats in self.ledger.get_model_stats():
            if stats.name in exclude:
                continue
            if not stats.descriptor.enabled or not stats.has_capacity(floor):
                continue
            if not self.registry.has_provider(stats.origin):
                logger.debug("candidate_filtered", model=stats.name, reason="provider_not_configured")
                continue
            failure_rate = self.ledger.get_failure_rate(
                stats.name, self.config.failure_rate_window_seconds
            )
            if failure_rate > self.config.failure_rate_threshold:
                logger.info(
                    "candidate_filtered",
                    model=stats.name,
                    reason="failure_rate",
                    failure_rate=round(failure_rate, 1)
                )
                continue
            candidates.append(Candidate(stats=stats, failure_rate=failure_rate))
        return candidates

    def _choose(self, task: str, candidates: List[Candidate]) -> Decision:
        try:
            decision = self.oracle.consult(self.system_prompt, describe_candidates(candidates), task)
        except Exception as e:
            # Oracle failures of any kind are absorbed here
            logger.warning("oracle_answer_discarded", reason=str(e), error_type=type(e).__name__)
            return self.fallback_selection(candidates, self.config.default_token_estimate)

        names = {candidate.name for candidate in candidates}
        if decision.model not in names:
            logger.warning("oracle_answer_discarded", model=decision.model, reason="not_a_candidate")
            return self.fallback_selection(candidates, decision.estimated_tokens, decision.complexity)

        if not self._has_capacity(decision.model, decision.estimated_tokens):
            logger.warning(
                "oracle_answer_discarded",
                model=decision.model,
                reason="insufficient_capacity",
                estimated_tokens=decision.estimated_tokens
            )
            return self.fallback_selection(candidates, decision.estimated_tokens, decision.complexity)

        logger.info(
            "model_selected",
            model=decision.model,
            source="oracle",
            estimated_tokens=decision.estimated_tokens,
            complexity=decision.complexity
        )
        return decision

    def _has_capacity(self, model: str, estimated_tokens: int) -> bool:
        required = estimated_tokens + self.config.min_token_buffer
        return any(m.name == model for m in self.ledger.list_available(required))

    def fallback_selection(
        self,
        candidates: List[Candidate],
        estimated_tokens: int,
        complexity: str = "moderate"
    ) -> Decision:
        """Deterministic, oracle-free choice from the candidate set.

        Lowest-rank candidate with token capacity for the estimate plus the
        buffer; failing that, the first candidate with a generic estimate.
        """
        required = estimated_tokens + self.config.min_token_buffer
        suitable = sorted(
            (c for c in candidates if c.stats.remaining_tokens >= required),
            key=lambda c: (c.rank, c.name)
        )
        if suitable:
            decision = Decision(
                model=suitable[0].name,
                reasoning="Fallback: highest-ranked available model with sufficient capacity",
                estimated_tokens=estimated_tokens,
                complexity=complexity
            )
        else:
            decision = Decision(
                model=candidates[0].name,
                reasoning="Fallback: no model has capacity for the estimate, using first candidate",
                estimated_tokens=self.config.default_token_estimate,
                complexity="moderate"
            )
        logger.info("model_selected", model=decision.model, source="fallback")
        return decision

    def _emergency_fallback(self) -> Decision:
        floor = self.config.emergency_floor_tokens
        try:
            available = self.ledger.list_available(floor)
        except Exception as e:
            raise NoProvidersAvailableError(f"No models available and selection failed: {e}") from e
        if not available:
            raise NoProvidersAvailableError("No models available and selection failed")

        logger.warning("model_selected", model=available[0].name, source="emergency")
        return Decision(
            model=available[0].name,
            reasoning="Emergency fallback due to selection error",
            estimated_tokens=floor,
            complexity="moderate"
        )
