"""
Task execution with bounded fallback.

Runs a task on the selected model, records the outcome in the quota
ledger, and on failure retries against the next-best surviving candidate.
No more than ``max_fallback_attempts`` distinct models are ever tried for
one task, and every terminal outcome is returned, never raised.
"""

import time
from dataclasses import dataclass, field
from typing import List, Optional, Set

import structlog

from ai_task_router.config.loader import SelectionConfig
from .errors import ProviderExecutionError, ProviderTimeoutError, RouterError
from .oracle import Decision
from .token_counter import resolve_tokens_used

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class QuotaState:
    """Used and allowed amounts for one quota."""
    used: int
    limit: int


@dataclass(frozen=True)
class ModelLimits:
    """Snapshot of a model's four quotas after an attempt."""
    rpm: QuotaState
    tpm: QuotaState
    rpd: QuotaState
    tpd: QuotaState


@dataclass(frozen=True)
class TaskResult:
    """Terminal outcome of one task."""
    success: bool
    model_used: str
    tokens_used: int = 0
    decision: Optional[Decision] = None
    response: Optional[str] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    limits: Optional[ModelLimits] = None
    attempted_models: List[str] = field(default_factory=list)


@dataclass
class _AttemptTrail:
    """Models excluded from further attempts and the last failure seen."""
    excluded: Set[str] = field(default_factory=set)
    attempted: List[str] = field(default_factory=list)
    last_model: Optional[str] = None
    last_error: Optional[RouterError] = None


class TaskRouter:
    """Executes tasks against the models chosen by a CandidateSelector.

    Each call is independent; the quota ledger is the only shared state.
    """

    def __init__(self, ledger, registry, selector, config: SelectionConfig, agent_prompt: str = ""):
        self.ledger = ledger
        self.registry = registry
        self.selector = selector
        self.config = config
        self.agent_prompt = agent_prompt

    def execute_task(self, task: str, task_type: str = "general") -> TaskResult:
        """Route a task to a model and run it, falling back on failure.

        Args:
            task: Task text
            task_type: Category recorded with each outcome

        Returns:
            TaskResult; success=False when selection found nothing or every attempt failed
        """
        log = logger.bind(task_type=task_type)
        try:
            decision = self.selector.select_model_for_task(task)
        except RouterError as e:
            log.error("task_not_routed", error=str(e), error_type=type(e).__name__)
            return TaskResult(
                success=False,
                model_used="none",
                error=str(e),
                error_type=type(e).__name__
            )

        log.info("task_routed", model=decision.model, reasoning=decision.reasoning)
        trail = _AttemptTrail()
        return self.attempt_execution(decision.model, task, task_type, decision, trail)

    def attempt_execution(
        self,
        model: str,
        task: str,
        task_type: str,
        decision: Decision,
        trail: Optional[_AttemptTrail] = None
    ) -> TaskResult:
        """Run the task on one model; on failure hand over to retry_with_fallback.

        Returns:
            The first successful TaskResult, or a failure carrying the last error
            and the last model attempted
        """
        trail = trail if trail is not None else _AttemptTrail()
        result = self._execute_once(model, task, task_type, decision, trail)
        if result.success:
            return result

        retried = self.retry_with_fallback(task, task_type, trail, decision)
        if retried is not None:
            return retried

        logger.warning(
            "task_failed",
            model=trail.last_model,
            attempted=trail.attempted,
            error=str(trail.last_error)
        )
        return TaskResult(
            success=False,
            model_used=trail.last_model or model,
            decision=decision,
            error=str(trail.last_error),
            error_type=type(trail.last_error).__name__,
            limits=self._limits_for(trail.last_model or model),
            attempted_models=list(trail.attempted)
        )

    def retry_with_fallback(
        self,
        task: str,
        task_type: str,
        trail: _AttemptTrail,
        original_decision: Decision
    ) -> Optional[TaskResult]:
        """Try the next-best eligible candidates until one succeeds.

        Fallback candidates pass the same eligibility rule as the original
        candidate set, including the failure-rate threshold.

        Returns:
            The successful TaskResult, or None once the attempt bound or the
            candidate list is exhausted
        """
        max_attempts = self.config.max_fallback_attempts
        if trail.last_model:
            trail.excluded.add(trail.last_model)
        if len(trail.excluded) >= max_attempts:
            logger.info("retry_exhausted", reason="max_attempts", max_attempts=max_attempts)
            return None

        try:
            candidates = self.selector.build_candidates(
                min_tokens=original_decision.estimated_tokens,
                exclude=trail.excluded
            )
        except Exception as e:
            logger.error("fallback_candidates_unavailable", error=str(e))
            return None
        if not candidates:
            logger.info("retry_exhausted", reason="no_candidates")
            return None

        failed_model = trail.last_model
        for candidate in candidates:
            if len(trail.excluded) >= max_attempts:
                logger.info("retry_exhausted", reason="max_attempts", max_attempts=max_attempts)
                return None
            if not self.registry.has_provider(candidate.stats.origin):
                logger.info("fallback_skipped", model=candidate.name, reason="provider_not_configured")
                trail.excluded.add(candidate.name)
                continue

            logger.info("fallback_attempt", model=candidate.name, after=failed_model)
            fallback_decision = original_decision.redirect(
                candidate.name, f"Fallback after {failed_model} failed"
            )
            result = self._execute_once(candidate.name, task, task_type, fallback_decision, trail)
            if result.success:
                return result
            trail.excluded.add(candidate.name)

        logger.info("retry_exhausted", reason="candidates_failed")
        return None

    def _execute_once(
        self,
        model: str,
        task: str,
        task_type: str,
        decision: Decision,
        trail: _AttemptTrail
    ) -> TaskResult:
        trail.attempted.append(model)
        trail.last_model = model
        prompt = self._build_prompt(task)
        started = time.monotonic()
        try:
            descriptor = self.ledger.get_model(model)
            if descriptor is None:
                raise ProviderExecutionError(f"Model not found in ledger: {model}", model=model)
            provider = self.registry.get_provider(descriptor.origin)
            generation = provider.generate_content(model, prompt)
        except Exception as e:
            error = e if isinstance(e, (ProviderExecutionError, ProviderTimeoutError)) else \
                ProviderExecutionError(str(e), model=model)
            trail.last_error = error
            logger.warning(
                "provider_call_failed",
                model=model,
                error=str(error),
                error_type=type(error).__name__
            )
            self._record(model, self.ledger.record_outcome, model, task_type, False, 0, str(error))
            return TaskResult(success=False, model_used=model, decision=decision, error=str(error))

        text = generation.text or ""
        tokens_used = resolve_tokens_used(generation.tokens_used, prompt, text)
        self._record(model, self.ledger.record_usage, model, 1, tokens_used)
        self._record(model, self.ledger.record_outcome, model, task_type, True, tokens_used)
        logger.info(
            "task_completed",
            model=model,
            tokens_used=tokens_used,
            elapsed_ms=round((time.monotonic() - started) * 1000),
            response_chars=len(text)
        )
        return TaskResult(
            success=True,
            model_used=model,
            tokens_used=tokens_used,
            decision=decision,
            response=text,
            limits=self._limits_for(model),
            attempted_models=list(trail.attempted)
        )

    def _build_prompt(self, task: str) -> str:
        if not self.agent_prompt:
            return task
        return f"{self.agent_prompt}\n\nUser Task: {task}"

    def _record(self, model: str, write, *args) -> None:
        # Accounting loss is logged; the task result still reaches the caller
        try:
            write(*args)
        except Exception as e:
            logger.error(
                "outcome_record_failed",
                model=model,
                operation=write.__name__,
                error=str(e),
                error_type=type(e).__name__
            )

    def _limits_for(self, model: str) -> Optional[ModelLimits]:
        try:
            descriptor = self.ledger.get_model(model)
            if descriptor is None:
                return None
            usage = self.ledger.get_usage(model)
        except Exception as e:
            logger.warning("limits_unavailable", model=model, error=str(e))
            return None
        return ModelLimits(
            rpm=QuotaState(usage.rpm_used, descriptor.rpm_allowed),
            tpm=QuotaState(usage.tpm_used, descriptor.tpm_total),
            rpd=QuotaState(usage.rpd_used, descriptor.rpd_total),
            tpd=QuotaState(usage.tpd_used, descriptor.tpd_total)
        )
