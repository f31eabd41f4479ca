"""
Service wiring.

Builds the ledger, provider registry, oracle, selector and router from a
RouterConfig. Each collaborator can be passed in explicitly, which is how
tests substitute fakes.
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from ai_task_router.config.loader import RouterConfig
from ai_task_router.core.oracle import LLMDecisionOracle
from ai_task_router.core.router import TaskRouter
from ai_task_router.core.selector import CandidateSelector
from ai_task_router.providers.registry import ProviderRegistry
from ai_task_router.storage.repository import QuotaLedger

logger = structlog.get_logger(__name__)


@dataclass
class RouterServices:
    """The wired routing engine."""
    ledger: QuotaLedger
    registry: ProviderRegistry
    selector: CandidateSelector
    router: TaskRouter


def build_services(
    config: RouterConfig,
    ledger: Optional[QuotaLedger] = None,
    registry: Optional[ProviderRegistry] = None,
    oracle=None,
    seed: bool = True
) -> RouterServices:
    """Construct the routing engine from configuration.

    Providers are validated once here, and the seed catalog is upserted
    into the ledger when ``seed`` is set.

    Args:
        config: Validated router configuration
        ledger: Ledger to use instead of one at config.storage_path
        registry: Provider registry to use instead of one built from config.providers
        oracle: Decision oracle to use instead of the configured LLM oracle
        seed: Whether to upsert config.catalog at startup
    """
    if ledger is None:
        ledger = QuotaLedger(
            config.storage_path,
            outcome_retention_days=config.outcome_retention_days
        )
    if registry is None:
        registry = ProviderRegistry.from_config(config.providers)
    if oracle is None:
        oracle = LLMDecisionOracle.from_config(registry, config.oracle)

    available = registry.validate()
    if not available:
        logger.warning("no_providers_configured")

    if seed and config.catalog:
        ledger.upsert_models(config.catalog)

    selector = CandidateSelector(
        ledger,
        registry,
        oracle,
        config.selection,
        system_prompt=config.oracle.system_prompt
    )
    router = TaskRouter(
        ledger,
        registry,
        selector,
        config.selection,
        agent_prompt=config.agent_prompt
    )
    return RouterServices(ledger=ledger, registry=registry, selector=selector, router=router)
