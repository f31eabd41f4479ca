"""
Storage layer for AI Task Router.

SQLite-backed quota ledger of models, usage events and outcome events.
"""

from .models import ModelDescriptor, ModelStats, ModelUsage, OutcomeEvent, UsageEvent
from .repository import QuotaLedger, initialize_schema

__all__ = [
    "ModelDescriptor",
    "ModelStats",
    "ModelUsage",
    "OutcomeEvent",
    "QuotaLedger",
    "UsageEvent",
    "initialize_schema",
]
