"""
Data models for storage layer.

Defines ledger entities and the derived usage views.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class ModelDescriptor:
    """Configuration of one executable model.
    
    Created or updated only through an idempotent upsert; never deleted
    at runtime.
    """
    name: str
    origin: str
    rank: int
    description: str = ""
    enabled: bool = True
    rpm_allowed: int = 0
    tpm_total: int = 0
    rpd_total: int = 0
    tpd_total: int = 0
    
    def __post_init__(self):
        """Validate identity and quota ceilings."""
        if not self.name or not self.name.strip():
            raise ValueError("model name is required and cannot be empty")
        if not self.origin or not self.origin.strip():
            raise ValueError("model origin is required and cannot be empty")
        for field_name in ("rpm_allowed", "tpm_total", "rpd_total", "tpd_total"):
            if getattr(self, field_name) < 0:
                raise ValueError(f"{field_name} cannot be negative")


@dataclass(frozen=True)
class UsageEvent:
    """Immutable record of requests and tokens consumed by a model."""
    model: str
    requests: int
    tokens: int
    timestamp: datetime


@dataclass(frozen=True)
class OutcomeEvent:
    """Immutable record of a task attempt and whether it succeeded."""
    model: str
    task_type: str
    success: bool
    tokens_used: int
    timestamp: datetime
    error_message: Optional[str] = None


@dataclass(frozen=True)
class ModelUsage:
    """Usage summed over the minute and day sliding windows."""
    model: str
    rpm_used: int = 0
    tpm_used: int = 0
    rpd_used: int = 0
    tpd_used: int = 0


@dataclass(frozen=True)
class ModelStats:
    """A model's configuration joined with its windowed usage and lifetime counters."""
    descriptor: ModelDescriptor
    usage: ModelUsage
    successful_tasks: int = 0
    failed_tasks: int = 0
    
    @property
    def name(self) -> str:
        return self.descriptor.name
    
    @property
    def origin(self) -> str:
        return self.descriptor.origin
    
    @property
    def rank(self) -> int:
        return self.descriptor.rank
    
    @property
    def remaining_rpm(self) -> int:
        return self.descriptor.rpm_allowed - self.usage.rpm_used
    
    @property
    def remaining_tpm(self) -> int:
        return self.descriptor.tpm_total - self.usage.tpm_used
    
    @property
    def remaining_rpd(self) -> int:
        return self.descriptor.rpd_total - self.usage.rpd_used
    
    @property
    def remaining_tpd(self) -> int:
        return self.descriptor.tpd_total - self.usage.tpd_used
    
    @property
    def remaining_tokens(self) -> int:
        """Tokens usable right now, bounded by both token windows."""
        return min(self.remaining_tpm, self.remaining_tpd)
    
    @property
    def success_rate(self) -> Optional[float]:
        """Lifetime success percentage, or None before any outcome is recorded."""
        total = self.successful_tasks + self.failed_tasks
        if total == 0:
            return None
        return self.successful_tasks / total * 100
    
    def has_capacity(self, min_tokens: int) -> bool:
        """Check all four quotas against the unit thresholds."""
        return (
            self.remaining_rpm >= 1
            and self.remaining_tpm >= min_tokens
            and self.remaining_rpd >= 1
            and self.remaining_tpd >= min_tokens
        )
