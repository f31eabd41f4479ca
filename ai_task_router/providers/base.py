"""
Provider capability contract.

Every origin exposes the same content-generation call.
"""

from dataclasses import dataclass
from typing import Optional, Protocol


@dataclass(frozen=True)
class GenerationResult:
    """Text produced by a provider and the tokens it reported, if any."""
    text: str
    tokens_used: Optional[int] = None


class Provider(Protocol):
    """Content-generation capability of one origin."""
    
    def generate_content(
        self,
        model: str,
        prompt: str,
        temperature: Optional[float] = None
    ) -> GenerationResult:
        ...
