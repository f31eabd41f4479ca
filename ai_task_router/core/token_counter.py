"""
Token estimation.

Approximates token counts for providers that don't report usage.
"""

import math
from typing import Optional

CHARS_PER_TOKEN = 4


def estimate_tokens(prompt: str, completion: str = "") -> int:
    """Estimate tokens for a prompt/completion pair at roughly 4 characters per token."""
    return math.ceil((len(prompt) + len(completion)) / CHARS_PER_TOKEN)


def resolve_tokens_used(reported: Optional[int], prompt: str, completion: str) -> int:
    """Prefer the provider's reported count; estimate when it's missing or zero."""
    if reported:
        return reported
    return estimate_tokens(prompt, completion)
