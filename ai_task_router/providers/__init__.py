"""
Provider adapters for AI Task Router.

Maps origin names to content-generation capabilities.
"""

from .base import GenerationResult, Provider
from .openai_compat import OpenAICompatibleProvider
from .registry import ProviderRegistry

__all__ = ["GenerationResult", "OpenAICompatibleProvider", "Provider", "ProviderRegistry"]
