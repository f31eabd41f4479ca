"""
Provider registry.

Resolves origin names to provider instances through an explicit map of
registered factories.
"""

import threading
from typing import Callable, Dict, List, Optional

import structlog

from ..core.errors import ConfigurationError
from .base import Provider
from .openai_compat import OpenAICompatibleProvider

logger = structlog.get_logger(__name__)

ProviderFactory = Callable[[], Provider]


class ProviderRegistry:
    """Explicit origin -> provider map, resolved lazily and cached for the process lifetime.

    Factories that fail with ConfigurationError are remembered as
    unavailable, so an origin without credentials is never retried.
    """

    def __init__(self, factories: Optional[Dict[str, ProviderFactory]] = None):
        self._factories: Dict[str, ProviderFactory] = {}
        self._providers: Dict[str, Provider] = {}
        self._failures: Dict[str, str] = {}
        self._lock = threading.Lock()
        for origin, factory in (factories or {}).items():
            self.register(origin, factory)

    @classmethod
    def from_config(cls, providers) -> "ProviderRegistry":
        """Build a registry of OpenAI-compatible providers.

        Args:
            providers: Mapping of origin -> ProviderConfig
        """
        registry = cls()
        for origin, provider_config in providers.items():
            registry.register(origin, _openai_factory(origin, provider_config))
        return registry

    def register(self, origin: str, factory: ProviderFactory) -> None:
        key = _normalize(origin)
        with self._lock:
            self._factories[key] = factory
            self._providers.pop(key, None)
            self._failures.pop(key, None)

    def get_provider(self, origin: str) -> Provider:
        """Return the provider for an origin.

        Raises:
            ConfigurationError: If the origin is unregistered or has no usable credentials
        """
        key = _normalize(origin)
        with self._lock:
            if key in self._providers:
                return self._providers[key]
            if key in self._failures:
                raise ConfigurationError(self._failures[key])
            factory = self._factories.get(key)
            if factory is None:
                supported = ", ".join(sorted(self._factories)) or "none"
                raise ConfigurationError(
                    f"Unsupported origin: {origin}. Supported origins: {supported}"
                )
            try:
                provider = factory()
            except ConfigurationError as e:
                self._failures[key] = str(e)
                raise
            self._providers[key] = provider
            return provider

    def has_provider(self, origin: str) -> bool:
        """Whether the origin resolves to a usable provider."""
        try:
            self.get_provider(origin)
        except ConfigurationError:
            return False
        return True

    def validate(self) -> List[str]:
        """Resolve every registered origin once.

        Returns:
            Sorted list of usable origins
        """
        with self._lock:
            origins = sorted(self._factories)
        available = []
        for origin in origins:
            try:
                self.get_provider(origin)
            except ConfigurationError as e:
                logger.warning("provider_unavailable", origin=origin, reason=str(e))
                continue
            available.append(origin)
        logger.info("providers_validated", available=available)
        return available

    def available_origins(self) -> List[str]:
        """Origins already resolved successfully."""
        with self._lock:
            return sorted(self._providers)

    def clear_cache(self) -> None:
        with self._lock:
            self._providers.clear()
            self._failures.clear()


def _normalize(origin: str) -> str:
    return origin.strip().lower()


def _openai_factory(origin: str, provider_config) -> ProviderFactory:
    def factory() -> Provider:
        return OpenAICompatibleProvider(
            origin=origin,
            api_key_env=provider_config.api_key_env,
            base_url=provider_config.base_url,
            timeout=provider_config.timeout_seconds
        )
    return factory
