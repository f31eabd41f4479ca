"""
Error kinds raised by the routing engine.

Selection resolves most of these internally; only total exhaustion of
candidates reaches the caller, and then as a failed task result.
"""


class RouterError(Exception):
    """Base class for routing engine errors."""


class ConfigurationError(RouterError):
    """Raised when a provider origin has no usable credentials or is unknown."""


class CapacityExhaustedError(RouterError):
    """Raised when no enabled model has any remaining quota."""


class DecisionParseError(RouterError):
    """Raised when a decision oracle answer is missing fields or unparseable."""


class ProviderExecutionError(RouterError):
    """Raised when a provider call fails."""
    
    def __init__(self, message: str, origin: str = "", model: str = ""):
        super().__init__(message)
        self.origin = origin
        self.model = model


class ProviderTimeoutError(RouterError):
    """Raised when a provider or oracle call exceeds its timeout.
    
    Distinct from ProviderExecutionError, which covers failures the
    upstream reported.
    """
    
    def __init__(self, message: str, origin: str = "", model: str = ""):
        super().__init__(message)
        self.origin = origin
        self.model = model


class NoProvidersAvailableError(RouterError):
    """Raised when even the emergency fallback finds no model to use."""
