"""Error taxonomy for the routing layer.

Ordinary provider failures (timeouts, rate limits, 5xx) are never raised
here; they are reported as data through ``record_failure``. Only
configuration mistakes and misuse surface as exceptions.
"""

from __future__ import annotations


class RoutingError(Exception):
    """Base exception for all routing layer errors."""


class ConfigError(RoutingError, ValueError):
    """Invalid routing configuration (empty chain, unknown tier, ...)."""


class ModelNotConfiguredError(ConfigError):
    """A forced model is not listed in any provider catalog."""

    def __init__(self, model: str) -> None:
        super().__init__(f"Model {model} is not configured for any provider")
        self.model = model


class NotInChainError(RoutingError, LookupError):
    """Provider is not a member of the fallback chain."""

    def __init__(self, provider: str) -> None:
        super().__init__(f"Provider {provider} not in fallback chain")
        self.provider = provider


class ChainExhaustedError(RoutingError):
    """Every provider is unhealthy and still inside its cooldown."""

    def __init__(self, attempted_providers: list[str]) -> None:
        super().__init__(
            "No provider available: "
            + ", ".join(attempted_providers or ["<empty chain>"])
        )
        self.attempted_providers = list(attempted_providers)
