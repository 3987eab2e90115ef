"""
Router configuration via pydantic-settings.

All tunables live in one explicit structure with documented defaults.
Partial overrides are merged over the defaults at construction time, and
the whole tree can be loaded from environment variables (or a .env file
in dev) using the ``ROUTER_`` prefix, e.g.::

    ROUTER_ROUTER__SESSION_BUDGET=25
    ROUTER_ROUTER__HEALTH__MAX_FAILURES=5
"""

from __future__ import annotations

from enum import StrEnum
from functools import lru_cache
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    DEV = "dev"
    PROD = "prod"
    TEST = "test"


# Catalog entries are either a flat list of model ids (tiers inferred from
# the model name) or an explicit tier -> model ids mapping.
CatalogEntry = list[str] | dict[str, list[str]]

DEFAULT_PROVIDERS: list[str] = ["grok", "openai", "claude"]

DEFAULT_MODELS: dict[str, CatalogEntry] = {
    "grok": ["grok-3-mini", "grok-3", "grok-3-reasoning", "grok-2-vision"],
    "openai": ["gpt-4o-mini", "gpt-4o", "o1"],
    "claude": ["claude-3-haiku", "claude-3-sonnet", "claude-3-opus"],
}


class HealthConfig(BaseModel):
    """Circuit-breaker thresholds for provider health tracking.

    Defaults are tuned for LLM API latencies: a provider that fails three
    times inside five minutes is taken out of rotation for one minute.
    """

    model_config = {"frozen": True}

    max_failures: int = Field(
        default=3,
        ge=1,
        description="Failures inside the window before the circuit opens",
    )
    cooldown_ms: float = Field(
        default=60_000,
        ge=0,
        description="Time an open circuit waits before a recovery attempt",
    )
    failure_window_ms: float = Field(
        default=300_000,
        gt=0,
        description="Sliding window over which failures are counted",
    )
    slow_threshold_ms: float = Field(
        default=5_000,
        gt=0,
        description="Responses at or above this latency count as slow",
    )
    max_slow_responses: int = Field(
        default=5,
        ge=1,
        description="Consecutive slow responses before the provider is unhealthy",
    )
    auto_promote: bool = Field(
        default=True,
        description="Promote the next healthy provider when the primary fails",
    )


class RouterConfig(BaseModel):
    """Complete configuration for the smart router.

    Attributes:
        providers: Ordered provider roster (primary first)
        models: Per-provider model catalog
        session_budget: Session spend ceiling in USD
        auto_downgrade: Step tiers down once the warning threshold is crossed
        budget_warning_ratio: Fraction of the budget that triggers the warning
        min_confidence: Classifications below this use ``default_tier``
        default_tier: Tier used when classification cannot be trusted
        pricing: Per-model price overrides (USD per million tokens)
        health: Circuit-breaker thresholds
    """

    model_config = {"frozen": True}

    providers: list[str] = Field(default_factory=lambda: list(DEFAULT_PROVIDERS))
    models: dict[str, CatalogEntry] = Field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_MODELS.items()}
    )
    session_budget: float = Field(default=10.0, gt=0)
    auto_downgrade: bool = True
    budget_warning_ratio: float = Field(default=0.8, gt=0, lt=1)
    min_confidence: float = Field(default=0.5, ge=0, le=1)
    default_tier: str = "standard"
    pricing: dict[str, dict[str, float]] = Field(default_factory=dict)
    health: HealthConfig = Field(default_factory=HealthConfig)

    @field_validator("default_tier")
    @classmethod
    def _validate_default_tier(cls, value: str) -> str:
        if value not in {"mini", "standard", "reasoning", "vision"}:
            raise ValueError(f"Unknown tier: {value}")
        return value

    @model_validator(mode="after")
    def _validate_providers_unique(self) -> RouterConfig:
        if len(set(self.providers)) != len(self.providers):
            raise ValueError("providers must not contain duplicates")
        return self

    def merged(self, **overrides: Any) -> RouterConfig:
        """Return a copy with partial overrides applied.

        ``health`` may be given as a partial dict; unspecified thresholds
        keep their current values.
        """
        health = overrides.pop("health", None)
        data = self.model_dump()
        data.update({k: v for k, v in overrides.items() if v is not None})
        if health is not None:
            if isinstance(health, HealthConfig):
                health = health.model_dump()
            data["health"] = {**self.health.model_dump(), **health}
        return RouterConfig.model_validate(data)


class CostSensitivity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SelectorConfig(BaseModel):
    """Configuration for the single-provider model selector.

    Attributes:
        enabled: Classify tasks; when False the default model is always used
        default_model: Model used when routing is disabled or untrusted
        min_confidence: Classifications below this use ``default_model``
        cost_sensitivity: ``high`` steps non-reasoning standard work to mini
        tier_models: Tier name -> model id for the single provider
    """

    model_config = {"frozen": True}

    enabled: bool = True
    default_model: str = "grok-3"
    min_confidence: float = Field(default=0.5, ge=0, le=1)
    cost_sensitivity: CostSensitivity = CostSensitivity.MEDIUM
    tier_models: dict[str, str] = Field(
        default_factory=lambda: {
            "mini": "grok-3-mini",
            "standard": "grok-3",
            "reasoning": "grok-3-reasoning",
            "vision": "grok-2-vision",
        }
    )

    @field_validator("tier_models")
    @classmethod
    def _validate_tier_models(cls, value: dict[str, str]) -> dict[str, str]:
        missing = {"mini", "standard", "reasoning", "vision"} - set(value)
        if missing:
            raise ValueError(f"tier_models is missing tiers: {sorted(missing)}")
        return value


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="ROUTER_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ------------------------------------------------------------------ #
    # Application
    # ------------------------------------------------------------------ #
    environment: Environment = Environment.DEV
    debug: bool = False

    # ------------------------------------------------------------------ #
    # Logging
    # ------------------------------------------------------------------ #
    log_level: str = Field(default="INFO", description="Minimum log level")
    json_logs: bool = Field(
        default=False,
        description="Render logs as JSON (production) instead of console output",
    )

    # ------------------------------------------------------------------ #
    # Routing
    # ------------------------------------------------------------------ #
    router: RouterConfig = Field(default_factory=RouterConfig)
    selector: SelectorConfig = Field(default_factory=SelectorConfig)

    @model_validator(mode="after")
    def _set_debug_from_env(self) -> Settings:
        if self.environment == Environment.DEV:
            self.debug = True
        return self

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return level

    @property
    def is_dev(self) -> bool:
        return self.environment in (Environment.DEV, Environment.TEST)

    @property
    def is_prod(self) -> bool:
        return self.environment == Environment.PROD


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings singleton.

    Call ``get_settings.cache_clear()`` in tests after changing the
    environment.
    """
    return Settings()
