"""Tier-to-model resolution across provider catalogs.

The TierModelResolver turns a capability profile into a concrete
(provider, model, tier) choice.

Selection priority:
1. Forced model: exact catalog match, tier inferred from its catalog list
2. Forced tier: used as-is
3. Vision requirement: VISION tier, if any configured model supports it
4. Low-confidence classification: the configured default tier
5. Complexity mapping (SIMPLE=MINI, MODERATE/COMPLEX=STANDARD,
   REASONING_HEAVY=REASONING)

The provider is the chain's current provider, unless a healthy preferred
provider is requested. The model is the first catalog entry for the tier
on that provider; when the provider lacks the tier, the nearest tier it
does offer is substituted. Alternatives carry the same tier's model on
every other provider, in chain order.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field

import structlog

from provider_router.routing.classifier import ClassificationResult, TaskComplexity
from provider_router.routing.errors import ConfigError, ModelNotConfiguredError
from provider_router.routing.fallback import FallbackChain
from provider_router.routing.pricing import PRICING_PER_MILLION, calculate_cost
from provider_router.routing.tiers import (
    ModelTier,
    ProviderCatalog,
    nearest_tiers,
    normalize_catalog,
    parse_tier,
)

log = structlog.get_logger(__name__)

TierAdjuster = Callable[[ModelTier], ModelTier]

_COMPLEXITY_TIER: dict[TaskComplexity, ModelTier] = {
    TaskComplexity.SIMPLE: ModelTier.MINI,
    TaskComplexity.MODERATE: ModelTier.STANDARD,
    TaskComplexity.COMPLEX: ModelTier.STANDARD,
    TaskComplexity.REASONING_HEAVY: ModelTier.REASONING,
}


@dataclass(frozen=True)
class ModelChoice:
    provider: str
    model: str


@dataclass(frozen=True)
class ResolveOverrides:
    """Caller overrides for a single resolution.

    Attributes:
        force_model: Exact model id to use
        force_tier: Tier to use instead of classifying
        preferred_provider: Provider to use when healthy
        estimated_tokens: Enables cost estimation when set
    """

    force_model: str | None = None
    force_tier: str | None = None
    preferred_provider: str | None = None
    estimated_tokens: int | None = None


@dataclass(frozen=True)
class Resolution:
    """Outcome of a resolution, before it is wrapped into a RouteDecision."""

    provider: str
    model: str
    tier: ModelTier
    reason: str
    is_fallback: bool = False
    alternatives: tuple[ModelChoice, ...] = field(default_factory=tuple)
    estimated_cost: float | None = None
    requested_tier: ModelTier | None = None


class TierModelResolver:
    """Maps capability profiles onto configured provider catalogs."""

    def __init__(
        self,
        chain: FallbackChain,
        models: Mapping[str, Sequence[str] | Mapping[str, Sequence[str]]],
        *,
        pricing: dict[str, dict[str, float]] | None = None,
        min_confidence: float = 0.5,
        default_tier: str | ModelTier = ModelTier.STANDARD,
    ) -> None:
        """Initialize the resolver.

        Args:
            chain: Fallback chain supplying the provider order and health
            models: Per-provider catalog (flat list or tier mapping)
            pricing: Price table for cost estimates (static table if None)
            min_confidence: Classifications below this use ``default_tier``
            default_tier: Tier for untrusted classifications
        """
        self._chain = chain
        self._catalogs: dict[str, ProviderCatalog] = {}
        self._pricing = pricing if pricing is not None else PRICING_PER_MILLION
        self.min_confidence = min_confidence
        self.default_tier = parse_tier(default_tier)
        self.set_models(models)

    # ---------------------------------------------------------------- #
    # Catalog management
    # ---------------------------------------------------------------- #

    def set_models(
        self,
        models: Mapping[str, Sequence[str] | Mapping[str, Sequence[str]]],
    ) -> None:
        self._catalogs = {
            provider: normalize_catalog(entry) for provider, entry in models.items()
        }
        log.info(
            "tier_resolver.catalogs_loaded",
            catalogs={
                provider: {tier.value: models for tier, models in catalog.items()}
                for provider, catalog in self._catalogs.items()
            },
        )

    def set_pricing(self, pricing: dict[str, dict[str, float]]) -> None:
        self._pricing = pricing

    def get_catalog(self, provider: str) -> ProviderCatalog:
        return {tier: list(models) for tier, models in self._catalogs.get(provider, {}).items()}

    def supports_tier(self, tier: ModelTier) -> bool:
        """True if any configured provider lists a model in ``tier``."""
        return any(tier in catalog for catalog in self._catalogs.values())

    def find_model(self, model: str) -> tuple[str, ModelTier] | None:
        """Locate ``model`` in the catalogs, preferring chain order."""
        order = self._chain.get_fallback_chain()
        providers = order + [p for p in self._catalogs if p not in order]
        for provider in providers:
            for tier, models in self._catalogs.get(provider, {}).items():
                if model in models:
                    return provider, tier
        return None

    def model_for(self, provider: str, tier: ModelTier) -> tuple[str, ModelTier] | None:
        """First model for ``tier`` on ``provider``, substituting the nearest tier."""
        catalog = self._catalogs.get(provider)
        if not catalog:
            return None
        for candidate in nearest_tiers(tier):
            models = catalog.get(candidate)
            if models:
                return models[0], candidate
        return None

    # ---------------------------------------------------------------- #
    # Resolution
    # ---------------------------------------------------------------- #

    def resolve_tier(
        self,
        classification: ClassificationResult | None,
        overrides: ResolveOverrides | None = None,
    ) -> tuple[ModelTier, str]:
        """Decide the tier and the reason code for it."""
        overrides = overrides or ResolveOverrides()

        if overrides.force_tier is not None:
            return parse_tier(overrides.force_tier), "forced_tier"

        if classification is None:
            return self.default_tier, "default"

        if classification.requires_vision:
            if self.supports_tier(ModelTier.VISION):
                return ModelTier.VISION, "vision"
            log.warning(
                "tier_resolver.vision_unavailable",
                fallback_tier=_COMPLEXITY_TIER[classification.complexity].value,
            )
            return _COMPLEXITY_TIER[classification.complexity], "vision_unavailable"

        if classification.confidence < self.min_confidence:
            log.info(
                "tier_resolver.low_confidence",
                confidence=classification.confidence,
                min_confidence=self.min_confidence,
                default_tier=self.default_tier.value,
            )
            return self.default_tier, "low_confidence"

        return _COMPLEXITY_TIER[classification.complexity], "classified"

    def resolve(
        self,
        classification: ClassificationResult | None,
        overrides: ResolveOverrides | None = None,
        *,
        adjust_tier: TierAdjuster | None = None,
    ) -> Resolution | None:
        """Resolve a concrete provider/model/tier.

        Args:
            classification: Capability profile (None when forced)
            overrides: Forced model/tier, preferred provider, token estimate
            adjust_tier: Hook applied to non-forced tiers (budget downgrade)

        Returns:
            Resolution, or None if the fallback chain is exhausted

        Raises:
            ModelNotConfiguredError: If a forced model is in no catalog
            ConfigError: If no provider offers any model for the tier
        """
        overrides = overrides or ResolveOverrides()

        if overrides.force_model is not None:
            return self._resolve_forced_model(overrides)

        tier, reason = self.resolve_tier(classification, overrides)
        requested_tier = tier
        provider, used_preferred = self._select_provider(tier, overrides.preferred_provider)
        if provider is None:
            return None

        # Exhausted chains return above without a downgrade signal
        if adjust_tier is not None and reason != "forced_tier":
            adjusted = adjust_tier(tier)
            if adjusted != tier:
                tier, reason = adjusted, "budget_downgrade"

        found = self.model_for(provider, tier)
        if found is None and tier is ModelTier.VISION and reason != "forced_tier":
            # Vision-capable providers are all down; keep capability degraded, not the request.
            tier = (
                _COMPLEXITY_TIER[classification.complexity]
                if classification is not None
                else self.default_tier
            )
            reason = "vision_unavailable"
            found = self.model_for(provider, tier)
        if found is None:
            provider, found = self._first_provider_offering(tier, exclude=provider)
        if found is None or provider is None:
            raise ConfigError(f"No provider has a model configured for tier {tier.value}")

        model, actual_tier = found
        primary = self._chain.get_primary_provider()
        resolution = Resolution(
            provider=provider,
            model=model,
            tier=actual_tier,
            reason=reason,
            is_fallback=provider != primary and not used_preferred,
            alternatives=tuple(self.alternatives(actual_tier, exclude=provider)),
            estimated_cost=self.estimate_cost(model, overrides.estimated_tokens),
            requested_tier=requested_tier,
        )
        log.debug(
            "tier_resolver.resolved",
            provider=provider,
            model=model,
            tier=actual_tier.value,
            reason=reason,
        )
        return resolution

    def alternatives(self, tier: ModelTier, exclude: str) -> list[ModelChoice]:
        """Same-tier models on every other provider, in chain order."""
        order = self._chain.get_fallback_chain()
        providers = order + [p for p in self._catalogs if p not in order]
        choices: list[ModelChoice] = []
        for provider in providers:
            if provider == exclude:
                continue
            found = self.model_for(provider, tier)
            if found is not None:
                choices.append(ModelChoice(provider=provider, model=found[0]))
        return choices

    def estimate_cost(self, model: str, estimated_tokens: int | None) -> float | None:
        if estimated_tokens is None:
            return None
        return calculate_cost(estimated_tokens, model, self._pricing)

    def _resolve_forced_model(self, overrides: ResolveOverrides) -> Resolution:
        model = overrides.force_model
        found = self.find_model(model)
        if found is None:
            log.warning("tier_resolver.forced_model_unknown", model=model)
            raise ModelNotConfiguredError(model)

        provider, tier = found
        return Resolution(
            provider=provider,
            model=model,
            tier=tier,
            reason="forced_model",
            is_fallback=False,
            alternatives=tuple(self.alternatives(tier, exclude=provider)),
            estimated_cost=self.estimate_cost(model, overrides.estimated_tokens),
            requested_tier=tier,
        )

    def _select_provider(
        self,
        tier: ModelTier,
        preferred: str | None,
    ) -> tuple[str | None, bool]:
        tracker = self._chain.tracker
        if preferred is not None:
            if tracker.is_healthy(preferred) and preferred in self._catalogs:
                return preferred, True
            log.info(
                "tier_resolver.preferred_provider_skipped",
                provider=preferred,
                healthy=tracker.is_healthy(preferred),
            )

        provider = self._chain.get_next_provider()
        if provider is None:
            return None, False

        if tier is ModelTier.VISION and self.model_for(provider, tier) is None:
            for candidate in self._chain.get_fallback_chain():
                if tracker.is_available(candidate) and self.model_for(candidate, tier):
                    return candidate, False
        return provider, False

    def _first_provider_offering(
        self,
        tier: ModelTier,
        exclude: str,
    ) -> tuple[str | None, tuple[str, ModelTier] | None]:
        tracker = self._chain.tracker
        for provider in self._chain.get_fallback_chain():
            if provider == exclude or not tracker.is_available(provider):
                continue
            found = self.model_for(provider, tier)
            if found is not None:
                return provider, found
        return None, None
