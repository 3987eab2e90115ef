"""Single-provider model selection.

The ModelSelector picks a model from one provider's tier table without a
fallback chain or health tracking. It is used when only one provider is
configured (e.g. a CLI session against a single API key).

Selection priority:
1. Routing disabled -> default model
2. User-preferred model
3. Classification confidence below ``min_confidence`` -> default model
4. Tier mapping (vision, then complexity), adjusted by cost sensitivity

The selector also keeps a per-model usage ledger for cost reporting.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any

import structlog

from provider_router.config import CostSensitivity, SelectorConfig
from provider_router.routing.classifier import (
    ClassificationHints,
    ClassificationResult,
    TaskClassifier,
    TaskComplexity,
)
from provider_router.routing.errors import ConfigError
from provider_router.routing.pricing import (
    PRICING_PER_MILLION,
    calculate_cost,
    most_expensive_model,
    price_per_million,
)
from provider_router.routing.tiers import ModelTier, infer_tier

log = structlog.get_logger(__name__)

_COMPLEXITY_TIER: dict[TaskComplexity, ModelTier] = {
    TaskComplexity.SIMPLE: ModelTier.MINI,
    TaskComplexity.MODERATE: ModelTier.STANDARD,
    TaskComplexity.COMPLEX: ModelTier.STANDARD,
    TaskComplexity.REASONING_HEAVY: ModelTier.REASONING,
}


@dataclass(frozen=True)
class ModelSelection:
    """Model recommendation for a single-provider request.

    Attributes:
        recommended_model: Model id to call
        tier: Tier the model belongs to
        reason: Human-readable explanation
        confidence: Classification confidence (1.0 when not classified)
        estimated_cost: Cost of the task's own tokens at the model's price
        alternatives: Models of the other tiers
    """

    recommended_model: str
    tier: ModelTier
    reason: str
    confidence: float = 1.0
    estimated_cost: float = 0.0
    alternatives: tuple[str, ...] = ()


@dataclass
class ModelUsage:
    calls: int = 0
    tokens: int = 0
    cost: float = 0.0


@dataclass(frozen=True)
class SavingsEstimate:
    """Spend compared to running every recorded token on the priciest model."""

    actual_cost: float
    baseline_cost: float
    saved: float
    percentage: float
    baseline_model: str = field(default="")


def select_model(
    classification: ClassificationResult,
    config: SelectorConfig | None = None,
    available_models: list[str] | None = None,
) -> ModelSelection:
    """Map a classification to a model from one provider's tier table.

    Args:
        classification: Capability profile of the task
        config: Selector configuration (defaults if None)
        available_models: Models the provider currently serves; when the
            tier's model is missing, the first available model is used

    Returns:
        ModelSelection

    Raises:
        ConfigError: If ``available_models`` is given but empty
    """
    config = config or SelectorConfig()

    if classification.requires_vision:
        tier = ModelTier.VISION
    else:
        tier = _COMPLEXITY_TIER[classification.complexity]

    reason = f"{classification.complexity.value} task"
    if (
        config.cost_sensitivity == CostSensitivity.HIGH
        and tier is ModelTier.STANDARD
        and not classification.requires_reasoning
    ):
        tier = ModelTier.MINI
        reason += ", downgraded for cost sensitivity"

    model = config.tier_models[tier.value]
    reason += f" -> {tier.value} tier"

    if available_models is not None and model not in available_models:
        if not available_models:
            raise ConfigError("No models available for selection")
        log.info(
            "model_selector.model_unavailable",
            preferred_model=model,
            substitute=available_models[0],
        )
        reason += f" ({model} unavailable)"
        model = available_models[0]
        tier = infer_tier(model)

    alternatives = tuple(
        m for t, m in config.tier_models.items() if t != tier.value and m != model
    )
    return ModelSelection(
        recommended_model=model,
        tier=tier,
        reason=reason,
        confidence=classification.confidence,
        estimated_cost=calculate_cost(classification.estimated_tokens, model),
        alternatives=alternatives,
    )


class ModelSelector:
    """Classifies tasks and picks a model for a single provider."""

    def __init__(
        self,
        config: SelectorConfig | None = None,
        *,
        classifier: TaskClassifier | None = None,
        pricing: dict[str, dict[str, float]] | None = None,
    ) -> None:
        self._config = config or SelectorConfig()
        self._classifier = classifier or TaskClassifier()
        self._pricing = pricing if pricing is not None else PRICING_PER_MILLION
        self._usage: dict[str, ModelUsage] = {}
        self._lock = threading.Lock()

        log.info(
            "model_selector.initialized",
            enabled=self._config.enabled,
            default_model=self._config.default_model,
            cost_sensitivity=self._config.cost_sensitivity.value,
        )

    def route(
        self,
        message: str,
        hints: ClassificationHints | None = None,
        user_preferred_model: str | None = None,
        available_models: list[str] | None = None,
    ) -> ModelSelection:
        """Select a model for ``message``.

        Args:
            message: Task description or user message
            hints: Optional caller knowledge (vision input attached, ...)
            user_preferred_model: Model the user explicitly asked for
            available_models: Models the provider currently serves

        Returns:
            ModelSelection
        """
        config = self._config

        if not config.enabled:
            return self._default_selection("Model routing disabled, using default model")

        if user_preferred_model:
            log.debug("model_selector.user_preference", model=user_preferred_model)
            return ModelSelection(
                recommended_model=user_preferred_model,
                tier=infer_tier(user_preferred_model),
                reason="User preference",
            )

        classification = self._classifier.classify(message, hints)
        if classification.confidence < config.min_confidence:
            return self._default_selection(
                f"Low confidence ({classification.confidence:.2f} < "
                f"{config.min_confidence:.2f}), using default model",
                confidence=classification.confidence,
            )

        selection = select_model(classification, config, available_models)
        log.info(
            "model_selector.model_selected",
            model=selection.recommended_model,
            tier=selection.tier.value,
            complexity=classification.complexity.value,
            confidence=classification.confidence,
        )
        return selection

    def update_config(self, **overrides: Any) -> None:
        """Apply partial overrides; raises pydantic ValidationError if invalid."""
        data = self._config.model_dump()
        data.update(overrides)
        self._config = SelectorConfig.model_validate(data)
        log.info("model_selector.config_updated", changed=sorted(overrides))

    def get_config(self) -> SelectorConfig:
        return self._config.model_copy(deep=True)

    # ---------------------------------------------------------------- #
    # Usage ledger
    # ---------------------------------------------------------------- #

    def record_usage(self, model: str, tokens: int, cost: float) -> None:
        with self._lock:
            usage = self._usage.setdefault(model, ModelUsage())
            usage.calls += 1
            usage.tokens += tokens
            usage.cost += cost

    def get_usage_stats(self) -> dict[str, ModelUsage]:
        with self._lock:
            return {
                model: ModelUsage(calls=u.calls, tokens=u.tokens, cost=u.cost)
                for model, u in self._usage.items()
            }

    def get_total_cost(self) -> float:
        with self._lock:
            return sum(u.cost for u in self._usage.values())

    def get_estimated_savings(self) -> SavingsEstimate:
        """Compare actual spend with pricing every token at the priciest model."""
        baseline_model = most_expensive_model(self._pricing)
        price = price_per_million(baseline_model, self._pricing)
        with self._lock:
            actual = sum(u.cost for u in self._usage.values())
            tokens = sum(u.tokens for u in self._usage.values())

        baseline = tokens / 1_000_000 * price
        saved = baseline - actual
        percentage = saved / baseline * 100 if baseline > 0 else 0.0
        return SavingsEstimate(
            actual_cost=actual,
            baseline_cost=baseline,
            saved=saved,
            percentage=round(percentage, 1),
            baseline_model=baseline_model,
        )

    def reset_usage(self) -> None:
        with self._lock:
            self._usage.clear()

    def _default_selection(self, reason: str, confidence: float = 1.0) -> ModelSelection:
        model = self._config.default_model
        log.debug("model_selector.default_model", model=model, reason=reason)
        return ModelSelection(
            recommended_model=model,
            tier=infer_tier(model),
            reason=reason,
            confidence=confidence,
        )
