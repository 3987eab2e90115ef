"""Model tiers and per-provider model catalogs.

A tier is a capability/cost class of model:
- MINI: fast, cheap models for listings, lookups, short answers
- STANDARD: balanced models for most agent and coding work
- REASONING: premium models for deep, multi-step reasoning
- VISION: image-capable models

Catalogs map each provider to tier -> ordered model ids. They may be
configured either explicitly per tier or as a flat list, in which case
each model's tier is inferred from its name.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from enum import StrEnum

from provider_router.routing.errors import ConfigError


class ModelTier(StrEnum):
    """Model capability tiers for routing decisions."""

    MINI = "mini"
    STANDARD = "standard"
    REASONING = "reasoning"
    VISION = "vision"


ProviderCatalog = dict[ModelTier, list[str]]

# Budget pressure steps cost tiers down one level. Vision is exempt:
# downgrading it would change capability, not just cost.
_STEP_DOWN: dict[ModelTier, ModelTier] = {
    ModelTier.REASONING: ModelTier.STANDARD,
    ModelTier.STANDARD: ModelTier.MINI,
}

# Substitution order when a provider has no model in the requested tier.
_NEAREST: dict[ModelTier, tuple[ModelTier, ...]] = {
    ModelTier.MINI: (ModelTier.MINI, ModelTier.STANDARD, ModelTier.REASONING),
    ModelTier.STANDARD: (ModelTier.STANDARD, ModelTier.REASONING, ModelTier.MINI),
    ModelTier.REASONING: (ModelTier.REASONING, ModelTier.STANDARD, ModelTier.MINI),
    ModelTier.VISION: (ModelTier.VISION,),
}

_VISION_PATTERN = re.compile(r"vision|\bvl\b", re.IGNORECASE)
_REASONING_PATTERN = re.compile(
    r"reason|think|opus|\bo[134]\b|\bo[134]-(?!mini)|\br1\b|deepseek-r", re.IGNORECASE
)
_MINI_PATTERN = re.compile(r"mini|haiku|flash|nano|small|lite|\b\d+(\.\d+)?b\b", re.IGNORECASE)


def parse_tier(value: str | ModelTier) -> ModelTier:
    """Convert user input to a ModelTier.

    Raises:
        ConfigError: If ``value`` names no tier
    """
    try:
        return ModelTier(value)
    except ValueError:
        raise ConfigError(f"Unknown tier: {value}") from None


def infer_tier(model: str) -> ModelTier:
    """Infer a model's tier from its identifier.

    ``o3-mini`` is a MINI model, ``o1`` a REASONING one, ``grok-2-vision``
    a VISION one; anything unrecognised is STANDARD.
    """
    if _VISION_PATTERN.search(model):
        return ModelTier.VISION
    if _MINI_PATTERN.search(model):
        return ModelTier.MINI
    if _REASONING_PATTERN.search(model):
        return ModelTier.REASONING
    return ModelTier.STANDARD


def normalize_catalog(entry: Sequence[str] | Mapping[str, Sequence[str]]) -> ProviderCatalog:
    """Turn a configured catalog entry into tier -> models.

    Args:
        entry: Flat list of model ids, or mapping of tier name -> model ids

    Returns:
        Catalog with tiers in declaration order, empty tiers omitted
    """
    catalog: ProviderCatalog = {}
    if isinstance(entry, Mapping):
        for tier_name, models in entry.items():
            tier = parse_tier(tier_name)
            catalog.setdefault(tier, []).extend(m for m in models if m)
    else:
        for model in entry:
            catalog.setdefault(infer_tier(model), []).append(model)
    return {tier: models for tier, models in catalog.items() if models}


def step_down(tier: ModelTier) -> ModelTier:
    """One tier cheaper; MINI and VISION are returned unchanged."""
    return _STEP_DOWN.get(tier, tier)


def nearest_tiers(tier: ModelTier) -> tuple[ModelTier, ...]:
    return _NEAREST[tier]
