"""Tests for model tiers, catalog normalisation and pricing."""

from __future__ import annotations

import pytest

from provider_router.routing.errors import ConfigError
from provider_router.routing.pricing import (
    PRICING_PER_MILLION,
    calculate_cost,
    merge_pricing,
    most_expensive_model,
    price_per_million,
)
from provider_router.routing.tiers import (
    ModelTier,
    infer_tier,
    nearest_tiers,
    normalize_catalog,
    parse_tier,
    step_down,
)


# ------------------------------------------------------------------ #
# Tiers
# ------------------------------------------------------------------ #


@pytest.mark.parametrize(
    ("model", "tier"),
    [
        ("grok-3-mini", ModelTier.MINI),
        ("gpt-4o-mini", ModelTier.MINI),
        ("o3-mini", ModelTier.MINI),
        ("claude-3-haiku", ModelTier.MINI),
        ("gemini-1.5-flash", ModelTier.MINI),
        ("llama-3.1-8b", ModelTier.MINI),
        ("grok-3", ModelTier.STANDARD),
        ("gpt-4o", ModelTier.STANDARD),
        ("claude-3-sonnet", ModelTier.STANDARD),
        ("grok-3-reasoning", ModelTier.REASONING),
        ("o1", ModelTier.REASONING),
        ("o1-preview", ModelTier.REASONING),
        ("claude-3-opus", ModelTier.REASONING),
        ("grok-2-vision", ModelTier.VISION),
        ("qwen-vl-max", ModelTier.VISION),
    ],
)
def test_infer_tier(model, tier):
    assert infer_tier(model) == tier


class TestTierHelpers:
    """parse_tier / step_down / nearest_tiers."""

    def test_parse_tier(self):
        assert parse_tier("reasoning") is ModelTier.REASONING
        assert parse_tier(ModelTier.MINI) is ModelTier.MINI

    def test_parse_unknown_tier(self):
        with pytest.raises(ConfigError, match="Unknown tier: huge"):
            parse_tier("huge")

    def test_step_down_chain(self):
        assert step_down(ModelTier.REASONING) == ModelTier.STANDARD
        assert step_down(ModelTier.STANDARD) == ModelTier.MINI
        assert step_down(ModelTier.MINI) == ModelTier.MINI

    def test_vision_never_steps_down(self):
        assert step_down(ModelTier.VISION) == ModelTier.VISION

    def test_nearest_tiers_start_with_requested(self):
        for tier in ModelTier:
            assert nearest_tiers(tier)[0] == tier

    def test_vision_has_no_substitute(self):
        assert nearest_tiers(ModelTier.VISION) == (ModelTier.VISION,)


class TestNormalizeCatalog:
    """Flat lists and explicit tier mappings."""

    def test_flat_list_infers_tiers(self):
        catalog = normalize_catalog(["grok-3-mini", "grok-3", "grok-3-reasoning", "grok-2-vision"])

        assert catalog == {
            ModelTier.MINI: ["grok-3-mini"],
            ModelTier.STANDARD: ["grok-3"],
            ModelTier.REASONING: ["grok-3-reasoning"],
            ModelTier.VISION: ["grok-2-vision"],
        }

    def test_flat_list_keeps_order_within_tier(self):
        catalog = normalize_catalog(["gpt-4o-mini", "o3-mini"])

        assert catalog[ModelTier.MINI] == ["gpt-4o-mini", "o3-mini"]

    def test_explicit_mapping(self):
        catalog = normalize_catalog({"mini": ["local-small"], "reasoning": ["local-big"]})

        assert catalog == {
            ModelTier.MINI: ["local-small"],
            ModelTier.REASONING: ["local-big"],
        }

    def test_empty_tiers_omitted(self):
        assert normalize_catalog({"mini": ["a"], "standard": []}) == {ModelTier.MINI: ["a"]}

    def test_unknown_tier_in_mapping(self):
        with pytest.raises(ConfigError):
            normalize_catalog({"gigantic": ["x"]})


# ------------------------------------------------------------------ #
# Pricing
# ------------------------------------------------------------------ #


class TestPricing:
    """Blended per-million pricing."""

    def test_known_model(self):
        # 3.00 input + 0.5 * 15.00 output
        assert calculate_cost(1_000_000, "grok-3") == pytest.approx(10.5)

    def test_unknown_model_is_free(self):
        assert calculate_cost(1_000_000, "nonexistent") == 0

    def test_linear_in_tokens(self):
        assert calculate_cost(1_000_000, "grok-3-mini") == pytest.approx(
            2 * calculate_cost(500_000, "grok-3-mini")
        )

    def test_zero_tokens(self):
        assert calculate_cost(0, "claude-3-opus") == 0

    def test_merge_pricing_overlays_table(self):
        merged = merge_pricing({"custom-model": {"input": 1.0, "output": 2.0}})

        assert price_per_million("custom-model", merged) == pytest.approx(2.0)
        assert "grok-3" in merged
        assert "custom-model" not in PRICING_PER_MILLION

    def test_merge_pricing_overrides_existing(self):
        merged = merge_pricing({"grok-3": {"input": 0.0, "output": 0.0}})

        assert calculate_cost(1_000_000, "grok-3", merged) == 0
        assert calculate_cost(1_000_000, "grok-3") == pytest.approx(10.5)

    def test_most_expensive_model(self):
        assert most_expensive_model() == "claude-3-opus"
