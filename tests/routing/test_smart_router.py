"""Tests for SmartRouter.

Tests cover:
- Classification-driven routing (mini / standard / reasoning / vision)
- Forced model and tier, preferred provider
- Budget tracking and downgrades
- Fallback routing after failures
- Statistics and formatting
- Runtime configuration and lifecycle
- Concurrent routing
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from unittest.mock import Mock

import pytest

from provider_router.config import RouterConfig, Settings
from provider_router.routing import router as router_module
from provider_router.routing.errors import ChainExhaustedError, ModelNotConfiguredError
from provider_router.routing.events import RouterEvent
from provider_router.routing.resolver import ModelChoice
from provider_router.routing.router import RouteRequest, SmartRouter
from provider_router.routing.tiers import ModelTier


def _mark_all_unhealthy(router):
    for provider in ("grok", "openai", "claude"):
        router.mark_unhealthy(provider, "outage")


# ------------------------------------------------------------------ #
# Routing
# ------------------------------------------------------------------ #


class TestRoute:
    """route() decisions."""

    def test_simple_task_routes_to_mini(self, router):
        decision = router.route("list all files")

        assert decision.tier == ModelTier.MINI
        assert decision.model == "grok-3-mini"
        assert decision.provider == "grok"
        assert decision.is_fallback is False
        assert decision.reason == "classified"

    def test_reasoning_task_routes_to_reasoning(self, router):
        decision = router.route("think about the best architecture for a distributed system")

        assert decision.tier == ModelTier.REASONING
        assert decision.model == "grok-3-reasoning"

    def test_decision_carries_context(self, router):
        decision = router.route("list all files")

        assert decision.route_id.startswith("route_")
        assert decision.classification is not None
        assert decision.provider_health.provider == "grok"
        assert decision.provider_health.healthy is True

    def test_route_ids_are_unique(self, router):
        ids = {router.route("list all files").route_id for _ in range(20)}
        assert len(ids) == 20

    def test_route_request_object(self, router):
        decision = router.route(RouteRequest(task="hello", preferred_provider="claude"))

        assert decision.provider == "claude"
        assert decision.model == "claude-3-haiku"

    def test_alternatives_in_chain_order(self, router):
        decision = router.route("list all files")

        assert decision.alternatives == (
            ModelChoice(provider="openai", model="gpt-4o-mini"),
            ModelChoice(provider="claude", model="claude-3-haiku"),
        )

    def test_route_selected_event(self, router):
        listener = Mock()
        router.on(RouterEvent.ROUTE_SELECTED, listener)

        decision = router.route("list all files")

        listener.assert_called_once_with(decision=decision)

    def test_estimated_cost_only_with_tokens(self, router):
        assert router.route("list all files").estimated_cost is None

        decision = router.route("list all files", estimated_tokens=1_000_000)
        assert decision.estimated_cost == pytest.approx(0.55)

    def test_vision_request(self, clock):
        router = SmartRouter(clock=clock)

        decision = router.route("describe this screenshot")

        assert decision.model == "grok-2-vision"
        assert decision.tier == ModelTier.VISION

    def test_vision_hint_without_vision_models(self, router):
        decision = router.route("list all files", requires_vision=True)

        assert decision.tier == ModelTier.MINI
        assert decision.reason == "vision_unavailable"


# ------------------------------------------------------------------ #
# Overrides
# ------------------------------------------------------------------ #


class TestOverrides:
    """force_model / force_tier / preferred_provider."""

    def test_force_model(self, router):
        decision = router.route("anything", force_model="gpt-4o")

        assert decision.model == "gpt-4o"
        assert decision.provider == "openai"
        assert decision.reason == "forced_model"
        assert decision.is_fallback is False
        assert decision.classification is None

    def test_force_model_selects_owning_provider(self, router):
        assert router.route("anything", force_model="claude-3-sonnet").provider == "claude"

    def test_force_unknown_model(self, router):
        with pytest.raises(ModelNotConfiguredError):
            router.route("anything", force_model="gpt-9")

    def test_force_tier(self, router):
        decision = router.route("list all files", force_tier="reasoning")

        assert decision.tier == ModelTier.REASONING
        assert decision.reason == "forced_tier"

    def test_healthy_preferred_provider(self, router):
        assert router.route("list all files", preferred_provider="openai").provider == "openai"

    def test_unhealthy_preferred_provider_skipped(self, router):
        first = router.route("list all files", preferred_provider="openai")
        for _ in range(3):
            router.record_failure(first, "timeout")

        decision = router.route("list all files", preferred_provider="openai")

        assert decision.provider != "openai"


# ------------------------------------------------------------------ #
# Budget
# ------------------------------------------------------------------ #


class TestBudget:
    """Session cost and budget-pressure downgrades."""

    def test_downgrade_under_budget_pressure(self, router):
        downgraded = Mock()
        router.on(RouterEvent.TIER_DOWNGRADED, downgraded)
        router.add_cost(8.5)

        decision = router.route("analyze the complex architecture deeply")

        assert decision.tier == ModelTier.STANDARD
        assert decision.reason == "budget_downgrade"
        downgraded.assert_called_once_with(
            original_tier=ModelTier.REASONING, new_tier=ModelTier.STANDARD
        )
        assert router.get_stats().downgrades == 1

    def test_exhausted_chain_does_not_signal_downgrade(self, router):
        downgraded = Mock()
        router.on(RouterEvent.TIER_DOWNGRADED, downgraded)
        router.add_cost(8.5)
        _mark_all_unhealthy(router)

        assert router.route("analyze the complex architecture deeply") is None
        downgraded.assert_not_called()
        assert router.get_stats().downgrades == 0

    def test_forced_tier_not_downgraded(self, router):
        router.add_cost(9.0)

        assert router.route("x", force_tier="reasoning").tier == ModelTier.REASONING

    def test_budget_warning(self, router):
        warning = Mock()
        router.on(RouterEvent.BUDGET_WARNING, warning)

        router.add_cost(8.1)

        warning.assert_called_once_with(current_cost=8.1, session_budget=10.0)

    def test_budget_exceeded(self, router):
        exceeded = Mock()
        router.on(RouterEvent.BUDGET_EXCEEDED, exceeded)

        router.add_cost(10.5)

        exceeded.assert_called_once_with(current_cost=10.5, session_budget=10.0)

    def test_cost_accumulates_and_resets(self, router):
        router.add_cost(1.5)
        router.add_cost(2.3)
        assert router.get_current_cost() == pytest.approx(3.8)

        router.reset_cost()
        assert router.get_current_cost() == 0

    def test_record_success_adds_cost(self, router):
        decision = router.route("list all files")

        router.record_success(decision, 150, cost=0.5)

        assert router.get_current_cost() == pytest.approx(0.5)
        assert router.get_health("grok").success_count == 1


# ------------------------------------------------------------------ #
# Fallback
# ------------------------------------------------------------------ #


class TestFallback:
    """Failure reporting and fallback routes."""

    def test_fallback_route(self, router):
        fallback_listener = Mock()
        router.on(RouterEvent.PROVIDER_FALLBACK, fallback_listener)
        initial = router.route("list all files")

        fallback = router.get_fallback_route(initial, "timeout")

        assert fallback.is_fallback is True
        assert fallback.provider == "openai"
        assert fallback.model == "gpt-4o-mini"
        assert fallback.tier == ModelTier.MINI
        assert fallback.reason == "fallback:timeout"
        assert fallback.alternatives == (ModelChoice(provider="claude", model="claude-3-haiku"),)
        assert fallback.route_id == initial.route_id
        assert router.get_health("grok").failure_count >= 1
        fallback_listener.assert_called_once_with(
            from_provider="grok", to_provider="openai", reason="timeout"
        )

    def test_fallback_walks_alternatives(self, router):
        initial = router.route("list all files")
        second = router.get_fallback_route(initial, "timeout")
        third = router.get_fallback_route(second, "rate_limit")

        assert third.provider == "claude"
        assert router.get_fallback_route(third, "timeout") is None
        assert router.get_stats().fallback_routes == 2

    def test_fallback_skips_unhealthy_alternative(self, router):
        initial = router.route("list all files")
        router.mark_unhealthy("openai", "outage")

        assert router.get_fallback_route(initial, "timeout").provider == "claude"

    def test_fallback_exhausted(self, router):
        exhausted = Mock()
        router.on(RouterEvent.CHAIN_EXHAUSTED, exhausted)
        initial = router.route("list all files")
        router.mark_unhealthy("openai", "outage")
        router.mark_unhealthy("claude", "outage")

        assert router.get_fallback_route(initial, "timeout") is None
        exhausted.assert_called_once_with(attempted_providers=["grok", "openai", "claude"])

    def test_fallback_estimates_cost(self, router):
        initial = router.route("list all files", estimated_tokens=1_000_000)

        fallback = router.get_fallback_route(initial, "timeout")

        # gpt-4o-mini: 0.15 input + 0.5 * 0.60 output
        assert fallback.estimated_cost == pytest.approx(0.45)

    def test_unhealthy_primary_routes_to_backup(self, router):
        router.mark_unhealthy("grok", "outage")

        decision = router.route("list all files")

        assert decision.provider == "openai"
        assert decision.is_fallback is True

    def test_primary_failures_promote_backup(self, router):
        promoted = Mock()
        router.on(RouterEvent.PROVIDER_PROMOTED, promoted)
        decision = router.route("list all files")

        for _ in range(3):
            router.record_failure(decision, "HTTP 503")

        assert router.get_fallback_chain()[0] == "openai"
        promoted.assert_called_once_with(provider="openai", previous_primary="grok")

    def test_exhausted_route_returns_none(self, router):
        _mark_all_unhealthy(router)

        assert router.route("list all files") is None
        assert router.get_stats().exhausted_routes == 1

    def test_require_route_raises_when_exhausted(self, router):
        _mark_all_unhealthy(router)

        with pytest.raises(ChainExhaustedError) as exc_info:
            router.require_route("list all files")

        assert exc_info.value.attempted_providers == ["grok", "openai", "claude"]

    def test_recovery_after_cooldown(self, router, clock):
        _mark_all_unhealthy(router)
        clock.advance(60_000)

        decision = router.route("list all files")
        router.record_success(decision, 200)

        assert decision.provider == "grok"
        assert router.is_provider_healthy("grok") is True


# ------------------------------------------------------------------ #
# Statistics
# ------------------------------------------------------------------ #


class TestStats:
    """get_stats / format_stats / history."""

    def test_stats_counts(self, router):
        router.route("list all files")
        router.route("think about the best architecture")
        router.add_cost(2.5)

        stats = router.get_stats()

        assert stats.total_routes == 2
        assert stats.routes_by_provider == {"grok": 2}
        assert stats.routes_by_tier == {"mini": 1, "reasoning": 1}
        assert stats.fallback_routes == 0
        assert stats.current_cost == pytest.approx(2.5)
        assert stats.session_budget == 10.0
        assert stats.budget_used_pct == 25.0

    def test_format_stats(self, router):
        router.route("list all files")

        text = router.format_stats()

        assert "Smart Router Statistics" in text
        assert "Total Routes" in text
        assert "Session Cost" in text
        assert "grok" in text

    def test_history_is_bounded(self, clock, router_config, monkeypatch):
        monkeypatch.setattr(router_module, "HISTORY_LIMIT", 5)
        router = SmartRouter(router_config, clock=clock)

        for _ in range(8):
            router.route("list all files")

        assert len(router.get_route_history()) == 5
        assert router.get_stats().total_routes == 8

    def test_all_health_in_chain_order(self, router):
        health = router.get_all_health()

        assert [h.provider for h in health] == ["grok", "openai", "claude"]


# ------------------------------------------------------------------ #
# Configuration and lifecycle
# ------------------------------------------------------------------ #


class TestConfiguration:
    """configure_chain / update_config / reset / dispose."""

    def test_configure_chain_providers(self, router):
        router.configure_chain(providers=["claude", "grok"])

        assert router.get_fallback_chain() == ["claude", "grok"]
        assert router.route("list all files").provider == "claude"

    def test_configure_chain_after_manual_promotion(self, router):
        router.promote_provider("claude")

        router.configure_chain(providers=["grok", "openai", "claude"])

        assert router.get_fallback_chain() == ["grok", "openai", "claude"]
        assert router.route("list all files").provider == "grok"

    def test_configure_chain_after_auto_promotion(self, router):
        decision = router.route("list all files")
        for _ in range(3):
            router.record_failure(decision, "timeout")
        assert router.get_fallback_chain() == ["openai", "grok", "claude"]

        router.configure_chain(providers=["grok", "openai", "claude"])

        assert router.get_fallback_chain() == ["grok", "openai", "claude"]
        assert router.chain.get_current_provider() == "grok"

    def test_get_config_tracks_promotions(self, router):
        router.promote_provider("openai")

        assert router.get_config().providers == ["openai", "grok", "claude"]
        assert router.get_config().providers == router.get_fallback_chain()

    def test_configure_chain_models(self, router):
        router.configure_chain(models={"grok": ["grok-3-mini"]})

        config = router.get_config()
        assert config.models["grok"] == ["grok-3-mini"]
        assert "openai" in config.models

    def test_update_session_budget(self, router):
        router.update_config(session_budget=20.0)

        assert router.get_stats().session_budget == 20.0

    def test_update_partial_health(self, router):
        router.update_config(health={"max_failures": 1})
        decision = router.route("list all files")

        router.record_failure(decision, "timeout")

        assert router.is_provider_healthy("grok") is False
        assert router.get_config().health.cooldown_ms == 60_000

    def test_get_config_returns_copy(self, router):
        config = router.get_config()
        config.providers.append("mistral")

        assert router.get_config().providers == ["grok", "openai", "claude"]

    def test_constructor_overrides(self, clock):
        router = SmartRouter(clock=clock, session_budget=3.0, providers=["openai", "grok"])

        assert router.get_fallback_chain() == ["openai", "grok"]
        assert router.get_stats().session_budget == 3.0

    def test_from_settings(self, clock):
        settings = Settings(router=RouterConfig(session_budget=5.0))

        router = SmartRouter.from_settings(settings, clock=clock)

        assert router.get_stats().session_budget == 5.0

    def test_reset_clears_cost_and_history(self, router):
        router.route("list all files")
        router.add_cost(3.0)

        router.reset()

        assert router.get_current_cost() == 0
        assert router.get_route_history() == []
        assert router.get_stats().total_routes == 0
        assert router.get_fallback_chain() == ["grok", "openai", "claude"]

    def test_dispose_removes_listeners(self, router):
        router.on(RouterEvent.ROUTE_SELECTED, Mock())
        router.on(RouterEvent.BUDGET_WARNING, Mock())

        router.dispose()

        assert router.listener_count(RouterEvent.ROUTE_SELECTED) == 0
        assert router.listener_count(RouterEvent.BUDGET_WARNING) == 0

    def test_off(self, router):
        listener = Mock()
        router.on(RouterEvent.ROUTE_SELECTED, listener)
        router.off(RouterEvent.ROUTE_SELECTED, listener)

        router.route("list all files")

        listener.assert_not_called()


# ------------------------------------------------------------------ #
# Concurrency
# ------------------------------------------------------------------ #


class TestConcurrency:
    """Concurrent route/report cycles keep totals consistent."""

    def test_concurrent_routing(self, router):
        def cycle(i: int) -> str:
            decision = router.route("list all files" if i % 2 else "write a function")
            router.record_success(decision, 100, cost=0.125)
            return decision.provider

        with ThreadPoolExecutor(max_workers=8) as pool:
            providers = list(pool.map(cycle, range(40)))

        stats = router.get_stats()
        assert stats.total_routes == 40
        assert sum(stats.routes_by_provider.values()) == 40
        assert set(providers) == {"grok"}
        assert router.get_current_cost() == 5.0
        assert router.get_health("grok").success_count == 40
