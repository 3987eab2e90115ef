"""
Shared test fixtures for pytest.

Provides common clocks and routing components for all test modules:
- clock: Manually advanced millisecond clock (no sleeping in tests)
- health_config: Circuit-breaker thresholds matching the defaults
- events: Fresh event emitter
- tracker, chain: Health tracker and fallback chain wired to ``clock``
- router: SmartRouter over the grok/openai/claude roster
"""

from __future__ import annotations

import pytest

from provider_router.config import HealthConfig, RouterConfig, get_settings
from provider_router.routing.events import EventEmitter
from provider_router.routing.fallback import FallbackChain
from provider_router.routing.health import ProviderHealthTracker
from provider_router.routing.router import SmartRouter
from provider_router.telemetry import clear_context


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> float:
        self.now += ms
        return self.now


# ------------------------------------------------------------------ #
# Global isolation
# ------------------------------------------------------------------ #


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    """Clear the lru_cache on get_settings so env overrides take effect."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Drop structlog contextvars bound by a previous test."""
    clear_context()
    yield
    clear_context()


# ------------------------------------------------------------------ #
# Routing components
# ------------------------------------------------------------------ #


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def health_config() -> HealthConfig:
    return HealthConfig(
        max_failures=3,
        cooldown_ms=60_000,
        failure_window_ms=300_000,
        slow_threshold_ms=5_000,
        max_slow_responses=5,
        auto_promote=True,
    )


@pytest.fixture
def events() -> EventEmitter:
    return EventEmitter()


@pytest.fixture
def tracker(health_config, events, clock) -> ProviderHealthTracker:
    return ProviderHealthTracker(health_config, events=events, clock=clock)


@pytest.fixture
def chain(tracker) -> FallbackChain:
    return FallbackChain(["grok", "openai", "claude"], tracker=tracker, events=tracker.events)


@pytest.fixture
def router_config() -> RouterConfig:
    """Three providers with flat catalogs and a $10 session budget."""
    return RouterConfig(
        providers=["grok", "openai", "claude"],
        models={
            "grok": ["grok-3-mini", "grok-3", "grok-3-reasoning"],
            "openai": ["gpt-4o-mini", "gpt-4o"],
            "claude": ["claude-3-haiku", "claude-3-sonnet"],
        },
        session_budget=10.0,
        auto_downgrade=True,
    )


@pytest.fixture
def router(router_config, clock):
    smart_router = SmartRouter(router_config, clock=clock)
    yield smart_router
    smart_router.dispose()
