"""Provider routing for outbound LLM requests.

This package decides, for every request, which provider and which model
should serve it. It combines:
- Task classification into capability tiers (MINI/STANDARD/REASONING/VISION)
- Per-provider health tracking with a circuit breaker
- An ordered fallback chain with automatic promotion
- Session budget tracking with tier downgrades under pressure

All state is in-memory and scoped to one SmartRouter instance.
"""

from __future__ import annotations

from provider_router.routing.budget import BudgetGovernor
from provider_router.routing.classifier import (
    ClassificationHints,
    ClassificationResult,
    TaskClassifier,
    TaskComplexity,
    classify_task,
)
from provider_router.routing.errors import (
    ChainExhaustedError,
    ConfigError,
    ModelNotConfiguredError,
    NotInChainError,
    RoutingError,
)
from provider_router.routing.events import EventEmitter, RouterEvent
from provider_router.routing.fallback import FallbackChain
from provider_router.routing.health import (
    HealthTransition,
    ProviderHealth,
    ProviderHealthTracker,
)
from provider_router.routing.pricing import calculate_cost
from provider_router.routing.resolver import ModelChoice, TierModelResolver
from provider_router.routing.router import (
    RouteDecision,
    RouteRequest,
    RouterStats,
    SmartRouter,
)
from provider_router.routing.selection import ModelSelection, ModelSelector, select_model
from provider_router.routing.tiers import ModelTier

__all__ = [
    "BudgetGovernor",
    "ChainExhaustedError",
    "ClassificationHints",
    "ClassificationResult",
    "ConfigError",
    "EventEmitter",
    "FallbackChain",
    "HealthTransition",
    "ModelChoice",
    "ModelNotConfiguredError",
    "ModelSelection",
    "ModelSelector",
    "ModelTier",
    "NotInChainError",
    "ProviderHealth",
    "ProviderHealthTracker",
    "RouteDecision",
    "RouteRequest",
    "RouterEvent",
    "RouterStats",
    "RoutingError",
    "SmartRouter",
    "TaskClassifier",
    "TaskComplexity",
    "TierModelResolver",
    "calculate_cost",
    "classify_task",
    "select_model",
]
