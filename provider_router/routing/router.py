"""Smart router - per-request provider/model selection and fallback.

The SmartRouter composes the routing components for every request:

    CLASSIFYING -> RESOLVING -> BUDGET_CHECK -> CHAIN_SELECT -> DONE

- TaskClassifier profiles the task (skipped when a model or tier is forced)
- TierModelResolver picks the tier and model
- BudgetGovernor steps the tier down under budget pressure
- FallbackChain supplies the healthy provider

No state survives between ``route()`` calls except the shared health,
budget, and chain state. ``route()`` never blocks or performs I/O; after
the network call the caller reports the outcome with ``record_success``
or ``record_failure`` and, on failure, asks ``get_fallback_route`` for
the next attempt. The router never retries by itself.

The router is an explicitly constructed dependency. Build one per
process (or per test) and pass it down; ``dispose()`` ends its lifecycle.
"""

from __future__ import annotations

import threading
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Any

import structlog

from provider_router.config import RouterConfig, Settings
from provider_router.routing.budget import BudgetGovernor
from provider_router.routing.classifier import (
    ClassificationHints,
    ClassificationResult,
    TaskClassifier,
)
from provider_router.routing.errors import ChainExhaustedError
from provider_router.routing.events import EventEmitter, Listener, RouterEvent
from provider_router.routing.fallback import FallbackChain
from provider_router.routing.health import Clock, ProviderHealth, ProviderHealthTracker
from provider_router.routing.pricing import merge_pricing
from provider_router.routing.resolver import (
    ModelChoice,
    ResolveOverrides,
    TierModelResolver,
)
from provider_router.routing.tiers import ModelTier, infer_tier
from provider_router.telemetry.logging import new_route_id, route_context

log = structlog.get_logger(__name__)

HISTORY_LIMIT = 1000


@dataclass(frozen=True)
class RouteRequest:
    """A single routing request.

    Attributes:
        task: Task description or user message
        force_model: Exact model to use, bypassing classification
        force_tier: Tier to use, bypassing classification
        preferred_provider: Provider to use if healthy
        requires_vision: Caller knows the request carries images
        requires_long_context: Caller knows the input is very large
        estimated_tokens: Enables cost estimation when set
    """

    task: str
    force_model: str | None = None
    force_tier: str | None = None
    preferred_provider: str | None = None
    requires_vision: bool = False
    requires_long_context: bool = False
    estimated_tokens: int | None = None


@dataclass(frozen=True)
class RouteDecision:
    """Provider/model choice for one attempt.

    Immutable once returned. The caller attaches it to the network call
    and hands it back to ``record_success``/``record_failure``.
    """

    provider: str
    model: str
    tier: ModelTier
    reason: str
    is_fallback: bool = False
    alternatives: tuple[ModelChoice, ...] = field(default_factory=tuple)
    estimated_cost: float | None = None
    estimated_tokens: int | None = None
    classification: ClassificationResult | None = None
    provider_health: ProviderHealth | None = None
    route_id: str = ""


@dataclass
class RouterStats:
    """Aggregate routing statistics for the session."""

    total_routes: int = 0
    routes_by_provider: dict[str, int] = field(default_factory=dict)
    routes_by_tier: dict[str, int] = field(default_factory=dict)
    fallback_routes: int = 0
    downgrades: int = 0
    exhausted_routes: int = 0
    current_cost: float = 0.0
    session_budget: float = 0.0
    budget_used_pct: float = 0.0


class SmartRouter:
    """Routes every outbound LLM request to a healthy provider and model."""

    def __init__(
        self,
        config: RouterConfig | None = None,
        *,
        events: EventEmitter | None = None,
        clock: Clock | None = None,
        classifier: TaskClassifier | None = None,
        **overrides: Any,
    ) -> None:
        """Initialize the router.

        Args:
            config: Full configuration (defaults if None)
            events: Event emitter shared by every component
            clock: Millisecond clock for health tracking (tests inject one)
            classifier: Task classifier (keyword defaults if None)
            **overrides: Partial config overrides merged over ``config``
        """
        base = config or RouterConfig()
        self._config = base.merged(**overrides) if overrides else base

        self.events = events or EventEmitter()
        self.tracker = ProviderHealthTracker(
            self._config.health, events=self.events, clock=clock
        )
        self.chain = FallbackChain(
            self._config.providers, tracker=self.tracker, events=self.events
        )
        self.classifier = classifier or TaskClassifier()
        self.resolver = TierModelResolver(
            self.chain,
            self._config.models,
            pricing=merge_pricing(self._config.pricing),
            min_confidence=self._config.min_confidence,
            default_tier=self._config.default_tier,
        )
        self.governor = BudgetGovernor(
            self._config.session_budget,
            auto_downgrade=self._config.auto_downgrade,
            warning_threshold=self._config.budget_warning_ratio,
            events=self.events,
        )

        self._stats_lock = threading.Lock()
        self._history: deque[RouteDecision] = deque(maxlen=HISTORY_LIMIT)
        self._stats = RouterStats()
        self._by_provider: Counter[str] = Counter()
        self._by_tier: Counter[str] = Counter()

        log.info(
            "smart_router.initialized",
            providers=self._config.providers,
            session_budget=self._config.session_budget,
            auto_downgrade=self._config.auto_downgrade,
        )

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> SmartRouter:
        """Build a router from environment-loaded settings."""
        return cls(settings.router, **kwargs)

    # ---------------------------------------------------------------- #
    # Routing
    # ---------------------------------------------------------------- #

    def route(self, request: RouteRequest | str, **kwargs: Any) -> RouteDecision | None:
        """Select provider, model, and tier for one request.

        Args:
            request: RouteRequest, or a task string with RouteRequest kwargs

        Returns:
            RouteDecision, or None when no provider is available right now

        Raises:
            ModelNotConfiguredError: If ``force_model`` is in no catalog
            ConfigError: If a forced tier is unknown or unconfigured
        """
        if isinstance(request, str):
            request = RouteRequest(task=request, **kwargs)

        with route_context(new_route_id()) as route_id:
            forced = request.force_model is not None or request.force_tier is not None
            classification = None
            if not forced:
                classification = self.classifier.classify(
                    request.task,
                    ClassificationHints(
                        requires_vision=request.requires_vision,
                        requires_long_context=request.requires_long_context,
                    ),
                )

            resolution = self.resolver.resolve(
                classification,
                ResolveOverrides(
                    force_model=request.force_model,
                    force_tier=request.force_tier,
                    preferred_provider=request.preferred_provider,
                    estimated_tokens=request.estimated_tokens,
                ),
                adjust_tier=self.governor.apply_downgrade,
            )

            if resolution is None:
                with self._stats_lock:
                    self._stats.exhausted_routes += 1
                log.error("smart_router.no_provider_available", task_chars=len(request.task))
                return None

            decision = RouteDecision(
                provider=resolution.provider,
                model=resolution.model,
                tier=resolution.tier,
                reason=resolution.reason,
                is_fallback=resolution.is_fallback,
                alternatives=resolution.alternatives,
                estimated_cost=resolution.estimated_cost,
                estimated_tokens=request.estimated_tokens,
                classification=classification,
                provider_health=self.tracker.get_health(resolution.provider),
                route_id=route_id,
            )
            self._record_route(decision)

            log.info(
                "smart_router.route_selected",
                provider=decision.provider,
                model=decision.model,
                tier=decision.tier.value,
                reason=decision.reason,
                is_fallback=decision.is_fallback,
                alternatives=len(decision.alternatives),
            )
            self.events.emit(RouterEvent.ROUTE_SELECTED, decision=decision)
            return decision

    def require_route(self, request: RouteRequest | str, **kwargs: Any) -> RouteDecision:
        """Like ``route`` but raises ChainExhaustedError instead of returning None."""
        decision = self.route(request, **kwargs)
        if decision is None:
            raise ChainExhaustedError(self.chain.get_fallback_chain())
        return decision

    def get_fallback_route(
        self,
        failed: RouteDecision,
        error_kind: str,
    ) -> RouteDecision | None:
        """Record the failed attempt and pick the next healthy alternative.

        Args:
            failed: Decision whose attempt failed
            error_kind: What went wrong (timeout, rate_limit, ...)

        Returns:
            Fallback RouteDecision with ``is_fallback=True``, or None when no
            alternative provider is healthy (terminal for this request)
        """
        self.record_failure(failed, error_kind)

        for index, alternative in enumerate(failed.alternatives):
            if not self.tracker.is_healthy(alternative.provider):
                continue

            catalog = self.resolver.get_catalog(alternative.provider)
            tier = next(
                (t for t, models in catalog.items() if alternative.model in models),
                infer_tier(alternative.model),
            )
            estimated_cost = None
            if failed.estimated_tokens is not None:
                estimated_cost = self.resolver.estimate_cost(
                    alternative.model, failed.estimated_tokens
                )

            decision = RouteDecision(
                provider=alternative.provider,
                model=alternative.model,
                tier=tier,
                reason=f"fallback:{error_kind}",
                is_fallback=True,
                alternatives=failed.alternatives[index + 1:],
                estimated_cost=estimated_cost,
                estimated_tokens=failed.estimated_tokens,
                classification=failed.classification,
                provider_health=self.tracker.get_health(alternative.provider),
                route_id=failed.route_id,
            )
            with self._stats_lock:
                self._stats.fallback_routes += 1

            log.warning(
                "smart_router.fallback_route",
                from_provider=failed.provider,
                to_provider=decision.provider,
                model=decision.model,
                error_kind=error_kind,
                route_id=failed.route_id,
            )
            self.events.emit(
                RouterEvent.PROVIDER_FALLBACK,
                from_provider=failed.provider,
                to_provider=decision.provider,
                reason=error_kind,
            )
            return decision

        attempted = [failed.provider] + [a.provider for a in failed.alternatives]
        log.error(
            "smart_router.fallback_exhausted",
            attempted_providers=attempted,
            error_kind=error_kind,
            route_id=failed.route_id,
        )
        self.events.emit(RouterEvent.CHAIN_EXHAUSTED, attempted_providers=attempted)
        return None

    # ---------------------------------------------------------------- #
    # Outcome reporting
    # ---------------------------------------------------------------- #

    def record_success(
        self,
        decision: RouteDecision,
        latency_ms: float,
        cost: float = 0.0,
    ) -> None:
        self.chain.record_success(decision.provider, latency_ms)
        if cost:
            self.governor.add_cost(cost)

    def record_failure(self, decision: RouteDecision, error_kind: str) -> None:
        self.chain.record_failure(decision.provider, error_kind)

    # ---------------------------------------------------------------- #
    # Health administration
    # ---------------------------------------------------------------- #

    def is_provider_healthy(self, provider: str) -> bool:
        return self.tracker.is_healthy(provider)

    def mark_unhealthy(self, provider: str, reason: str) -> None:
        self.tracker.mark_unhealthy(provider, reason)

    def reset_provider(self, provider: str) -> None:
        self.tracker.reset_provider(provider)

    def promote_provider(self, provider: str) -> None:
        self.chain.promote_provider(provider)

    def get_health(self, provider: str) -> ProviderHealth:
        return self.tracker.get_health(provider)

    def get_all_health(self) -> list[ProviderHealth]:
        return self.chain.get_all_health()

    def get_fallback_chain(self) -> list[str]:
        return self.chain.get_fallback_chain()

    # ---------------------------------------------------------------- #
    # Budget
    # ---------------------------------------------------------------- #

    def add_cost(self, cost: float) -> float:
        return self.governor.add_cost(cost)

    def get_current_cost(self) -> float:
        return self.governor.get_current_cost()

    def reset_cost(self) -> None:
        self.governor.reset_cost()

    # ---------------------------------------------------------------- #
    # Configuration
    # ---------------------------------------------------------------- #

    def configure_chain(
        self,
        providers: list[str] | None = None,
        models: dict[str, Any] | None = None,
        **overrides: Any,
    ) -> None:
        """Reload the roster and/or catalogs.

        ``models`` is merged per provider: providers not mentioned keep
        their catalogs.
        """
        if models is not None:
            models = {**self._config.models, **models}
        self.update_config(providers=providers, models=models, **overrides)

    def update_config(self, **overrides: Any) -> None:
        """Merge partial overrides into the configuration and apply them.

        Raises:
            pydantic.ValidationError: If an override is invalid
            ConfigError: If the provider roster is empty
        """
        previous = self.get_config()
        config = previous.merged(**overrides)

        if overrides.get("providers") is not None:
            self.chain.set_chain(config.providers)
        if config.models != previous.models:
            self.resolver.set_models(config.models)
        if config.pricing != previous.pricing:
            self.resolver.set_pricing(merge_pricing(config.pricing))
        if config.health != previous.health:
            self.tracker.update_config(config.health)
        self.resolver.min_confidence = config.min_confidence
        self.resolver.default_tier = ModelTier(config.default_tier)
        self.governor.configure(
            session_budget=config.session_budget,
            auto_downgrade=config.auto_downgrade,
            warning_threshold=config.budget_warning_ratio,
        )
        self._config = config
        log.info(
            "smart_router.config_updated",
            changed=sorted(k for k, v in overrides.items() if v is not None),
        )

    def get_config(self) -> RouterConfig:
        """Current configuration. ``providers`` reflects the live chain order."""
        return self._config.model_copy(
            update={"providers": self.chain.get_fallback_chain()}, deep=True
        )

    # ---------------------------------------------------------------- #
    # Events
    # ---------------------------------------------------------------- #

    def on(self, event: str, listener: Listener) -> Listener:
        return self.events.on(event, listener)

    def off(self, event: str, listener: Listener) -> None:
        self.events.off(event, listener)

    def listener_count(self, event: str) -> int:
        return self.events.listener_count(event)

    # ---------------------------------------------------------------- #
    # Statistics
    # ---------------------------------------------------------------- #

    def get_stats(self) -> RouterStats:
        cost = self.governor.get_current_cost()
        budget = self.governor.session_budget
        with self._stats_lock:
            return RouterStats(
                total_routes=self._stats.total_routes,
                routes_by_provider=dict(self._by_provider),
                routes_by_tier=dict(self._by_tier),
                fallback_routes=self._stats.fallback_routes,
                downgrades=self._stats.downgrades,
                exhausted_routes=self._stats.exhausted_routes,
                current_cost=cost,
                session_budget=budget,
                budget_used_pct=round(cost / budget * 100, 1),
            )

    def get_route_history(self) -> list[RouteDecision]:
        with self._stats_lock:
            return list(self._history)

    def format_stats(self) -> str:
        """Human-readable statistics report."""
        stats = self.get_stats()
        lines = [
            "Smart Router Statistics",
            "=" * 23,
            f"Total Routes: {stats.total_routes}",
            f"Fallback Routes: {stats.fallback_routes}",
            f"Tier Downgrades: {stats.downgrades}",
            f"Exhausted Routes: {stats.exhausted_routes}",
            f"Session Cost: ${stats.current_cost:.4f} / ${stats.session_budget:.2f}"
            f" ({stats.budget_used_pct:.1f}%)",
        ]
        if stats.routes_by_provider:
            lines.append("Routes by Provider:")
            lines.extend(f"  {p}: {n}" for p, n in sorted(stats.routes_by_provider.items()))
        if stats.routes_by_tier:
            lines.append("Routes by Tier:")
            lines.extend(f"  {t}: {n}" for t, n in sorted(stats.routes_by_tier.items()))
        lines.append("Provider Health:")
        for health in self.get_all_health():
            status = "healthy" if health.healthy else "unhealthy"
            lines.append(
                f"  {health.provider}: {status}, {health.failure_count} failures in window,"
                f" avg {health.avg_response_time_ms:.0f}ms"
            )
        return "\n".join(lines)

    # ---------------------------------------------------------------- #
    # Lifecycle
    # ---------------------------------------------------------------- #

    def reset(self) -> None:
        """Clear cost, statistics, and health history. Keeps configuration."""
        self.governor.reset_cost()
        self.chain.reset()
        with self._stats_lock:
            self._history.clear()
            self._stats = RouterStats()
            self._by_provider.clear()
            self._by_tier.clear()
        log.info("smart_router.reset")

    def dispose(self) -> None:
        """Reset state and remove every listener."""
        self.reset()
        self.events.remove_all_listeners()
        log.debug("smart_router.disposed")

    def _record_route(self, decision: RouteDecision) -> None:
        with self._stats_lock:
            self._history.append(decision)
            self._stats.total_routes += 1
            self._by_provider[decision.provider] += 1
            self._by_tier[decision.tier.value] += 1
            if decision.reason == "budget_downgrade":
                self._stats.downgrades += 1
