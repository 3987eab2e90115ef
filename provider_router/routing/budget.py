"""Session spend tracking and budget-pressure downgrades.

The BudgetGovernor keeps a running session cost (not a billing ledger)
and raises two edge-triggered alerts:
- ``budget:warning`` on the call that pushes spend to >= 80% of budget
- ``budget:exceeded`` on the call that pushes spend to >= 100%

Each alert fires once per crossing, not on every later call while spend
stays above the threshold. Budget overage is advisory: the governor
steps tiers down under pressure but never blocks a route.
"""

from __future__ import annotations

import threading

import structlog

from provider_router.routing.events import EventEmitter, RouterEvent
from provider_router.routing.tiers import ModelTier, step_down

log = structlog.get_logger(__name__)


class BudgetGovernor:
    """Tracks cumulative session cost against a budget."""

    # Alert thresholds (fraction of session budget)
    WARNING_THRESHOLD = 0.80
    EXCEEDED_THRESHOLD = 1.00

    def __init__(
        self,
        session_budget: float = 10.0,
        *,
        auto_downgrade: bool = True,
        warning_threshold: float = WARNING_THRESHOLD,
        events: EventEmitter | None = None,
    ) -> None:
        """Initialize budget governor.

        Args:
            session_budget: Session spend ceiling in USD
            auto_downgrade: Step tiers down once the warning threshold is reached
            warning_threshold: Fraction of budget that triggers the warning
            events: Shared event emitter
        """
        if session_budget <= 0:
            raise ValueError("session_budget must be positive")

        self.session_budget = session_budget
        self.auto_downgrade = auto_downgrade
        self.warning_threshold = warning_threshold
        self.events = events or EventEmitter()
        self._current_cost = 0.0
        self._lock = threading.Lock()

        log.info(
            "budget_governor.initialized",
            session_budget=session_budget,
            auto_downgrade=auto_downgrade,
        )

    def add_cost(self, delta: float) -> float:
        """Add spend and fire threshold alerts on the crossing call.

        Args:
            delta: Cost of the completed request in USD

        Returns:
            Session cost after the update
        """
        if delta < 0:
            raise ValueError("cost delta cannot be negative")

        with self._lock:
            before = self._current_cost
            after = before + delta
            self._current_cost = after
            budget = self.session_budget
            warning_at = budget * self.warning_threshold
            crossed_warning = before < warning_at <= after
            crossed_limit = before < budget * self.EXCEEDED_THRESHOLD <= after

        log.debug("budget_governor.cost_added", delta=delta, current_cost=after)

        if crossed_warning:
            log.warning(
                "budget_governor.warning",
                current_cost=after,
                session_budget=budget,
                usage_pct=round(after / budget * 100, 1),
            )
            self.events.emit(RouterEvent.BUDGET_WARNING, current_cost=after, session_budget=budget)
        if crossed_limit:
            log.error(
                "budget_governor.exceeded",
                current_cost=after,
                session_budget=budget,
                usage_pct=round(after / budget * 100, 1),
            )
            self.events.emit(RouterEvent.BUDGET_EXCEEDED, current_cost=after, session_budget=budget)
        return after

    def get_current_cost(self) -> float:
        with self._lock:
            return self._current_cost

    def reset_cost(self) -> None:
        with self._lock:
            previous = self._current_cost
            self._current_cost = 0.0
        log.info("budget_governor.reset", previous_cost=previous)

    def usage_ratio(self) -> float:
        with self._lock:
            return self._current_cost / self.session_budget

    def is_under_pressure(self) -> bool:
        """True once spend has reached the warning threshold."""
        return self.usage_ratio() >= self.warning_threshold

    def apply_downgrade(self, tier: ModelTier) -> ModelTier:
        """Step ``tier`` down one level if the budget is under pressure.

        REASONING -> STANDARD -> MINI. VISION is exempt. Emits
        ``tier:downgraded`` when the tier actually changes.
        """
        if not self.auto_downgrade or not self.is_under_pressure():
            return tier

        new_tier = step_down(tier)
        if new_tier == tier:
            return tier

        log.info(
            "budget_governor.tier_downgraded",
            original_tier=tier.value,
            new_tier=new_tier.value,
            usage_pct=round(self.usage_ratio() * 100, 1),
        )
        self.events.emit(
            RouterEvent.TIER_DOWNGRADED,
            original_tier=tier,
            new_tier=new_tier,
        )
        return new_tier

    def configure(
        self,
        *,
        session_budget: float | None = None,
        auto_downgrade: bool | None = None,
        warning_threshold: float | None = None,
    ) -> None:
        with self._lock:
            if session_budget is not None:
                if session_budget <= 0:
                    raise ValueError("session_budget must be positive")
                self.session_budget = session_budget
            if auto_downgrade is not None:
                self.auto_downgrade = auto_downgrade
            if warning_threshold is not None:
                self.warning_threshold = warning_threshold
