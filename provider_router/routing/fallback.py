"""Ordered provider fallback chain with automatic promotion.

The FallbackChain holds the ordered provider roster (index 0 is the
primary) and a cursor pointing at the currently active provider. It
provides resilience against:
- Provider outages (circuit open after repeated failures)
- Rate limiting (429 storms count as failures)
- Chronic latency (slow-response streaks)

Selection strategy:
1. Scan forward from the cursor (or cursor + 1 when skipping),
   wrapping once
2. Stop at the first provider that is either healthy or a recovery
   candidate (unhealthy, cooldown elapsed). An earlier recovery
   candidate wins over a later healthy provider.
3. Moving the cursor to a different provider emits
   ``provider:fallback``
4. If every provider is unhealthy and cooling down, emit
   ``chain:exhausted`` and return None

Promotion only ever reorders the roster; members are never dropped.
"""

from __future__ import annotations

import threading

import structlog

from provider_router.config import HealthConfig
from provider_router.routing.errors import ConfigError, NotInChainError
from provider_router.routing.events import EventEmitter, RouterEvent
from provider_router.routing.health import (
    Clock,
    HealthTransition,
    ProviderHealth,
    ProviderHealthTracker,
)

log = structlog.get_logger(__name__)


class FallbackChain:
    """Selects the next usable provider from an ordered roster.

    Reads of the order never observe a partially reordered list: the
    roster and cursor are guarded by a single lock and every reorder
    builds a new list before swapping it in.
    """

    def __init__(
        self,
        providers: list[str] | None = None,
        *,
        config: HealthConfig | None = None,
        tracker: ProviderHealthTracker | None = None,
        events: EventEmitter | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize fallback chain.

        Args:
            providers: Ordered providers (primary first). May be set later.
            config: Circuit-breaker thresholds, used when no tracker is given
            tracker: Shared health tracker
            events: Shared event emitter
            clock: Millisecond clock, used when no tracker is given
        """
        self.events = events or (tracker.events if tracker else EventEmitter())
        self.tracker = tracker or ProviderHealthTracker(
            config, events=self.events, clock=clock
        )
        self._providers: list[str] = []
        self._current_index = 0
        self._lock = threading.RLock()

        if providers is not None:
            self.set_chain(providers)

    @property
    def config(self) -> HealthConfig:
        return self.tracker.config

    # ---------------------------------------------------------------- #
    # Chain management
    # ---------------------------------------------------------------- #

    def set_chain(self, providers: list[str]) -> None:
        """Replace the roster. The first provider becomes the primary.

        Raises:
            ConfigError: If ``providers`` is empty or has duplicates
        """
        if not providers:
            raise ConfigError("Fallback chain must have at least one provider")
        if len(set(providers)) != len(providers):
            raise ConfigError(f"Fallback chain has duplicate providers: {providers}")

        with self._lock:
            self._providers = list(providers)
            self._current_index = 0
        for provider in providers:
            self.tracker.ensure(provider)

        log.info("fallback_chain.configured", providers=list(providers))

    def get_fallback_chain(self) -> list[str]:
        with self._lock:
            return list(self._providers)

    def get_primary_provider(self) -> str | None:
        with self._lock:
            return self._providers[0] if self._providers else None

    def get_current_provider(self) -> str | None:
        """Provider under the cursor. It may be unhealthy."""
        with self._lock:
            if not self._providers:
                return None
            return self._providers[self._current_index]

    def __contains__(self, provider: object) -> bool:
        with self._lock:
            return provider in self._providers

    def __len__(self) -> int:
        with self._lock:
            return len(self._providers)

    # ---------------------------------------------------------------- #
    # Provider selection
    # ---------------------------------------------------------------- #

    def get_next_provider(self, skip_current: bool = False) -> str | None:
        """Return the next usable provider, wrapping around the roster once.

        Repeated calls with no intervening health change return the same
        provider.

        Args:
            skip_current: Start scanning after the cursor instead of at it

        Returns:
            Provider id, or None if the chain is exhausted
        """
        fallback: tuple[str, str, str] | None = None

        with self._lock:
            providers = self._providers
            if not providers:
                return None

            count = len(providers)
            start = self._current_index + 1 if skip_current else self._current_index
            attempted: list[str] = []
            selected: str | None = None

            for offset in range(count):
                index = (start + offset) % count
                provider = providers[index]
                attempted.append(provider)

                if self.tracker.is_healthy(provider):
                    if index != self._current_index:
                        reason = "explicit_skip" if skip_current else "health_check"
                        fallback = (providers[self._current_index], provider, reason)
                        self._current_index = index
                    selected = provider
                    break

                if self.tracker.can_attempt_recovery(provider):
                    if index != self._current_index:
                        fallback = (
                            providers[self._current_index],
                            provider,
                            "recovery_attempt",
                        )
                        self._current_index = index
                    selected = provider
                    log.info("fallback_chain.recovery_attempt", provider=provider)
                    break

        if selected is None:
            log.error("fallback_chain.exhausted", attempted_providers=attempted)
            self.events.emit(RouterEvent.CHAIN_EXHAUSTED, attempted_providers=attempted)
            return None

        if fallback is not None:
            from_provider, to_provider, reason = fallback
            log.warning(
                "fallback_chain.fallback",
                from_provider=from_provider,
                to_provider=to_provider,
                reason=reason,
            )
            self.events.emit(
                RouterEvent.PROVIDER_FALLBACK,
                from_provider=from_provider,
                to_provider=to_provider,
                reason=reason,
            )
        return selected

    # ---------------------------------------------------------------- #
    # Outcome reporting
    # ---------------------------------------------------------------- #

    def record_success(self, provider: str, response_time_ms: float) -> HealthTransition:
        transition = self.tracker.record_success(provider, response_time_ms)
        if transition.opened:
            self._maybe_auto_promote(provider)
        return transition

    def record_failure(self, provider: str, error: str) -> HealthTransition:
        """Record a failure; promote a backup if the primary just went down."""
        transition = self.tracker.record_failure(provider, error)
        if transition.opened:
            self._maybe_auto_promote(provider)
        return transition

    def is_provider_healthy(self, provider: str) -> bool:
        return self.tracker.is_healthy(provider)

    def get_health_status(self, provider: str) -> ProviderHealth:
        return self.tracker.get_health(provider)

    def get_all_health(self) -> list[ProviderHealth]:
        """Health snapshots for every chain member, in chain order."""
        return [self.tracker.get_health(p) for p in self.get_fallback_chain()]

    def mark_unhealthy(self, provider: str, reason: str) -> None:
        self.tracker.mark_unhealthy(provider, reason)

    def reset_provider(self, provider: str) -> None:
        self.tracker.reset_provider(provider)

    # ---------------------------------------------------------------- #
    # Promotion
    # ---------------------------------------------------------------- #

    def promote_provider(self, provider: str) -> None:
        """Move ``provider`` to the primary position.

        No-op if it is already primary.

        Raises:
            NotInChainError: If the provider is not in the chain
        """
        with self._lock:
            if provider not in self._providers:
                raise NotInChainError(provider)
            if self._providers[0] == provider:
                return
            previous_primary = self._providers[0]
            self._providers = [provider] + [p for p in self._providers if p != provider]
            self._current_index = 0

        log.info(
            "fallback_chain.promoted",
            provider=provider,
            previous_primary=previous_primary,
        )
        self.events.emit(
            RouterEvent.PROVIDER_PROMOTED,
            provider=provider,
            previous_primary=previous_primary,
        )

    def _maybe_auto_promote(self, provider: str) -> None:
        if not self.config.auto_promote:
            return
        with self._lock:
            if not self._providers or self._providers[0] != provider:
                return
            candidate = next(
                (p for p in self._providers[1:] if self.tracker.is_healthy(p)),
                None,
            )
        if candidate is None:
            log.warning("fallback_chain.no_promotion_candidate", failed_primary=provider)
            return
        self.promote_provider(candidate)

    # ---------------------------------------------------------------- #
    # Lifecycle
    # ---------------------------------------------------------------- #

    def update_config(self, config: HealthConfig) -> None:
        self.tracker.update_config(config)

    def get_config(self) -> HealthConfig:
        return self.tracker.config

    def reset(self) -> None:
        """Clear all health history but keep the roster order."""
        with self._lock:
            self._current_index = 0
            providers = list(self._providers)
        self.tracker.reset(providers)
        log.debug("fallback_chain.reset", providers=providers)

    def dispose(self) -> None:
        """Clear roster, health history, and listeners."""
        with self._lock:
            self._providers = []
            self._current_index = 0
        self.tracker.reset()
        self.events.remove_all_listeners()
        log.debug("fallback_chain.disposed")
