"""Per-provider health tracking with a circuit breaker.

The ProviderHealthTracker owns one health record per provider and decides
whether a provider is healthy. A provider's circuit opens when either:
- ``max_failures`` failures land inside the sliding ``failure_window_ms``
- ``max_slow_responses`` consecutive responses are at or above
  ``slow_threshold_ms`` (chronic latency is itself a failure mode)

An open circuit is closed again by a successful call or by an
administrative reset. Once ``cooldown_ms`` has elapsed since the circuit
opened, the provider becomes a recovery candidate: the fallback chain may
hand it out again, and the first attempt is a full, unthrottled request
(there is no separate half-open probe state).

All time-based behavior is evaluated lazily by comparing timestamps with
the injected clock; nothing runs in the background.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field

import structlog

from provider_router.config import HealthConfig
from provider_router.routing.events import EventEmitter, RouterEvent

log = structlog.get_logger(__name__)

Clock = Callable[[], float]


def monotonic_ms() -> float:
    """Default clock: monotonic time in milliseconds."""
    return time.monotonic() * 1000.0


@dataclass
class _ProviderRecord:
    """Mutable health state for one provider. Guarded by ``lock``."""

    provider: str
    healthy: bool = True
    failure_timestamps: deque[float] = field(default_factory=deque)
    success_count: int = 0
    total_requests: int = 0
    sum_response_time_ms: float = 0.0
    consecutive_slow_responses: int = 0
    last_success: float | None = None
    last_failure: float | None = None
    circuit_opened_at: float | None = None
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    def prune(self, cutoff: float) -> None:
        # Timestamps are appended in clock order, so expired ones sit at the left.
        while self.failure_timestamps and self.failure_timestamps[0] <= cutoff:
            self.failure_timestamps.popleft()


@dataclass(frozen=True)
class ProviderHealth:
    """Point-in-time health snapshot for one provider.

    Attributes:
        provider: Provider identifier
        healthy: Whether the circuit is closed
        failure_count: Failures inside the current window
        success_count: Successful requests recorded
        total_requests: All requests recorded
        avg_response_time_ms: ``sum_response_time_ms / total_requests``
        last_success: Clock time of the last success
        last_failure: Clock time of the last failure
        circuit_opened_at: Clock time the circuit opened, if open
        failure_rate: Windowed failures over total requests (0-1)
        consecutive_slow_responses: Current slow-response streak
        cooldown_remaining_ms: Time until a recovery attempt is allowed
    """

    provider: str
    healthy: bool
    failure_count: int
    success_count: int
    total_requests: int
    avg_response_time_ms: float
    last_success: float | None
    last_failure: float | None
    circuit_opened_at: float | None
    failure_rate: float
    consecutive_slow_responses: int
    cooldown_remaining_ms: float = 0.0


@dataclass(frozen=True)
class HealthTransition:
    """What a single record_* call changed.

    Attributes:
        opened: The circuit opened as a result of this call
        recovered: The circuit closed as a result of this call
    """

    opened: bool = False
    recovered: bool = False


class ProviderHealthTracker:
    """Tracks health for every provider the router has seen.

    Records are created lazily on first reference and are never deleted,
    only reset. Each record has its own lock, so concurrent reports for
    the same provider cannot corrupt the failure window or counters.
    """

    def __init__(
        self,
        config: HealthConfig | None = None,
        *,
        events: EventEmitter | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the tracker.

        Args:
            config: Circuit-breaker thresholds (defaults if None)
            events: Shared event emitter; a private one is created if None
            clock: Millisecond clock, injectable for tests
        """
        self._config = config or HealthConfig()
        self.events = events or EventEmitter()
        self._clock = clock or monotonic_ms
        self._records: dict[str, _ProviderRecord] = {}
        self._records_lock = threading.Lock()

        log.debug(
            "health_tracker.initialized",
            max_failures=self._config.max_failures,
            cooldown_ms=self._config.cooldown_ms,
            failure_window_ms=self._config.failure_window_ms,
        )

    @property
    def config(self) -> HealthConfig:
        return self._config

    def update_config(self, config: HealthConfig) -> None:
        """Swap thresholds. Existing records keep their history."""
        self._config = config
        log.info("health_tracker.config_updated", **config.model_dump())

    def now(self) -> float:
        return self._clock()

    # ---------------------------------------------------------------- #
    # Outcome reporting
    # ---------------------------------------------------------------- #

    def record_success(self, provider: str, response_time_ms: float) -> HealthTransition:
        """Record a successful request and update the slow-response streak.

        Args:
            provider: Provider that served the request
            response_time_ms: Observed latency

        Returns:
            HealthTransition describing whether the circuit opened or closed
        """
        record = self._get_or_create(provider)
        cfg = self._config
        opened = recovered = False

        with record.lock:
            now = self._clock()
            record.prune(now - cfg.failure_window_ms)
            record.success_count += 1
            record.total_requests += 1
            record.sum_response_time_ms += response_time_ms
            record.last_success = now

            if response_time_ms < cfg.slow_threshold_ms:
                record.consecutive_slow_responses = 0
            else:
                record.consecutive_slow_responses += 1

            slow_streak = record.consecutive_slow_responses
            if slow_streak >= cfg.max_slow_responses:
                if record.healthy:
                    record.healthy = False
                    record.circuit_opened_at = now
                    opened = True
            elif not record.healthy:
                record.healthy = True
                record.failure_timestamps.clear()
                record.circuit_opened_at = None
                recovered = True
            failure_count = len(record.failure_timestamps)

        log.debug(
            "health_tracker.success_recorded",
            provider=provider,
            response_time_ms=response_time_ms,
            consecutive_slow=slow_streak,
        )
        if recovered:
            log.info("health_tracker.provider_recovered", provider=provider)
            self.events.emit(RouterEvent.PROVIDER_RECOVERED, provider=provider)
        if opened:
            reason = f"{slow_streak} consecutive responses slower than {cfg.slow_threshold_ms}ms"
            log.warning(
                "health_tracker.circuit_opened",
                provider=provider,
                reason=reason,
                consecutive_slow=slow_streak,
            )
            self.events.emit(
                RouterEvent.PROVIDER_UNHEALTHY,
                provider=provider,
                failure_count=failure_count,
                reason=reason,
            )
        self.events.emit(
            RouterEvent.PROVIDER_SUCCESS,
            provider=provider,
            response_time_ms=response_time_ms,
        )
        return HealthTransition(opened=opened, recovered=recovered)

    def record_failure(self, provider: str, error: str) -> HealthTransition:
        """Record a failed request against the sliding failure window.

        Failures older than ``failure_window_ms`` are discarded first, so a
        long-ago failure can never keep a circuit open. A failure that
        arrives while the circuit is already open restarts the cooldown.

        Args:
            provider: Provider that failed
            error: Error text or kind (timeout, 429, ...)

        Returns:
            HealthTransition with ``opened=True`` if this call opened the circuit
        """
        record = self._get_or_create(provider)
        cfg = self._config
        opened = False

        with record.lock:
            now = self._clock()
            record.prune(now - cfg.failure_window_ms)
            record.failure_timestamps.append(now)
            record.total_requests += 1
            record.last_failure = now
            record.consecutive_slow_responses = 0
            failure_count = len(record.failure_timestamps)

            if failure_count >= cfg.max_failures:
                if record.healthy:
                    record.healthy = False
                    opened = True
                record.circuit_opened_at = now

        log.debug(
            "health_tracker.failure_recorded",
            provider=provider,
            error=error,
            failure_count=failure_count,
        )
        self.events.emit(RouterEvent.PROVIDER_FAILURE, provider=provider, error=error)

        if opened:
            reason = f"Exceeded {cfg.max_failures} failures within window"
            log.warning(
                "health_tracker.circuit_opened",
                provider=provider,
                failure_count=failure_count,
                reason=reason,
            )
            self.events.emit(
                RouterEvent.PROVIDER_UNHEALTHY,
                provider=provider,
                failure_count=failure_count,
                reason=reason,
            )
        return HealthTransition(opened=opened)

    # ---------------------------------------------------------------- #
    # Health queries
    # ---------------------------------------------------------------- #

    def is_healthy(self, provider: str) -> bool:
        """Return True if the provider's circuit is closed.

        Unknown providers are healthy: they have no history against them.
        """
        record = self._records.get(provider)
        if record is None:
            return True
        with record.lock:
            return record.healthy

    def can_attempt_recovery(self, provider: str) -> bool:
        """Return True if an unhealthy provider's cooldown has elapsed."""
        record = self._records.get(provider)
        if record is None:
            return False
        with record.lock:
            if record.healthy or record.circuit_opened_at is None:
                return False
            return self._clock() - record.circuit_opened_at >= self._config.cooldown_ms

    def is_available(self, provider: str) -> bool:
        """Healthy, or unhealthy with its cooldown elapsed."""
        return self.is_healthy(provider) or self.can_attempt_recovery(provider)

    def get_health(self, provider: str) -> ProviderHealth:
        """Return a health snapshot, creating the record if needed."""
        record = self._get_or_create(provider)
        cfg = self._config

        with record.lock:
            now = self._clock()
            record.prune(now - cfg.failure_window_ms)
            failure_count = len(record.failure_timestamps)
            total = record.total_requests
            avg = record.sum_response_time_ms / total if total else 0.0
            failure_rate = failure_count / total if total else 0.0
            cooldown_remaining = 0.0
            if not record.healthy and record.circuit_opened_at is not None:
                cooldown_remaining = max(
                    0.0, cfg.cooldown_ms - (now - record.circuit_opened_at)
                )

            return ProviderHealth(
                provider=provider,
                healthy=record.healthy,
                failure_count=failure_count,
                success_count=record.success_count,
                total_requests=total,
                avg_response_time_ms=round(avg, 2),
                last_success=record.last_success,
                last_failure=record.last_failure,
                circuit_opened_at=record.circuit_opened_at,
                failure_rate=round(failure_rate, 2),
                consecutive_slow_responses=record.consecutive_slow_responses,
                cooldown_remaining_ms=cooldown_remaining,
            )

    def known_providers(self) -> list[str]:
        with self._records_lock:
            return list(self._records)

    # ---------------------------------------------------------------- #
    # Administrative overrides
    # ---------------------------------------------------------------- #

    def mark_unhealthy(self, provider: str, reason: str) -> None:
        """Open the circuit immediately (e.g. a known maintenance window)."""
        record = self._get_or_create(provider)
        with record.lock:
            record.healthy = False
            record.circuit_opened_at = self._clock()
            failure_count = len(record.failure_timestamps)

        log.warning("health_tracker.marked_unhealthy", provider=provider, reason=reason)
        self.events.emit(
            RouterEvent.PROVIDER_UNHEALTHY,
            provider=provider,
            failure_count=failure_count,
            reason=reason,
        )

    def reset_provider(self, provider: str) -> None:
        """Reset a provider to a clean, healthy record. Bypasses the breaker."""
        with self._records_lock:
            self._records[provider] = _ProviderRecord(provider=provider)
        log.info("health_tracker.provider_reset", provider=provider)
        self.events.emit(RouterEvent.PROVIDER_RECOVERED, provider=provider)

    def ensure(self, provider: str) -> None:
        """Create a record for ``provider`` if it does not exist yet."""
        self._get_or_create(provider)

    def reset(self, providers: list[str] | None = None) -> None:
        """Drop all history; recreate clean records for ``providers``."""
        with self._records_lock:
            self._records.clear()
            for provider in providers or []:
                self._records[provider] = _ProviderRecord(provider=provider)
        log.debug("health_tracker.reset", providers=providers or [])

    def _get_or_create(self, provider: str) -> _ProviderRecord:
        record = self._records.get(provider)
        if record is not None:
            return record
        with self._records_lock:
            return self._records.setdefault(provider, _ProviderRecord(provider=provider))
