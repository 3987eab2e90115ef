"""Synchronous event registry for routing signals.

Components raise named signals (``provider:unhealthy``, ``budget:warning``,
...) to decoupled listeners. Delivery is synchronous: every listener has
run before the emitting call returns, so listeners observe state exactly
as it was when the signal was raised.

Listener failures are logged but not propagated back to the emitter; a
broken dashboard hook must never fail a routing decision.

Usage:
    events = EventEmitter()
    events.on(RouterEvent.BUDGET_WARNING, lambda current_cost, session_budget: ...)
    events.emit(RouterEvent.BUDGET_WARNING, current_cost=8.5, session_budget=10.0)
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from enum import StrEnum
from typing import Any

import structlog

log = structlog.get_logger(__name__)

Listener = Callable[..., Any]


class RouterEvent(StrEnum):
    """Signals a caller may subscribe to."""

    PROVIDER_SUCCESS = "provider:success"
    PROVIDER_FAILURE = "provider:failure"
    PROVIDER_UNHEALTHY = "provider:unhealthy"
    PROVIDER_RECOVERED = "provider:recovered"
    PROVIDER_PROMOTED = "provider:promoted"
    PROVIDER_FALLBACK = "provider:fallback"
    CHAIN_EXHAUSTED = "chain:exhausted"
    BUDGET_WARNING = "budget:warning"
    BUDGET_EXCEEDED = "budget:exceeded"
    TIER_DOWNGRADED = "tier:downgraded"
    ROUTE_SELECTED = "route:selected"


class EventEmitter:
    """Thread-safe callback registry keyed by event name."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}
        self._lock = threading.Lock()

    def on(self, event: str, listener: Listener) -> Listener:
        """Register a listener. Returns it, for a later ``off`` call."""
        name = RouterEvent(event).value
        with self._lock:
            self._listeners.setdefault(name, []).append(listener)
        return listener

    def once(self, event: str, listener: Listener) -> Listener:
        """Register a listener that is removed after its first call."""

        def _wrapper(**payload: Any) -> Any:
            self.off(event, _wrapper)
            return listener(**payload)

        self.on(event, _wrapper)
        return _wrapper

    def off(self, event: str, listener: Listener) -> None:
        """Remove a listener; unknown listeners are ignored."""
        name = RouterEvent(event).value
        with self._lock:
            listeners = self._listeners.get(name, [])
            if listener in listeners:
                listeners.remove(listener)

    def emit(self, event: str, **payload: Any) -> int:
        """Deliver ``payload`` to every listener of ``event``.

        Returns:
            Number of listeners invoked
        """
        name = RouterEvent(event).value
        with self._lock:
            listeners = list(self._listeners.get(name, []))

        for listener in listeners:
            try:
                listener(**payload)
            except Exception as exc:
                log.exception(
                    "events.listener_failed",
                    event_name=name,
                    listener=getattr(listener, "__qualname__", repr(listener)),
                    error_type=type(exc).__name__,
                )
        return len(listeners)

    def listener_count(self, event: str) -> int:
        name = RouterEvent(event).value
        with self._lock:
            return len(self._listeners.get(name, []))

    def remove_all_listeners(self, event: str | None = None) -> None:
        """Remove listeners for one event, or for every event when None."""
        with self._lock:
            if event is None:
                self._listeners.clear()
            else:
                self._listeners.pop(RouterEvent(event).value, None)
