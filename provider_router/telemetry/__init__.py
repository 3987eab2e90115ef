"""Telemetry package for observability.

This package contains structured logging configuration and the
context helpers used to correlate routing decisions in log output.
"""

from __future__ import annotations

from provider_router.telemetry.logging import (
    bind_provider_context,
    clear_context,
    configure_logging,
    new_route_id,
    route_context,
)

__all__ = [
    "bind_provider_context",
    "clear_context",
    "configure_logging",
    "new_route_id",
    "route_context",
]
