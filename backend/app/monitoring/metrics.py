"""Metric definitions for the realtime delivery path."""

from __future__ import annotations

from .registry import registry


realtime_events_total = registry.counter(
    "realtime_events_total",
    "Count of realtime events processed by the websocket router.",
    label_names=("topic", "direction", "action"),
)

realtime_connections = registry.gauge(
    "realtime_active_connections",
    "Number of authenticated websocket connections handled locally.",
    label_names=("scope",),
)

realtime_persistence_failures_total = registry.counter(
    "realtime_persistence_failures_total",
    "Repository writes triggered by live events that failed.",
    label_names=("operation",),
)
