"""Metrics registry and the realtime metric definitions exported on /metrics."""

from . import metrics, registry

__all__ = ["metrics", "registry"]
