"""Client helpers that reconcile live pushes with the request/response API."""

from .http import HttpSnapshotSource  # noqa: F401
from .reconciler import DeliveryReconciler, SnapshotSource  # noqa: F401

__all__ = ["DeliveryReconciler", "HttpSnapshotSource", "SnapshotSource"]
