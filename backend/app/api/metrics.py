"""Prometheus text endpoint for the realtime counters and gauges."""

from fastapi import APIRouter, Response

from app.monitoring.registry import registry


router = APIRouter(tags=["metrics"])


@router.get("/metrics", response_class=Response)
def export_metrics() -> Response:
    """Render every registered metric in the Prometheus exposition format."""

    return Response(content=registry.render(), media_type="text/plain; version=0.0.4")
