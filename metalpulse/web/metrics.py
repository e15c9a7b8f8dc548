"""FastAPI utilities for Prometheus metrics exposure."""

from fastapi import APIRouter, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST

from metalpulse.core.monitoring.metrics import get_metrics_collector

router = APIRouter()


@router.get("/metrics", include_in_schema=False, summary="Prometheus metrics endpoint")
def metrics_endpoint(request: Request) -> Response:
    """Expose collected metrics in Prometheus text format."""

    services = getattr(request.app.state, "services", None)
    collector = services.metrics if services is not None else get_metrics_collector()
    return Response(content=collector.render(), media_type=CONTENT_TYPE_LATEST)
