"""
Health check routes
"""

import time

from fastapi import APIRouter, Request

from metalpulse import __version__
from metalpulse.core.exceptions import MetalPulseError
from metalpulse.web.models import APIResponse, HealthStatus

router = APIRouter()


@router.get("/health", response_model=APIResponse)
async def health_check(request: Request) -> APIResponse:
    """
    Basic health check

    Reports store reachability and scheduler state.
    """
    services = request.app.state.services
    try:
        await services.store.run("health", lambda conn: conn.execute("SELECT 1").fetchone())
        store_status = "healthy"
    except MetalPulseError:
        store_status = "unhealthy"

    scheduler = services.scheduler
    last_report = scheduler.last_report
    health = HealthStatus(
        status="healthy" if store_status == "healthy" else "unhealthy",
        version=__version__,
        uptime=time.time() - getattr(request.app.state, "start_time", time.time()),
        components={"store": store_status},
        scheduler={
            "state": scheduler.state.value,
            "last_attempt_at": scheduler.last_attempt_at.isoformat() if scheduler.last_attempt_at else None,
            "last_status": last_report.status.value if last_report else None,
            "consecutive_failures": scheduler.consecutive_failures,
            "total_errors": services.error_tracker.get_error_stats()["total_errors"],
        },
    )
    return APIResponse(
        success=health.status == "healthy",
        data=health.model_dump(mode="json"),
        message="health check complete",
    )
