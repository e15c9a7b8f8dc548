"""
Manual ingestion trigger
"""

from fastapi import APIRouter, Request

from metalpulse.core.models import CycleStatus
from metalpulse.web.models import APIResponse

router = APIRouter()


@router.post("/ingest/trigger", response_model=APIResponse)
async def trigger_ingestion(request: Request) -> APIResponse:
    """
    Run one ingestion cycle now

    Waits for any running cycle to finish first; repeated calls are safe
    because unchanged quotes are dropped as duplicates.
    """
    report = await request.app.state.services.scheduler.trigger()
    return APIResponse(
        success=report.status is not CycleStatus.FAILED,
        data=report.to_dict(),
        message=report.reason,
    )
