"""
Aggregation and contract label routes
"""

from datetime import datetime

from fastapi import APIRouter, Query, Request

from metalpulse.core.services.aggregation import AggregationEngine
from metalpulse.web.models import AggregateResponse, APIResponse, ContractLabels

router = APIRouter()


def _engine(request: Request) -> AggregationEngine:
    return request.app.state.services.engine


@router.get("/aggregate", response_model=AggregateResponse, response_model_by_alias=True)
async def aggregate(
    request: Request,
    instrument: str = Query(..., description="Family with optional slot or contract, e.g. aluminum:current"),
    range_start: datetime | None = Query(None, description="Inclusive window start (ISO 8601 with offset)"),
    range_end: datetime | None = Query(None, description="Inclusive window end (ISO 8601 with offset)"),
    limit: int | None = Query(None, ge=1, le=10000, description="Only the most recent N collapsed points"),
) -> AggregateResponse:
    """
    Session-bounded series and statistics

    Defaults to the current trading session, or the previous one before
    today's open. An empty window returns zero statistics, never an error.
    """
    report = await _engine(request).aggregate(instrument, range_start, range_end, limit)
    return AggregateResponse.from_report(report)


@router.get("/contracts/{family}", response_model=APIResponse)
async def contract_labels(request: Request, family: str) -> APIResponse:
    """Latest contract month label roll for a family"""
    store = request.app.state.services.store
    rolls = await store.run("contract_labels", lambda conn: store.labels(family, conn=conn))
    labels = {label.slot: label for label in rolls}
    observed = [label.observed_at for label in labels.values()]
    payload = ContractLabels(
        family=family,
        current=labels[1].label if 1 in labels else None,
        next=labels[2].label if 2 in labels else None,
        third=labels[3].label if 3 in labels else None,
        observed_at=max(observed) if observed else None,
    )
    return APIResponse(
        success=bool(labels),
        data=payload.model_dump(mode="json"),
        message=None if labels else "no contract labels recorded",
    )
