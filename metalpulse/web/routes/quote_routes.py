"""
Latest and daily quote routes
"""

from datetime import date

from fastapi import APIRouter, Query, Request

from metalpulse.web.models import APIResponse

router = APIRouter()


@router.get("/latest/{instrument}", response_model=APIResponse)
async def latest_quote(request: Request, instrument: str) -> APIResponse:
    """Most recent stored quote of an instrument such as aluminum:current"""
    quote = await request.app.state.services.engine.latest(instrument)
    if quote is None:
        return APIResponse(success=False, data=None, message="no quote recorded")
    return APIResponse(success=True, data=quote.model_dump(mode="json"))


@router.get("/daily/{family}", response_model=APIResponse)
async def daily_quotes(
    request: Request,
    family: str,
    day: date | None = Query(None, alias="date", description="Local trading date; latest recorded date when omitted"),
) -> APIResponse:
    """One quote per contract month for a trading day"""
    quotes = await request.app.state.services.engine.daily(family, day)
    return APIResponse(
        success=bool(quotes),
        data=[quote.model_dump(mode="json") for quote in quotes],
        message=None if quotes else "no daily quotes recorded",
    )
