"""
Web API data models
Request/response shapes for the FastAPI service
"""

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from metalpulse.core.models import AggregateResult, AggregationReport, SeriesPoint


def _utcnow() -> datetime:
    return datetime.now(UTC)


class APIResponse(BaseModel):
    """Standard API response envelope"""

    success: bool = Field(..., description="Whether the request succeeded")
    data: Any | None = Field(None, description="Response payload")
    message: str | None = Field(None, description="Human readable message")
    timestamp: datetime = Field(default_factory=_utcnow, description="Response timestamp")
    request_id: str | None = Field(None, description="Request id for tracing")


class ErrorResponse(BaseModel):
    """Error response envelope"""

    success: bool = Field(False, description="Always false")
    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    details: dict[str, Any] | None = Field(None, description="Error details")
    timestamp: datetime = Field(default_factory=_utcnow, description="Error timestamp")
    request_id: str | None = Field(None, description="Request id for tracing")


class AggregateResponse(BaseModel):
    """Series and statistics for one instrument window"""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    instrument: str
    data: list[SeriesPoint] = Field(default_factory=list, description="Collapsed price points")
    stats: AggregateResult
    trading_status: str = Field(..., alias="tradingStatus", description="Calendar state at query time")
    label: str | None = Field(None, description="Resolved contract month label")
    cached: bool = Field(False, description="Served from the last successful result")
    message: str | None = None

    @classmethod
    def from_report(cls, report: AggregationReport) -> "AggregateResponse":
        return cls(
            instrument=report.instrument_key,
            data=report.points,
            stats=report.stats,
            trading_status=report.trading_status,
            label=report.label,
            cached=report.cached,
            message=report.message,
        )


class ContractLabels(BaseModel):
    """Current, next and third contract month labels of a family"""

    family: str
    current: str | None = None
    next: str | None = None
    third: str | None = None
    observed_at: datetime | None = None


class HealthStatus(BaseModel):
    """Health check payload"""

    status: str = Field(..., description="healthy or unhealthy")
    version: str = Field(..., description="Service version")
    uptime: float = Field(..., description="Seconds since start")
    timestamp: datetime = Field(default_factory=_utcnow)
    components: dict[str, str] = Field(..., description="Per component status")
    scheduler: dict[str, Any] = Field(default_factory=dict, description="Scheduler state")
