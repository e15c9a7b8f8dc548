"""Aggregation and ingestion result models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field, field_serializer

_ZERO = Decimal("0")

NO_DATA_MESSAGE = "no data for window"


class AggregateStatus(str, Enum):
    OK = "ok"
    NO_DATA = "no-data"
    STALE = "stale"


class AggregateResult(BaseModel):
    """Statistics over the collapsed, session-clipped price series."""

    count: int = 0
    min: Decimal = _ZERO
    max: Decimal = _ZERO
    avg: Decimal = _ZERO
    first: Decimal = _ZERO
    last: Decimal = _ZERO
    delta: Decimal = _ZERO
    delta_percent: Decimal = _ZERO
    range_start: datetime | None = None
    range_end: datetime | None = None
    status: AggregateStatus = AggregateStatus.OK

    @classmethod
    def empty(
        cls,
        range_start: datetime | None,
        range_end: datetime | None,
        status: AggregateStatus = AggregateStatus.NO_DATA,
    ) -> AggregateResult:
        return cls(range_start=range_start, range_end=range_end, status=status)

    @field_serializer("min", "max", "avg", "first", "last", "delta", "delta_percent", when_used="json")
    def serialize_decimal(self, value: Decimal) -> float:
        return float(value)


class SeriesPoint(BaseModel):
    time: datetime
    value: Decimal

    @field_serializer("value", when_used="json")
    def serialize_value(self, value: Decimal) -> float:
        return float(value)


class AggregationReport(BaseModel):
    """Everything a dashboard needs for one instrument window."""

    instrument_key: str
    label: str | None = None
    points: list[SeriesPoint] = Field(default_factory=list)
    stats: AggregateResult
    trading_status: str
    cached: bool = False
    message: str | None = None


class LatestQuote(BaseModel):
    """Most recent stored observation of one instrument."""

    instrument_key: str
    label: str | None = None
    observed_at: datetime
    price: Decimal
    delta: Decimal
    delta_percent: Decimal
    source: str
    ingested_at: datetime
    trading_status: str

    @field_serializer("price", "delta", "delta_percent", when_used="json")
    def serialize_decimal(self, value: Decimal) -> float:
        return float(value)


class CycleStatus(str, Enum):
    SKIPPED = "skipped"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(slots=True, frozen=True)
class FeedOutcome:
    """Per-feed counters collected during one cycle."""

    feed: str
    written: int = 0
    duplicates: int = 0
    replaced: int = 0
    dropped: int = 0
    error_code: str | None = None


@dataclass(slots=True, frozen=True)
class CycleReport:
    """Result of one ingestion cycle."""

    status: CycleStatus
    trigger: str
    started_at: datetime
    finished_at: datetime
    reason: str | None = None
    written: int = 0
    duplicates: int = 0
    replaced: int = 0
    errors: tuple[str, ...] = ()
    feeds: tuple[FeedOutcome, ...] = ()

    def to_dict(self) -> dict[str, object]:
        return {
            "status": self.status.value,
            "trigger": self.trigger,
            "reason": self.reason,
            "written": self.written,
            "duplicates": self.duplicates,
            "replaced": self.replaced,
            "errors": list(self.errors),
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "feeds": [
                {
                    "feed": outcome.feed,
                    "written": outcome.written,
                    "duplicates": outcome.duplicates,
                    "replaced": outcome.replaced,
                    "dropped": outcome.dropped,
                    "error_code": outcome.error_code,
                }
                for outcome in self.feeds
            ],
        }


__all__ = [
    "AggregateResult",
    "AggregateStatus",
    "AggregationReport",
    "CycleReport",
    "CycleStatus",
    "FeedOutcome",
    "LatestQuote",
    "NO_DATA_MESSAGE",
    "SeriesPoint",
]
