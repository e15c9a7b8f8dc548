"""Data models module."""

from metalpulse.core.models.quotes import ContractLabel, QuoteSnapshot
from metalpulse.core.models.results import (
    NO_DATA_MESSAGE,
    AggregateResult,
    AggregateStatus,
    AggregationReport,
    CycleReport,
    CycleStatus,
    FeedOutcome,
    LatestQuote,
    SeriesPoint,
)
from metalpulse.core.models.session import TradingSession

__all__ = [
    "AggregateResult",
    "AggregateStatus",
    "AggregationReport",
    "ContractLabel",
    "CycleReport",
    "CycleStatus",
    "FeedOutcome",
    "LatestQuote",
    "NO_DATA_MESSAGE",
    "QuoteSnapshot",
    "SeriesPoint",
    "TradingSession",
]
