"""Services module - calendars, dedup, ingestion and aggregation."""

from metalpulse.core.services.aggregation import AggregationEngine, InstrumentRef, ResultCache
from metalpulse.core.services.calendars import (
    CalendarDecision,
    TradingCalendar,
    TradingCalendarProvider,
)
from metalpulse.core.services.dedup import DailyUpsert, DedupGate, GateOutcome, normalize_decimal
from metalpulse.core.services.ingestion import CycleState, FeedSource, IngestionScheduler

__all__ = [
    "AggregationEngine",
    "CalendarDecision",
    "CycleState",
    "DailyUpsert",
    "DedupGate",
    "FeedSource",
    "GateOutcome",
    "IngestionScheduler",
    "InstrumentRef",
    "ResultCache",
    "TradingCalendar",
    "TradingCalendarProvider",
    "normalize_decimal",
]
