"""Trading session window."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime


@dataclass(frozen=True)
class TradingSession:
    """Session bounds for one trading day; ``end`` already includes the final minute."""

    date: date
    start: datetime
    end: datetime

    def contains(self, instant: datetime) -> bool:
        if instant.tzinfo is None:
            raise ValueError("instant must be timezone-aware")
        return self.start <= instant <= self.end


__all__ = ["TradingSession"]
