"""Trading calendars deciding when ingestion runs and which session a query covers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from functools import cached_property
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from metalpulse.core.models.session import TradingSession

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, MutableMapping

    from metalpulse.core.config.settings import CalendarSettings

default_weekdays = frozenset({0, 1, 2, 3, 4})

REASON_WEEKEND = "weekend"
REASON_HOLIDAY = "holiday"
REASON_OUTSIDE_HOURS = "outside-hours"
REASON_OPEN = "open"


def normalize_market(market: str) -> str:
    """Normalize market identifiers for calendar lookups."""

    return market.strip().lower()


@dataclass(frozen=True)
class CalendarDecision:
    """Outcome of :meth:`TradingCalendar.is_open`."""

    allowed: bool
    reason: str
    local_time: datetime


@dataclass(frozen=True)
class TradingCalendar:
    """Weekly trading hours for a market in its own IANA time zone.

    The session end is inclusive through the whole ``end_minute``: with
    ``end_hour=23, end_minute=30`` an instant at 23:30:59 is in session and
    23:31:00 is not.
    """

    market: str
    timezone: str = "Asia/Kolkata"
    weekdays: frozenset[int] = default_weekdays
    start_hour: int = 9
    start_minute: int = 0
    end_hour: int = 23
    end_minute: int = 30
    holidays: frozenset[date] = frozenset()
    aliases: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        if (self.end_hour, self.end_minute) < (self.start_hour, self.start_minute):
            raise ValueError("session end must not precede session start")

    @cached_property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def is_trading_day(self, day: date) -> bool:
        return day.weekday() in self.weekdays and day not in self.holidays

    def previous_trading_day(self, day: date) -> date:
        """Return the closest trading day strictly before ``day``."""

        current = day - timedelta(days=1)
        # A year without a single trading day means the calendar is misconfigured.
        for _ in range(366):
            if self.is_trading_day(current):
                return current
            current -= timedelta(days=1)
        raise ValueError(f"calendar {self.market!r} has no trading day in the past year")

    def session_window(self, day: date) -> TradingSession:
        start = datetime.combine(day, time(self.start_hour, self.start_minute), tzinfo=self.zone)
        end = datetime.combine(day, time(self.end_hour, self.end_minute, 59, 999999), tzinfo=self.zone)
        return TradingSession(date=day, start=start, end=end)

    def localize(self, now: datetime) -> datetime:
        if now.tzinfo is None:
            raise ValueError("now must be timezone-aware")
        return now.astimezone(self.zone)

    def is_open(self, now: datetime) -> CalendarDecision:
        """Decide whether ``now`` falls inside a trading session."""

        local = self.localize(now)
        day = local.date()
        if day.weekday() not in self.weekdays:
            return CalendarDecision(False, REASON_WEEKEND, local)
        if day in self.holidays:
            return CalendarDecision(False, REASON_HOLIDAY, local)
        if not self.session_window(day).contains(local):
            return CalendarDecision(False, REASON_OUTSIDE_HOURS, local)
        return CalendarDecision(True, REASON_OPEN, local)

    def query_session(self, now: datetime) -> TradingSession:
        """Session a read query should cover at ``now``.

        Before today's open, or on a non-trading day, the previous trading
        day's session is returned so dashboards keep showing the last close.
        """

        local = self.localize(now)
        today = local.date()
        if self.is_trading_day(today):
            session = self.session_window(today)
            if local >= session.start:
                return session
        return self.session_window(self.previous_trading_day(today))

    def trading_days(self, start: date, end: date) -> list[date]:
        """Return trading days between the provided bounds inclusive."""

        if end < start:
            raise ValueError("end must be on or after start")

        current = start
        days: list[date] = []
        while current <= end:
            if self.is_trading_day(current):
                days.append(current)
            current += timedelta(days=1)
        return days


def builtin_calendars() -> Mapping[str, TradingCalendar]:
    """Construct built-in trading calendars."""

    mcx_calendar = TradingCalendar(
        market="mcx",
        aliases=frozenset({"mcx", "futures", "lme"}),
    )
    spot_calendar = TradingCalendar(
        market="spot",
        start_hour=6,
        end_hour=17,
        end_minute=59,
        aliases=frozenset({"spot", "supplier"}),
    )
    return {
        mcx_calendar.market: mcx_calendar,
        spot_calendar.market: spot_calendar,
    }


def calendar_from_settings(settings: CalendarSettings) -> TradingCalendar:
    return TradingCalendar(
        market=normalize_market(settings.market),
        timezone=settings.timezone,
        weekdays=frozenset(settings.weekdays),
        start_hour=settings.start_hour,
        start_minute=settings.start_minute,
        end_hour=settings.end_hour,
        end_minute=settings.end_minute,
        holidays=frozenset(settings.holidays),
        aliases=frozenset(settings.aliases),
    )


class TradingCalendarProvider:
    """Provides trading calendars keyed by market identifiers."""

    def __init__(
        self,
        market_calendars: Mapping[str, TradingCalendar] | None = None,
        default_calendar: TradingCalendar | None = None,
    ) -> None:
        source = market_calendars or builtin_calendars()
        self._calendars: MutableMapping[str, TradingCalendar] = {}
        self._alias_map: MutableMapping[str, TradingCalendar] = {}
        for key, calendar in source.items():
            self._calendars[normalize_market(key)] = calendar
            for alias in calendar.aliases:
                self._alias_map[normalize_market(alias)] = calendar

        self._default_calendar = default_calendar or TradingCalendar(market="default")

    @classmethod
    def from_settings(cls, settings: Iterable[CalendarSettings]) -> TradingCalendarProvider:
        """Built-in calendars with configured entries replacing those of the same market."""

        calendars = dict(builtin_calendars())
        for entry in settings:
            calendar = calendar_from_settings(entry)
            calendars[calendar.market] = calendar
        return cls(calendars)

    def get_calendar(self, market: str) -> TradingCalendar:
        """Return the matching calendar or fall back to the default."""

        key = normalize_market(market)
        if key in self._calendars:
            return self._calendars[key]
        if key in self._alias_map:
            return self._alias_map[key]
        return self._default_calendar

    def markets(self) -> list[str]:
        return sorted(self._calendars)


__all__ = [
    "CalendarDecision",
    "REASON_HOLIDAY",
    "REASON_OPEN",
    "REASON_OUTSIDE_HOURS",
    "REASON_WEEKEND",
    "TradingCalendar",
    "TradingCalendarProvider",
    "builtin_calendars",
    "calendar_from_settings",
    "default_weekdays",
    "normalize_market",
]
