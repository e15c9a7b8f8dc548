"""Tests for trading calendars and the calendar provider."""

from __future__ import annotations

from datetime import UTC, date, datetime

import pytest
from conftest import IST, ist

from metalpulse.core.config import CalendarSettings
from metalpulse.core.services.calendars import (
    REASON_HOLIDAY,
    REASON_OPEN,
    REASON_OUTSIDE_HOURS,
    REASON_WEEKEND,
    TradingCalendar,
    TradingCalendarProvider,
)


@pytest.fixture
def mcx() -> TradingCalendar:
    return TradingCalendarProvider().get_calendar("mcx")


def test_tuesday_morning_is_open(mcx: TradingCalendar) -> None:
    decision = mcx.is_open(ist(2025, 1, 14, 10, 0))

    assert decision.allowed is True
    assert decision.reason == REASON_OPEN
    assert decision.local_time.tzinfo == IST
    assert decision.local_time.hour == 10


def test_utc_instant_is_judged_in_market_zone(mcx: TradingCalendar) -> None:
    # 03:29 UTC is 08:59 IST, 03:30 UTC is 09:00 IST.
    assert mcx.is_open(datetime(2025, 1, 14, 3, 29, tzinfo=UTC)).allowed is False
    assert mcx.is_open(datetime(2025, 1, 14, 3, 30, tzinfo=UTC)).allowed is True


def test_weekend_is_closed(mcx: TradingCalendar) -> None:
    decision = mcx.is_open(ist(2025, 1, 11, 12, 0))

    assert decision.allowed is False
    assert decision.reason == REASON_WEEKEND


def test_session_end_includes_final_minute(mcx: TradingCalendar) -> None:
    assert mcx.is_open(ist(2025, 1, 14, 23, 30, 59)).allowed is True

    closed = mcx.is_open(ist(2025, 1, 14, 23, 31, 0))
    assert closed.allowed is False
    assert closed.reason == REASON_OUTSIDE_HOURS


def test_before_open_is_outside_hours(mcx: TradingCalendar) -> None:
    decision = mcx.is_open(ist(2025, 1, 14, 8, 59, 59))

    assert decision.allowed is False
    assert decision.reason == REASON_OUTSIDE_HOURS


def test_holiday_is_closed_and_skipped_by_previous_day() -> None:
    calendar = TradingCalendar(market="mcx", holidays=frozenset({date(2025, 1, 14)}))

    assert calendar.is_open(ist(2025, 1, 14, 10, 0)).reason == REASON_HOLIDAY
    assert calendar.previous_trading_day(date(2025, 1, 15)) == date(2025, 1, 13)
    assert calendar.trading_days(date(2025, 1, 13), date(2025, 1, 17)) == [
        date(2025, 1, 13),
        date(2025, 1, 15),
        date(2025, 1, 16),
        date(2025, 1, 17),
    ]


def test_monday_before_open_queries_friday_session(mcx: TradingCalendar) -> None:
    session = mcx.query_session(ist(2025, 1, 13, 8, 0))

    assert session.date == date(2025, 1, 10)
    assert session.start == datetime(2025, 1, 10, 9, 0, tzinfo=IST)
    assert session.end == datetime(2025, 1, 10, 23, 30, 59, 999999, tzinfo=IST)


def test_weekend_queries_friday_session(mcx: TradingCalendar) -> None:
    assert mcx.query_session(ist(2025, 1, 12, 15, 0)).date == date(2025, 1, 10)


def test_after_open_queries_today(mcx: TradingCalendar) -> None:
    assert mcx.query_session(ist(2025, 1, 14, 9, 0)).date == date(2025, 1, 14)
    # After the close the day's session still answers queries.
    assert mcx.query_session(ist(2025, 1, 14, 23, 45)).date == date(2025, 1, 14)


def test_naive_instant_is_rejected(mcx: TradingCalendar) -> None:
    with pytest.raises(ValueError):
        mcx.is_open(datetime(2025, 1, 14, 10, 0))


def test_end_before_start_is_rejected() -> None:
    with pytest.raises(ValueError):
        TradingCalendar(market="broken", start_hour=18, end_hour=9)


def test_provider_resolves_aliases_and_default() -> None:
    provider = TradingCalendarProvider()

    assert provider.get_calendar("FUTURES").market == "mcx"
    assert provider.get_calendar("supplier").market == "spot"
    assert provider.get_calendar("unknown").market == "default"
    assert provider.markets() == ["mcx", "spot"]


def test_spot_calendar_hours() -> None:
    spot = TradingCalendarProvider().get_calendar("spot")

    assert spot.is_open(ist(2025, 1, 14, 6, 0)).allowed is True
    assert spot.is_open(ist(2025, 1, 14, 17, 59, 59)).allowed is True
    assert spot.is_open(ist(2025, 1, 14, 18, 0)).allowed is False


def test_provider_from_settings_overrides_builtin() -> None:
    provider = TradingCalendarProvider.from_settings(
        [
            CalendarSettings(
                market="MCX",
                end_hour=17,
                end_minute=0,
                holidays=[date(2025, 1, 26)],
                aliases=["comex"],
            )
        ]
    )

    calendar = provider.get_calendar("comex")
    assert calendar.market == "mcx"
    assert calendar.is_open(ist(2025, 1, 14, 17, 0, 30)).allowed is True
    assert calendar.is_open(ist(2025, 1, 14, 17, 1)).allowed is False
    assert provider.get_calendar("spot").start_hour == 6
