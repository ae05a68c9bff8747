"""Tests for the business-hours gate (America/New_York)."""

from datetime import datetime, timezone

import pytest
from zoneinfo import ZoneInfo

from app.utils.business_hours import (
    business_days_between,
    is_open,
    next_open_message,
    same_business_day,
)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


# October 2026 is EDT (UTC-4)
TUESDAY_2PM = utc(2026, 10, 13, 18, 0)
SATURDAY_10AM = utc(2026, 10, 17, 14, 0)
SATURDAY_NOON = utc(2026, 10, 17, 16, 0)
SATURDAY_0859 = utc(2026, 10, 17, 12, 59)
NEW_YORK = ZoneInfo("America/New_York")


def test_tuesday_afternoon_is_open():
    """Tuesday 14:00 local is inside the weekday window."""
    assert is_open(TUESDAY_2PM) is True
    assert next_open_message(TUESDAY_2PM) == "Within business hours (9 AM - 7 PM EST)"


@pytest.mark.parametrize("hour", [0, 8, 9, 11, 14, 18, 23])
def test_sunday_is_always_closed(hour):
    """Every Sunday hour is closed."""
    sunday = datetime(2026, 10, 18, hour, 30, tzinfo=NEW_YORK)
    assert is_open(sunday) is False
    assert next_open_message(sunday) == "Sunday - closed. Next business hours: Monday 9 AM EST"


def test_saturday_morning_window():
    """Saturday opens 09:00 and closes at noon."""
    assert is_open(SATURDAY_10AM) is True
    assert next_open_message(SATURDAY_10AM) == "Within business hours (9 AM - 12 PM EST)"


def test_saturday_noon_and_later_is_closed():
    assert is_open(SATURDAY_NOON) is False
    assert (
        next_open_message(SATURDAY_NOON)
        == "Saturday after hours. Next business hours: Monday 9 AM EST"
    )


def test_saturday_before_nine_is_closed():
    assert is_open(SATURDAY_0859) is False
    assert next_open_message(SATURDAY_0859) == "Before business hours. Opens at 9 AM EST"


def test_weekday_boundaries():
    """09:00 is open, 18:59 is open, 19:00 is closed."""
    assert is_open(utc(2026, 10, 13, 12, 59)) is False
    assert is_open(utc(2026, 10, 13, 13, 0)) is True
    assert is_open(utc(2026, 10, 13, 22, 59)) is True
    assert is_open(utc(2026, 10, 13, 23, 0)) is False
    assert (
        next_open_message(utc(2026, 10, 13, 23, 0))
        == "After business hours. Next business hours: tomorrow 9 AM EST"
    )


def test_friday_evening_points_to_saturday():
    friday_8pm = utc(2026, 10, 17, 0, 0)  # Friday 20:00 local
    assert is_open(friday_8pm) is False
    assert (
        next_open_message(friday_8pm)
        == "Friday after hours. Next business hours: Saturday 9 AM EST"
    )


def test_naive_timestamps_are_treated_as_utc():
    assert is_open(datetime(2026, 10, 13, 18, 0)) is True


def test_business_days_skip_weekends_and_holidays():
    """Thanksgiving 2026 (Thu Nov 26) and the weekend are not business days."""
    wednesday = utc(2026, 11, 25, 17, 0)
    monday = utc(2026, 11, 30, 17, 0)
    # Friday 27th and Monday 30th
    assert business_days_between(wednesday, monday) == 2
    assert business_days_between(monday, wednesday) == 0


def test_same_business_day_uses_local_date():
    """23:30 UTC on Tuesday is still Tuesday evening in New York."""
    morning = utc(2026, 10, 13, 13, 0)
    late_utc = utc(2026, 10, 13, 23, 30)
    next_morning = utc(2026, 10, 14, 13, 0)
    assert same_business_day(morning, late_utc) is True
    assert same_business_day(morning, next_morning) is False
