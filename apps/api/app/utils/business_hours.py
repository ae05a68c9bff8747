"""Outreach business hours gate with US federal holidays support.

Sends are allowed Mon-Fri 9am-7pm and Sat 9am-12pm in the business timezone;
Sunday is closed. All boundaries are end-exclusive. Naive datetimes are
treated as UTC.
"""

from datetime import date, datetime, timedelta
from functools import lru_cache
from zoneinfo import ZoneInfo

import holidays

from app.core.config import settings
from app.core.constants import (
    BUSINESS_HOURS_START,
    SATURDAY_HOURS_END,
    WEEKDAY_HOURS_END,
)
from app.utils.datetime_parsing import ensure_utc

SATURDAY = 5
SUNDAY = 6


@lru_cache(maxsize=10)
def get_us_holidays(year: int) -> set:
    """Cache holiday sets per year for performance."""
    return set(holidays.US(years=year).keys())


def to_business_time(now: datetime, timezone: str | None = None) -> datetime:
    """Convert a timestamp to the business timezone."""
    return ensure_utc(now).astimezone(ZoneInfo(timezone or settings.BUSINESS_TIMEZONE))


def _closing_hour(local: datetime) -> int | None:
    weekday = local.weekday()
    if weekday == SUNDAY:
        return None
    if weekday == SATURDAY:
        return SATURDAY_HOURS_END
    return WEEKDAY_HOURS_END


def is_open(now: datetime, timezone: str | None = None) -> bool:
    """Check whether outbound touches may be sent at this instant."""
    local = to_business_time(now, timezone)
    closing = _closing_hour(local)
    if closing is None:
        return False
    return BUSINESS_HOURS_START <= local.hour < closing


def next_open_message(now: datetime, timezone: str | None = None) -> str:
    """Describe the current window or when the next one opens."""
    local = to_business_time(now, timezone)
    weekday = local.weekday()
    hour = local.hour

    if weekday == SUNDAY:
        return "Sunday - closed. Next business hours: Monday 9 AM EST"
    if hour < BUSINESS_HOURS_START:
        return "Before business hours. Opens at 9 AM EST"
    if weekday == SATURDAY:
        if hour >= SATURDAY_HOURS_END:
            return "Saturday after hours. Next business hours: Monday 9 AM EST"
        return "Within business hours (9 AM - 12 PM EST)"
    if hour >= WEEKDAY_HOURS_END:
        if weekday == 4:
            return "Friday after hours. Next business hours: Saturday 9 AM EST"
        return "After business hours. Next business hours: tomorrow 9 AM EST"
    return "Within business hours (9 AM - 7 PM EST)"


def is_business_day(day: date) -> bool:
    """Check if date is a business day (Mon-Fri, not a holiday)."""
    if day.weekday() >= 5:
        return False
    if day in get_us_holidays(day.year):
        return False
    return True


def business_days_between(
    start: datetime, end: datetime, timezone: str | None = None
) -> int:
    """
    Count business days after start's date up to and including end's date.

    Both instants are compared as calendar dates in the business timezone.
    Returns 0 when end is not after start.
    """
    start_day = to_business_time(start, timezone).date()
    end_day = to_business_time(end, timezone).date()
    count = 0
    day = start_day + timedelta(days=1)
    while day <= end_day:
        if is_business_day(day):
            count += 1
        day += timedelta(days=1)
    return count


def same_business_day(first: datetime, second: datetime, timezone: str | None = None) -> bool:
    return to_business_time(first, timezone).date() == to_business_time(second, timezone).date()
