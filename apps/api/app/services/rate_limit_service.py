"""Hourly/daily quota windows per CRM location.

Windows reset lazily: when a window is older than its duration at the time of
a write, the counter restarts at the current increment and the reset stamp
moves to now. Counters are written with a compare-and-set on `version` so
runner processes on different hosts never lose an increment.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.enums import RateLimitKind
from app.db.models import RateLimitCounter
from app.utils.datetime_parsing import ensure_utc, utc_now

logger = logging.getLogger(__name__)

HOUR = timedelta(hours=1)
DAY = timedelta(days=1)
MAX_CAS_ATTEMPTS = 5


@dataclass
class RateLimitDecision:
    allowed: bool
    remaining: int


@dataclass
class _Window:
    hourly_count: int
    daily_count: int
    last_hour_reset: datetime
    last_day_reset: datetime


def get_caps(kind: RateLimitKind) -> tuple[int, int]:
    """Return (hourly_cap, daily_cap) for a quota kind."""
    kind = RateLimitKind(kind)
    if kind == RateLimitKind.SMS:
        return settings.SMS_HOURLY_CAP, settings.SMS_DAILY_CAP
    if kind == RateLimitKind.EMAIL:
        return settings.EMAIL_HOURLY_CAP, settings.EMAIL_DAILY_CAP
    return settings.CRM_WRITE_HOURLY_CAP, settings.CRM_WRITE_DAILY_CAP


def _project(counter: RateLimitCounter, now: datetime, increment: int) -> _Window:
    last_hour = ensure_utc(counter.last_hour_reset)
    last_day = ensure_utc(counter.last_day_reset)

    if now - last_hour >= HOUR:
        hourly, hour_reset = increment, now
    else:
        hourly, hour_reset = counter.hourly_count + increment, last_hour

    if now - last_day >= DAY:
        daily, day_reset = increment, now
    else:
        daily, day_reset = counter.daily_count + increment, last_day

    return _Window(hourly, daily, hour_reset, day_reset)


def _remaining(window: _Window, kind: RateLimitKind) -> int:
    hourly_cap, daily_cap = get_caps(kind)
    return max(0, min(hourly_cap - window.hourly_count, daily_cap - window.daily_count))


def _get_or_create_counter(
    db: Session, location_id: str, kind: RateLimitKind, now: datetime
) -> RateLimitCounter:
    query = db.query(RateLimitCounter).filter(
        RateLimitCounter.location_id == location_id,
        RateLimitCounter.kind == kind.value,
    )
    counter = query.first()
    if counter:
        db.refresh(counter)
        return counter

    counter = RateLimitCounter(
        location_id=location_id,
        kind=kind.value,
        hourly_count=0,
        daily_count=0,
        last_hour_reset=now,
        last_day_reset=now,
        version=0,
    )
    db.add(counter)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        counter = query.one()
    db.refresh(counter)
    return counter


def check_quota(
    db: Session,
    location_id: str,
    kind: RateLimitKind,
    now: datetime | None = None,
) -> RateLimitDecision:
    """Read-only check: would one more unit fit in both windows?"""
    now = ensure_utc(now) or utc_now()
    kind = RateLimitKind(kind)
    counter = _get_or_create_counter(db, location_id, kind, now)
    window = _project(counter, now, 0)
    remaining = _remaining(window, kind)
    return RateLimitDecision(allowed=remaining > 0, remaining=remaining)


def _write(
    db: Session,
    location_id: str,
    kind: RateLimitKind,
    now: datetime,
    *,
    enforce: bool,
) -> RateLimitDecision:
    for attempt in range(1, MAX_CAS_ATTEMPTS + 1):
        counter = _get_or_create_counter(db, location_id, kind, now)
        if enforce and _remaining(_project(counter, now, 0), kind) <= 0:
            return RateLimitDecision(allowed=False, remaining=0)

        window = _project(counter, now, 1)
        result = db.execute(
            update(RateLimitCounter)
            .where(
                RateLimitCounter.id == counter.id,
                RateLimitCounter.version == counter.version,
            )
            .values(
                hourly_count=window.hourly_count,
                daily_count=window.daily_count,
                last_hour_reset=window.last_hour_reset,
                last_day_reset=window.last_day_reset,
                version=counter.version + 1,
            )
        )
        db.commit()
        if result.rowcount == 1:
            return RateLimitDecision(allowed=True, remaining=_remaining(window, kind))

        logger.info(
            "Rate limit counter conflict for %s/%s (attempt %s), retrying",
            location_id,
            kind.value,
            attempt,
        )

    logger.warning(
        "Rate limit counter for %s/%s stayed contended after %s attempts",
        location_id,
        kind.value,
        MAX_CAS_ATTEMPTS,
    )
    return RateLimitDecision(allowed=False, remaining=0)


def check_and_reserve(
    db: Session,
    location_id: str,
    kind: RateLimitKind,
    now: datetime | None = None,
) -> RateLimitDecision:
    """Reserve one unit if both windows have room; otherwise deny without writing."""
    now = ensure_utc(now) or utc_now()
    return _write(db, location_id, RateLimitKind(kind), now, enforce=True)


def consume(
    db: Session,
    location_id: str,
    kind: RateLimitKind,
    now: datetime | None = None,
) -> RateLimitDecision:
    """Record one unit after the fact (e.g. a send that already happened)."""
    now = ensure_utc(now) or utc_now()
    return _write(db, location_id, RateLimitKind(kind), now, enforce=False)


def get_counter(db: Session, location_id: str, kind: RateLimitKind) -> RateLimitCounter | None:
    return (
        db.query(RateLimitCounter)
        .filter(
            RateLimitCounter.location_id == location_id,
            RateLimitCounter.kind == RateLimitKind(kind).value,
        )
        .first()
    )
