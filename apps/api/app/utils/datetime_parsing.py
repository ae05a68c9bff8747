"""Datetime helpers for persisted timestamps and CRM payloads."""

from __future__ import annotations

from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo) and normalize aware ones."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_iso_datetime(raw_value: str | int | float | None) -> datetime | None:
    """Parse an ISO 8601 string or epoch (seconds or milliseconds) into UTC."""
    if raw_value is None or raw_value == "":
        return None

    if isinstance(raw_value, (int, float)) or str(raw_value).isdigit():
        ts = float(raw_value)
        if ts > 1e11:
            ts = ts / 1000
        return datetime.fromtimestamp(ts, tz=timezone.utc)

    value = str(raw_value).strip()
    try:
        return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        return None
