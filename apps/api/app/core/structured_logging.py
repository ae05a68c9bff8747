"""Structured logging helpers (PII-safe).

Only opaque identifiers go into log context; names, phone numbers, emails and
message bodies never do.
"""

from typing import Any


def build_log_context(
    *,
    user_id: str | None = None,
    location_id: str | None = None,
    contact_id: str | None = None,
    channel: str | None = None,
    route: str | None = None,
    request_id: str | None = None,
) -> dict[str, Any]:
    """Return a PII-safe log context dict for `extra=`."""
    context: dict[str, Any] = {}
    if user_id:
        context["user_id"] = user_id
    if location_id:
        context["location_id"] = location_id
    if contact_id:
        context["contact_id"] = contact_id
    if channel:
        context["channel"] = channel
    if route:
        context["route"] = route
    if request_id:
        context["request_id"] = request_id
    return context
