"""Message templates for scheduled outreach touches."""

from __future__ import annotations

import html
from dataclasses import dataclass

from app.db.models import OutreachQueueItem

DEFAULT_ADDRESS = "your property"

SMS_INITIAL = (
    "Hi {first_name}, this is the property team following up about {property_address}. "
    "Are you still the owner, and would you consider an offer? Reply STOP to opt out."
)

SMS_FOLLOW_UPS = [
    "Hi {first_name}, just checking in on {property_address}. Any interest in a no-obligation cash offer?",
    "{first_name}, we're still buying in your area. Would you like to know what {property_address} could sell for as-is?",
    "Hi {first_name}, no pressure at all. If selling {property_address} is on your mind, we can close on your timeline.",
    "{first_name}, happy to run a free valuation on {property_address} if that helps your planning.",
    "Hi {first_name}, are you still considering options for {property_address}? A quick yes or no helps.",
    "{first_name}, this is our last check-in about {property_address}. Reply anytime if things change.",
]

EMAIL_SUBJECT = "Clarity on {property_address}"

EMAIL_BODY = (
    "<p>Hi {first_name},</p>"
    "<p>We work with families handling properties like {property_address} and can make a "
    "fair cash offer with no repairs, fees or showings.</p>"
    "<p>If you'd like a no-obligation valuation, just reply to this email.</p>"
)


@dataclass
class RenderedMessage:
    body: str
    subject: str | None = None


def _values(item: OutreachQueueItem) -> dict[str, str]:
    first_name = (item.contact_name or "").split(" ")[0].strip() or "there"
    return {
        "first_name": first_name,
        "property_address": item.property_address or DEFAULT_ADDRESS,
    }


def render_sms(item: OutreachQueueItem) -> RenderedMessage:
    """Touch 1 gets the introduction, later touches cycle through follow-ups."""
    values = _values(item)
    if item.touch_count == 0:
        return RenderedMessage(body=SMS_INITIAL.format(**values))
    template = SMS_FOLLOW_UPS[(item.touch_count - 1) % len(SMS_FOLLOW_UPS)]
    return RenderedMessage(body=template.format(**values))


def render_email(item: OutreachQueueItem) -> RenderedMessage:
    """HTML body with escaped contact values; the subject is plain text."""
    values = _values(item)
    escaped = {key: html.escape(value) for key, value in values.items()}
    return RenderedMessage(
        body=EMAIL_BODY.format(**escaped),
        subject=EMAIL_SUBJECT.format(**values),
    )
