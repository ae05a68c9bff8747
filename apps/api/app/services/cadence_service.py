"""Cadence tracking - touch ceilings, spacing and the terminal disposition.

The queue item is authoritative for touch counts; the CRM custom fields are a
mirror for agents working the contact in the CRM UI.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from app.core import crm_fields
from app.core.config import settings
from app.core.constants import DIRECT_MAIL_DISPOSITION
from app.core.structured_logging import build_log_context
from app.db.enums import Channel, QueueItemStatus, RateLimitKind
from app.db.models import OutreachQueueItem
from app.services import outreach_queue_service, rate_limit_service
from app.services.crm_client import CrmClient
from app.services.outreach_errors import OutreachError
from app.utils.business_hours import business_days_between, same_business_day
from app.utils.datetime_parsing import ensure_utc, utc_now

logger = logging.getLogger(__name__)

TOUCH_COUNT_FIELDS = {
    Channel.SMS: crm_fields.SMS_TOUCH_COUNT,
    Channel.EMAIL: crm_fields.EMAIL_TOUCH_COUNT,
}


@dataclass(frozen=True)
class CadencePolicy:
    """
    Touch ceiling and optional spacing for one channel.

    spacing_enabled switches the minimum-business-days rule on or off without
    removing it; it is off unless CADENCE_SPACING_ENABLED is set.
    """

    max_touches: int
    spacing_enabled: bool = False
    min_business_days: int = 5


def policy_for_channel(channel: Channel) -> CadencePolicy:
    max_touches = (
        settings.SMS_MAX_TOUCHES if Channel(channel) == Channel.SMS else settings.EMAIL_MAX_TOUCHES
    )
    return CadencePolicy(
        max_touches=max_touches,
        spacing_enabled=settings.CADENCE_SPACING_ENABLED,
        min_business_days=settings.CADENCE_MIN_BUSINESS_DAYS,
    )


def dial_tracking_policy() -> CadencePolicy:
    """Legacy call-attempt cadence: 8 dials, same spacing switch."""
    return CadencePolicy(
        max_touches=settings.DIAL_MAX_TOUCHES,
        spacing_enabled=settings.CADENCE_SPACING_ENABLED,
        min_business_days=settings.CADENCE_MIN_BUSINESS_DAYS,
    )


def is_eligible_for_next_touch(
    item: OutreachQueueItem, policy: CadencePolicy, now: datetime | None = None
) -> bool:
    """Whether the item may receive its next touch at `now`."""
    now = ensure_utc(now) or utc_now()
    if QueueItemStatus(item.status) != QueueItemStatus.PENDING:
        return False
    if item.touch_count >= policy.max_touches:
        return False

    last_sent = ensure_utc(item.last_sent_at)
    if last_sent is None:
        return True

    # One touch per contact per business-timezone day
    if same_business_day(last_sent, now):
        return False

    if policy.spacing_enabled:
        return business_days_between(last_sent, now) >= policy.min_business_days
    return True


def _meter_write(db: Session, item: OutreachQueueItem, now: datetime | None = None) -> None:
    rate_limit_service.consume(db, item.location_id, RateLimitKind.CRM_WRITE, now)


async def record_touch(
    db: Session,
    crm: CrmClient,
    item: OutreachQueueItem,
    policy: CadencePolicy,
    now: datetime | None = None,
) -> OutreachQueueItem:
    """
    Count a delivered touch.

    Increments the queue counter, mirrors it to the CRM contact, and completes
    the item with the terminal disposition when the ceiling is reached.
    Every CRM write made here takes one crm_write unit for the item's location.
    """
    now = ensure_utc(now) or utc_now()
    new_count = item.touch_count + 1
    outreach_queue_service.mark_sent(db, item, new_count, policy.max_touches, now)

    channel = Channel(item.channel)
    try:
        _meter_write(db, item, now)
        await crm.update_custom_fields(
            item.contact_id,
            {
                TOUCH_COUNT_FIELDS[channel]: new_count,
                crm_fields.LAST_TOUCH_DATE: now.date().isoformat(),
            },
        )
    except OutreachError as exc:
        logger.warning(
            "Touch counter mirror failed: %s",
            exc,
            extra=build_log_context(contact_id=item.contact_id, channel=channel.value),
        )

    if new_count == policy.max_touches:
        await on_max_touches_reached(db, crm, item, now)
    return item


async def on_max_touches_reached(
    db: Session, crm: CrmClient, item: OutreachQueueItem, now: datetime | None = None
) -> bool:
    """
    Write the terminal disposition and complete the item.

    Only items in SENT are processed, so each item gets exactly one successful
    write. On CRM failure the item stays SENT and is retried by
    complete_exhausted_items. Returns True when the item was completed.
    """
    if QueueItemStatus(item.status) != QueueItemStatus.SENT:
        return False

    log_context = build_log_context(contact_id=item.contact_id, channel=item.channel)
    try:
        opportunities = await crm.get_opportunities_for_contact(item.contact_id)
        if opportunities:
            _meter_write(db, item, now)
            await crm.update_opportunity(
                opportunities[0].id,
                {crm_fields.OPPORTUNITY_DISPOSITION: DIRECT_MAIL_DISPOSITION},
            )
        else:
            logger.info("No opportunity for exhausted contact", extra=log_context)
    except OutreachError as exc:
        logger.warning("Terminal disposition write failed: %s", exc, extra=log_context)
        return False

    outreach_queue_service.mark_status(db, item, QueueItemStatus.COMPLETED)
    logger.info("Touch ceiling reached, contact moved to direct mail", extra=log_context)
    return True


async def complete_exhausted_items(
    db: Session, crm: CrmClient, user_id: str, channel: Channel
) -> int:
    """Retry terminal disposition writes left pending by earlier runs."""
    completed = 0
    for item in outreach_queue_service.get_exhausted_items(db, user_id, channel):
        if await on_max_touches_reached(db, crm, item):
            completed += 1
    return completed
