"""Disposition broadcasting to sibling contacts.

One property lead fans out into several CRM contacts (one per phone number).
When any of them reaches a terminal call/SMS outcome, every sibling gets the
same call outcome, and STOP outcomes opt all of them out of outreach.

Siblings are resolved from the outreach queue with a degrading match:
lead id, then property address, then normalized name prefix, then only the
triggering contact. The first resolver that finds anything wins.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable

from sqlalchemy.orm import Session

from app.core import crm_fields
from app.core.config import settings
from app.core.constants import STOP_DISPOSITIONS
from app.core.structured_logging import build_log_context
from app.db.enums import QueueItemStatus, RateLimitKind
from app.db.models import OutreachQueueItem
from app.services import outreach_queue_service, rate_limit_service
from app.services.crm_client import CrmClient
from app.services.outreach_errors import OutreachError
from app.utils.datetime_parsing import utc_now
from app.utils.normalization import name_prefix, normalize_address

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


@dataclass
class SiblingKey:
    """What is known about the triggering contact for sibling matching."""

    contact_id: str
    location_id: str | None = None
    lead_id: str | None = None
    property_address: str | None = None
    contact_name: str | None = None


@dataclass
class BroadcastResult:
    updated_contacts: int = 0
    failed_contacts: list[str] = field(default_factory=list)
    skipped_contacts: list[str] = field(default_factory=list)
    resolver: str = "singleton"


def is_stop_outcome(outcome: str) -> bool:
    return outcome.strip().lower() in STOP_DISPOSITIONS


def _location_items(db: Session, key: SiblingKey) -> list[OutreachQueueItem]:
    query = db.query(OutreachQueueItem)
    if key.location_id:
        query = query.filter(OutreachQueueItem.location_id == key.location_id)
    return query.order_by(OutreachQueueItem.created_at, OutreachQueueItem.id).all()


def _contact_ids(items: list[OutreachQueueItem]) -> list[str]:
    seen: list[str] = []
    for item in items:
        if item.contact_id not in seen:
            seen.append(item.contact_id)
    return seen


def resolve_by_lead_id(db: Session, key: SiblingKey) -> list[str]:
    if not key.lead_id:
        return []
    query = db.query(OutreachQueueItem).filter(OutreachQueueItem.lead_id == key.lead_id)
    if key.location_id:
        query = query.filter(OutreachQueueItem.location_id == key.location_id)
    return _contact_ids(query.order_by(OutreachQueueItem.created_at, OutreachQueueItem.id).all())


def resolve_by_address(db: Session, key: SiblingKey) -> list[str]:
    wanted = normalize_address(key.property_address)
    if not wanted:
        return []
    return _contact_ids(
        [i for i in _location_items(db, key) if normalize_address(i.property_address) == wanted]
    )


def resolve_by_name_prefix(db: Session, key: SiblingKey) -> list[str]:
    wanted = name_prefix(key.contact_name)
    if not wanted:
        return []
    return _contact_ids(
        [i for i in _location_items(db, key) if name_prefix(i.contact_name) == wanted]
    )


def resolve_singleton(db: Session, key: SiblingKey) -> list[str]:
    return [key.contact_id]


SIBLING_RESOLVERS: list[tuple[str, Callable[[Session, SiblingKey], list[str]]]] = [
    ("lead_id", resolve_by_lead_id),
    ("property_address", resolve_by_address),
    ("name_prefix", resolve_by_name_prefix),
    ("singleton", resolve_singleton),
]


def resolve_siblings(db: Session, key: SiblingKey) -> tuple[str, list[str]]:
    """Run the resolver chain; returns (resolver name, contact ids including the trigger)."""
    for name, resolver in SIBLING_RESOLVERS:
        contact_ids = resolver(db, key)
        if contact_ids:
            return name, contact_ids
    return "singleton", [key.contact_id]


async def build_sibling_key(db: Session, crm: CrmClient, contact_id: str) -> SiblingKey:
    """Prefer the queue record; contacts never queued are read from the CRM."""
    items = outreach_queue_service.get_items_for_contact(db, contact_id)
    if items:
        item = items[0]
        return SiblingKey(
            contact_id=contact_id,
            location_id=item.location_id,
            lead_id=next((i.lead_id for i in items if i.lead_id), None),
            property_address=next((i.property_address for i in items if i.property_address), None),
            contact_name=item.contact_name,
        )

    contact = await crm.get_contact(contact_id)
    return SiblingKey(
        contact_id=contact_id,
        location_id=contact.location_id or crm.location_id,
        lead_id=contact.field(crm_fields.LEAD_SOURCE_ID),
        property_address=contact.field(crm_fields.PROPERTY_ADDRESS),
        contact_name=contact.full_name or None,
    )


async def on_terminal_outcome(
    db: Session,
    crm: CrmClient,
    trigger_contact_id: str,
    outcome: str,
    *,
    now: datetime | None = None,
    sleep: Sleep = asyncio.sleep,
) -> BroadcastResult:
    """
    Copy a terminal outcome to every sibling of the triggering contact.

    Sequential and spaced for the CRM rate limits. A failed sibling is logged
    and skipped; a denied crm_write quota stops the fan-out and the rest are
    reported as skipped. Stop outcomes opt every sibling out of the queue
    before any CRM write. Repeating a broadcast writes the same values.
    """
    stop = is_stop_outcome(outcome)
    key = await build_sibling_key(db, crm, trigger_contact_id)
    resolver, contact_ids = resolve_siblings(db, key)
    siblings = [c for c in contact_ids if c != trigger_contact_id]
    location_id = key.location_id or crm.location_id
    result = BroadcastResult(resolver=resolver)
    log_context = build_log_context(location_id=location_id, contact_id=trigger_contact_id)

    if stop:
        # Local suppression does not depend on the CRM writes below.
        for contact_id in contact_ids:
            outreach_queue_service.mark_contact_status(db, contact_id, QueueItemStatus.OPTED_OUT)
        if trigger_contact_id not in contact_ids:
            outreach_queue_service.mark_contact_status(
                db, trigger_contact_id, QueueItemStatus.OPTED_OUT
            )

    logger.info(
        "Broadcasting outcome to %s siblings (resolver=%s, stop=%s)",
        len(siblings),
        resolver,
        stop,
        extra=log_context,
    )

    for index, sibling_id in enumerate(siblings):
        sibling_context = {**log_context, "contact_id": sibling_id}

        decision = rate_limit_service.check_and_reserve(
            db, location_id, RateLimitKind.CRM_WRITE, now or utc_now()
        )
        if not decision.allowed:
            result.skipped_contacts.extend(siblings[index:])
            logger.warning(
                "CRM write quota exhausted, %s siblings skipped",
                len(siblings) - index,
                extra=sibling_context,
            )
            break

        if index:
            await sleep(settings.DISPOSITION_SPACING_SECONDS)

        try:
            await crm.update_custom_fields(sibling_id, {crm_fields.CALL_OUTCOME: outcome})
        except OutreachError as exc:
            result.failed_contacts.append(sibling_id)
            logger.warning("Sibling outcome update failed: %s", exc, extra=sibling_context)
            continue

        result.updated_contacts += 1

    return result


async def handle_disposition_webhook(
    db: Session,
    crm: CrmClient,
    contact_id: str,
    outcome: str,
    *,
    sleep: Sleep = asyncio.sleep,
) -> dict[str, int]:
    """Entry point for the CRM call-outcome webhook."""
    result = await on_terminal_outcome(db, crm, contact_id, outcome, sleep=sleep)
    return {"updated_contacts": result.updated_contacts}
