"""Outreach queue - the single source of truth for who is due a touch.

Runners read batches only from here. There is deliberately no live CRM search
fallback when a batch is empty: two independent "who is due" paths produced
duplicate sends.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.db.enums import Channel, QueueItemStatus, TERMINAL_QUEUE_STATUSES
from app.db.models import OutreachQueueItem
from app.schemas.outreach import QueueItemCreate
from app.services.outreach_errors import OutreachError, PermanentRejection
from app.utils.datetime_parsing import utc_now

logger = logging.getLogger(__name__)


class QueueServiceError(Exception):
    """Base exception for outreach queue errors."""

    pass


class TerminalQueueItemError(QueueServiceError):
    """Item is opted out or completed and cannot be reopened."""

    pass


def _find(db: Session, contact_id: str, channel: Channel) -> OutreachQueueItem | None:
    return (
        db.query(OutreachQueueItem)
        .filter(
            OutreachQueueItem.contact_id == contact_id,
            OutreachQueueItem.channel == Channel(channel).value,
        )
        .first()
    )


def enqueue(db: Session, data: QueueItemCreate) -> tuple[OutreachQueueItem, bool]:
    """
    Add a contact to a channel queue.

    Idempotent on (contact_id, channel): an existing item is returned untouched
    so its touch progress survives re-syncs. Returns (item, created).
    """
    existing = _find(db, data.contact_id, data.channel)
    if existing:
        return existing, False

    item = OutreachQueueItem(
        user_id=data.user_id,
        location_id=data.location_id,
        contact_id=data.contact_id,
        channel=data.channel.value,
        lead_id=data.lead_id,
        property_address=data.property_address,
        contact_name=data.contact_name,
        contact_phone=data.contact_phone,
        contact_email=data.contact_email,
        status=QueueItemStatus.PENDING.value,
        touch_count=0,
    )
    db.add(item)
    try:
        db.commit()
    except IntegrityError:
        # Concurrent sync created the same key
        db.rollback()
        existing = _find(db, data.contact_id, data.channel)
        if existing is None:
            raise
        return existing, False

    db.refresh(item)
    logger.info("Queued contact %s for %s outreach", data.contact_id, data.channel.value)
    return item, True


def get_pending_batch(
    db: Session, user_id: str, channel: Channel, limit: int
) -> list[OutreachQueueItem]:
    """PENDING items for one user and channel, oldest first."""
    return (
        db.query(OutreachQueueItem)
        .filter(
            OutreachQueueItem.user_id == user_id,
            OutreachQueueItem.channel == Channel(channel).value,
            OutreachQueueItem.status == QueueItemStatus.PENDING.value,
        )
        .order_by(OutreachQueueItem.created_at, OutreachQueueItem.id)
        .limit(limit)
        .all()
    )


def get_exhausted_items(
    db: Session, user_id: str, channel: Channel
) -> list[OutreachQueueItem]:
    """Items that hit the touch ceiling but whose terminal disposition is not written yet."""
    return (
        db.query(OutreachQueueItem)
        .filter(
            OutreachQueueItem.user_id == user_id,
            OutreachQueueItem.channel == Channel(channel).value,
            OutreachQueueItem.status == QueueItemStatus.SENT.value,
        )
        .order_by(OutreachQueueItem.created_at)
        .all()
    )


def mark_sent(
    db: Session,
    item: OutreachQueueItem,
    new_touch_count: int,
    max_touches: int,
    now: datetime | None = None,
) -> OutreachQueueItem:
    """
    Record a successful touch.

    The item stays PENDING while under the ceiling and becomes SENT when the
    ceiling is reached (the cadence tracker then completes it).
    """
    if new_touch_count > max_touches:
        raise QueueServiceError(
            f"Touch count {new_touch_count} exceeds ceiling {max_touches} for item {item.id}"
        )
    item.touch_count = new_touch_count
    item.last_sent_at = now or utc_now()
    item.last_error = None
    item.status = (
        QueueItemStatus.SENT.value
        if new_touch_count >= max_touches
        else QueueItemStatus.PENDING.value
    )
    db.commit()
    db.refresh(item)
    return item


def mark_status(
    db: Session, item: OutreachQueueItem, status: QueueItemStatus
) -> OutreachQueueItem:
    """Set an item's status. Terminal items only accept other terminal statuses."""
    status = QueueItemStatus(status)
    current = QueueItemStatus(item.status)
    if current in TERMINAL_QUEUE_STATUSES and status not in TERMINAL_QUEUE_STATUSES:
        raise TerminalQueueItemError(
            f"Queue item {item.id} is {current.value} and cannot move to {status.value}"
        )
    if current == status:
        return item
    item.status = status.value
    db.commit()
    db.refresh(item)
    return item


def mark_failure(
    db: Session, item: OutreachQueueItem, error: OutreachError
) -> OutreachQueueItem:
    """Permanent rejections fail the item; anything else leaves it PENDING for the next run."""
    item.last_error = str(error)[:1000]
    if isinstance(error, PermanentRejection):
        item.status = QueueItemStatus.FAILED.value
    db.commit()
    db.refresh(item)
    return item


def get_items_for_contact(db: Session, contact_id: str) -> list[OutreachQueueItem]:
    return (
        db.query(OutreachQueueItem)
        .filter(OutreachQueueItem.contact_id == contact_id)
        .order_by(OutreachQueueItem.channel)
        .all()
    )


def mark_contact_status(
    db: Session, contact_id: str, status: QueueItemStatus
) -> list[OutreachQueueItem]:
    """
    Apply a status to every channel item of a contact.

    Terminal items are left unchanged unless the new status is OPTED_OUT,
    which also overrides COMPLETED. Returns the items that changed.
    """
    status = QueueItemStatus(status)
    changed: list[OutreachQueueItem] = []
    for item in get_items_for_contact(db, contact_id):
        current = QueueItemStatus(item.status)
        if current == status:
            continue
        if current in TERMINAL_QUEUE_STATUSES and status != QueueItemStatus.OPTED_OUT:
            continue
        item.status = status.value
        changed.append(item)
    if changed:
        db.commit()
    return changed


def mark_email_bounced(db: Session, contact_id: str) -> OutreachQueueItem | None:
    """Fail the contact's email item after a hard bounce."""
    item = _find(db, contact_id, Channel.EMAIL)
    if not item or QueueItemStatus(item.status) in TERMINAL_QUEUE_STATUSES:
        return item
    item.status = QueueItemStatus.FAILED.value
    item.last_error = "bounced"
    db.commit()
    db.refresh(item)
    return item


def queue_stats(db: Session, user_id: str | None = None) -> dict[str, dict[str, int]]:
    """Counts per channel and status, optionally for one user."""
    query = db.query(
        OutreachQueueItem.channel,
        OutreachQueueItem.status,
        func.count(OutreachQueueItem.id),
    )
    if user_id:
        query = query.filter(OutreachQueueItem.user_id == user_id)
    stats: dict[str, dict[str, int]] = {}
    for channel, status, count in query.group_by(
        OutreachQueueItem.channel, OutreachQueueItem.status
    ):
        stats.setdefault(channel, {})[status] = count
    return stats
