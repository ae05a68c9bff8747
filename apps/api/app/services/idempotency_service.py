"""Inbound message dedup.

CRM webhooks are delivered at least once. Each message is claimed once under a
key with a TTL in Redis; without Redis, the claim is a unique row in
inbound_message_receipts.
"""

from __future__ import annotations

import hashlib
import logging

from redis.exceptions import RedisError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.redis_client import get_async_redis_client
from app.db.models import InboundMessageReceipt

logger = logging.getLogger(__name__)

KEY_PREFIX = "inbound:"


def message_key(
    *,
    message_id: str | None,
    contact_id: str,
    conversation_id: str | None,
    body: str,
) -> str:
    """Vendor message id when present, else a hash of what identifies the message."""
    if message_id:
        return f"{KEY_PREFIX}{message_id}"
    digest = hashlib.sha256(
        "\x1f".join([contact_id, conversation_id or "", body]).encode("utf-8")
    ).hexdigest()
    return f"{KEY_PREFIX}{digest}"


def _claim_in_db(db: Session, key: str, contact_id: str | None) -> bool:
    db.add(InboundMessageReceipt(message_key=key, contact_id=contact_id))
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return False
    return True


async def claim(db: Session, key: str, contact_id: str | None = None) -> bool:
    """
    Claim a message key. Returns True for the first claim, False for a duplicate.
    """
    client = get_async_redis_client()
    if client is not None:
        try:
            claimed = await client.set(
                key, contact_id or "1", nx=True, ex=settings.INBOUND_DEDUP_TTL_SECONDS
            )
            return bool(claimed)
        except RedisError:
            logger.warning("Redis dedup unavailable, using database receipts", exc_info=True)
    return _claim_in_db(db, key, contact_id)
