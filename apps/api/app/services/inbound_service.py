"""Inbound SMS/email replies from the CRM.

Every reply is claimed once, triaged (stop, wrong contact, conversation), and
only conversational replies reach the AI engine.
"""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from app.core.constants import DNC_TAG, STOP_REPLY_OUTCOME, WRONG_CONTACT_TAG
from app.core.structured_logging import build_log_context
from app.db.enums import JobType, QueueItemStatus, ReplyIntent
from app.schemas.outreach import InboundMessageEvent, InboundMessageResult
from app.services import (
    conversation_service,
    idempotency_service,
    job_service,
    outreach_queue_service,
)
from app.services.ai_provider import AIProvider
from app.services.conversation_state import TransitionPolicy, classify_reply
from app.services.conversation_tools import ConversationTools
from app.services.crm_client import CrmClient
from app.services.outreach_errors import IneligibleContact, OutreachError, QuotaExceeded

logger = logging.getLogger(__name__)

WRONG_CONTACT_NOTE = "Contact replied that this is the wrong person or number. AI outreach stopped."


async def _mark_in_crm(
    crm: CrmClient,
    contact_id: str,
    tag: str,
    *,
    note: str | None = None,
    log_context: dict,
) -> None:
    """
    Tag (and optionally annotate) the contact in the CRM.

    Failures are logged only: the opt-out is already recorded in the queue
    and, for stop replies, in the scheduled broadcast job.
    """
    try:
        await crm.add_tags(contact_id, [tag])
        if note:
            await crm.add_note(contact_id, note)
    except OutreachError as exc:
        logger.warning("CRM tag write failed for %s: %s", tag, exc, extra=log_context)


async def handle_inbound_message(
    db: Session,
    crm: CrmClient,
    provider: AIProvider | None,
    tools: ConversationTools,
    event: InboundMessageEvent,
    *,
    policy: TransitionPolicy | None = None,
    from_address: str | None = None,
) -> InboundMessageResult:
    """
    Process one inbound message.

    Statuses: duplicate, opted_out, wrong_contact, ineligible, ai_unavailable,
    quota_exceeded, handoff, no_reply, replied.
    """
    log_context = build_log_context(
        location_id=event.location_id,
        contact_id=event.contact_id,
        channel=event.channel.value,
    )
    key = idempotency_service.message_key(
        message_id=event.message_id,
        contact_id=event.contact_id,
        conversation_id=event.conversation_id,
        body=event.body,
    )
    if not await idempotency_service.claim(db, key, event.contact_id):
        logger.info("Duplicate inbound message ignored", extra=log_context)
        return InboundMessageResult(status="duplicate")

    intent = classify_reply(event.body)

    if intent == ReplyIntent.STOP:
        outreach_queue_service.mark_contact_status(db, event.contact_id, QueueItemStatus.OPTED_OUT)
        job_service.schedule_job(
            db,
            JobType.DISPOSITION_BROADCAST,
            {
                "contact_id": event.contact_id,
                "location_id": event.location_id,
                "outcome": STOP_REPLY_OUTCOME,
            },
            idempotency_key=f"disposition:{key}",
        )
        await _mark_in_crm(crm, event.contact_id, DNC_TAG, log_context=log_context)
        logger.info("Contact opted out by reply", extra=log_context)
        return InboundMessageResult(status="opted_out")

    if intent == ReplyIntent.WRONG_CONTACT:
        outreach_queue_service.mark_contact_status(db, event.contact_id, QueueItemStatus.OPTED_OUT)
        await _mark_in_crm(
            crm, event.contact_id, WRONG_CONTACT_TAG, note=WRONG_CONTACT_NOTE, log_context=log_context
        )
        logger.info("Contact reported wrong contact info", extra=log_context)
        return InboundMessageResult(status="wrong_contact")

    outreach_queue_service.mark_contact_status(db, event.contact_id, QueueItemStatus.REPLIED)

    if provider is None:
        logger.warning("No AI provider configured, reply left for a human", extra=log_context)
        return InboundMessageResult(status="ai_unavailable")

    try:
        outcome = await conversation_service.process_inbound(
            crm,
            provider,
            tools,
            db=db,
            contact_id=event.contact_id,
            channel=event.channel,
            text=event.body,
            policy=policy,
            from_address=from_address,
        )
    except IneligibleContact as exc:
        logger.info("No AI reply: %s", exc.reason, extra=log_context)
        return InboundMessageResult(status="ineligible")
    except QuotaExceeded as exc:
        logger.warning("No AI reply: %s", exc, extra=log_context)
        return InboundMessageResult(status="quota_exceeded")

    if outcome.handoff:
        return InboundMessageResult(reply=outcome.reply, status="handoff")
    if outcome.reply is None:
        return InboundMessageResult(status="no_reply")
    return InboundMessageResult(reply=outcome.reply, status="replied")
