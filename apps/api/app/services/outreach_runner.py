"""Scheduled outreach runner for SMS and email touches.

One pass per channel, triggered hourly by the scheduler:

1. Closed business hours -> nothing is sent.
2. For each active CRM integration: get a token (skip the account if none),
   retry pending terminal dispositions, then pull the PENDING batch.
3. For each item: quota check, cadence check, send, record.

Per-item errors are logged and the batch continues. A denied quota stops that
account's slice and leaves the remaining items PENDING. Unexpected exceptions
propagate to the scheduler.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable

import httpx
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.structured_logging import build_log_context
from app.db.enums import Channel, RateLimitKind
from app.db.models import CrmIntegration, OutreachQueueItem
from app.schemas.outreach import OutreachRunResult
from app.services import (
    cadence_service,
    crm_token_service,
    outreach_queue_service,
    outreach_templates,
    rate_limit_service,
)
from app.services.crm_client import CrmClient
from app.services.crm_token_service import TokenResult
from app.services.outreach_errors import (
    OutreachError,
    PermanentRejection,
    QuotaExceeded,
    TokenUnavailable,
)
from app.utils.business_hours import is_open, next_open_message
from app.utils.datetime_parsing import ensure_utc, utc_now

logger = logging.getLogger(__name__)

ClientFactory = Callable[[TokenResult], CrmClient]
Sleep = Callable[[float], Awaitable[None]]

QUOTA_KINDS = {
    Channel.SMS: RateLimitKind.SMS,
    Channel.EMAIL: RateLimitKind.EMAIL,
}


def default_client_factory(token: TokenResult) -> CrmClient:
    return CrmClient(token.token, token.location_id)


def _batch_limit(channel: Channel) -> int:
    return settings.SMS_BATCH_LIMIT if channel == Channel.SMS else settings.EMAIL_BATCH_LIMIT


def _send_delay(channel: Channel) -> float:
    return (
        settings.SMS_SEND_DELAY_SECONDS
        if channel == Channel.SMS
        else settings.EMAIL_SEND_DELAY_SECONDS
    )


async def _send_touch(
    crm: CrmClient,
    item: OutreachQueueItem,
    channel: Channel,
    token: TokenResult,
) -> None:
    if channel == Channel.SMS:
        message = outreach_templates.render_sms(item)
        await crm.send_message(item.contact_id, Channel.SMS, message.body)
        return

    message = outreach_templates.render_email(item)
    await crm.send_message(
        item.contact_id,
        Channel.EMAIL,
        message.body,
        from_address=token.campaign_email,
        subject=message.subject,
    )


async def process_account(
    db: Session,
    crm: CrmClient,
    token: TokenResult,
    channel: Channel,
    *,
    now: datetime,
    sleep: Sleep = asyncio.sleep,
) -> int:
    """
    Work one account's batch for one channel. Returns the number of touches sent.

    Raises QuotaExceeded when the account's quota runs out mid-batch.
    """
    policy = cadence_service.policy_for_channel(channel)
    quota_kind = QUOTA_KINDS[channel]
    log_context = build_log_context(
        user_id=token.user_id, location_id=token.location_id, channel=channel.value
    )

    await cadence_service.complete_exhausted_items(db, crm, token.user_id, channel)

    batch = outreach_queue_service.get_pending_batch(
        db, token.user_id, channel, _batch_limit(channel)
    )
    if not batch:
        logger.info("Outreach queue empty", extra=log_context)
        return 0

    if channel == Channel.EMAIL and not token.campaign_email:
        logger.warning("No campaign email configured, skipping email batch", extra=log_context)
        return 0

    sent = 0
    for item in batch:
        item_context = {**log_context, "contact_id": item.contact_id}

        decision = rate_limit_service.check_quota(db, token.location_id, quota_kind, now)
        if not decision.allowed:
            raise QuotaExceeded(token.location_id, quota_kind.value)

        if not cadence_service.is_eligible_for_next_touch(item, policy, now):
            logger.debug("Contact not due for next touch", extra=item_context)
            continue

        if channel == Channel.EMAIL and not item.contact_email:
            logger.info("Queue item has no email address, skipping", extra=item_context)
            continue

        if sent:
            await sleep(_send_delay(channel))

        try:
            await _send_touch(crm, item, channel, token)
        except OutreachError as exc:
            outreach_queue_service.mark_failure(db, item, exc)
            if isinstance(exc, PermanentRejection):
                logger.warning("Send rejected, item failed: %s", exc, extra=item_context)
            else:
                logger.warning("Send failed, will retry next run: %s", exc, extra=item_context)
            continue

        rate_limit_service.consume(db, token.location_id, quota_kind, now)
        await cadence_service.record_touch(db, crm, item, policy, now)
        sent += 1
        logger.info("Touch %s sent", item.touch_count, extra=item_context)

    return sent


async def _run_channel(
    db: Session,
    channel: Channel,
    *,
    now: datetime | None,
    client_factory: ClientFactory | None,
    sleep: Sleep,
    token_transport: httpx.AsyncBaseTransport | None,
) -> OutreachRunResult:
    now = ensure_utc(now) or utc_now()

    if not is_open(now):
        message = next_open_message(now)
        logger.info("Outside business hours, %s outreach skipped: %s", channel.value, message)
        return OutreachRunResult(status_code=200, message=message)

    factory = client_factory or default_client_factory
    integrations: list[CrmIntegration] = crm_token_service.list_active_integrations(db)
    sent_total = 0
    processed_accounts = 0
    skipped_accounts = 0

    for integration in integrations:
        log_context = build_log_context(
            user_id=integration.user_id,
            location_id=integration.location_id,
            channel=channel.value,
        )
        try:
            token = await crm_token_service.get_valid_token(
                db, integration.user_id, now=now, transport=token_transport
            )
            if token is None:
                raise TokenUnavailable(f"No usable CRM token for user {integration.user_id}")
            sent_total += await process_account(
                db, factory(token), token, channel, now=now, sleep=sleep
            )
            processed_accounts += 1
        except TokenUnavailable as exc:
            skipped_accounts += 1
            logger.warning("Skipping account: %s", exc, extra=log_context)
        except QuotaExceeded as exc:
            processed_accounts += 1
            logger.info("Stopping batch: %s", exc, extra=log_context)

    message = f"Processed {sent_total} {channel.value} touches"
    logger.info(
        "%s outreach pass done: %s sent, %s accounts, %s skipped",
        channel.value,
        sent_total,
        processed_accounts,
        skipped_accounts,
    )
    result = OutreachRunResult(
        status_code=200,
        message=message,
        accounts_processed=processed_accounts,
        accounts_skipped=skipped_accounts,
    )
    if channel == Channel.SMS:
        result.contacts_processed = sent_total
    else:
        result.emails_sent = sent_total
    return result


async def run_sms_outreach(
    db: Session,
    *,
    now: datetime | None = None,
    client_factory: ClientFactory | None = None,
    sleep: Sleep = asyncio.sleep,
    token_transport: httpx.AsyncBaseTransport | None = None,
) -> OutreachRunResult:
    """Scheduled SMS pass."""
    return await _run_channel(
        db,
        Channel.SMS,
        now=now,
        client_factory=client_factory,
        sleep=sleep,
        token_transport=token_transport,
    )


async def run_email_outreach(
    db: Session,
    *,
    now: datetime | None = None,
    client_factory: ClientFactory | None = None,
    sleep: Sleep = asyncio.sleep,
    token_transport: httpx.AsyncBaseTransport | None = None,
) -> OutreachRunResult:
    """Scheduled email pass."""
    return await _run_channel(
        db,
        Channel.EMAIL,
        now=now,
        client_factory=client_factory,
        sleep=sleep,
        token_transport=token_transport,
    )
