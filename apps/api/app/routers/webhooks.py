"""Webhooks router - CRM workflow callbacks.

All endpoints are protected by the X-Webhook-Secret header and identify the
CRM account by location id.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.deps import (
    ClientFactory,
    ToolsFactory,
    get_ai_provider,
    get_client_factory,
    get_db,
    get_tools_factory,
    verify_webhook_secret,
)
from app.core.rate_limit import limiter
from app.core.structured_logging import build_log_context
from app.db.enums import Channel
from app.schemas.outreach import (
    ContactTaggedEvent,
    DispositionEvent,
    DispositionResult,
    EmailBounceEvent,
    EnqueueResult,
    InboundMessageEvent,
    InboundMessageResult,
    QueueItemCreate,
)
from app.services import (
    crm_token_service,
    disposition_service,
    inbound_service,
    outreach_queue_service,
)
from app.services.ai_provider import AIProvider
from app.services.crm_token_service import TokenResult
from app.services.outreach_errors import TokenUnavailable

router = APIRouter(
    prefix="/crm",
    dependencies=[Depends(verify_webhook_secret)],
)
logger = logging.getLogger(__name__)


async def _token_for_location(db: Session, location_id: str) -> TokenResult:
    try:
        return await crm_token_service.require_token_for_location(db, location_id)
    except TokenUnavailable as exc:
        logger.warning("CRM token unavailable: %s", exc, extra=build_log_context(location_id=location_id))
        raise HTTPException(status_code=503, detail="CRM integration unavailable")


@router.post("/inbound-message", response_model=InboundMessageResult)
@limiter.limit(settings.RATE_LIMIT_WEBHOOK)
async def inbound_message(
    request: Request,
    event: InboundMessageEvent,
    db: Session = Depends(get_db),
    client_factory: ClientFactory = Depends(get_client_factory),
    provider: AIProvider | None = Depends(get_ai_provider),
    tools_factory: ToolsFactory = Depends(get_tools_factory),
):
    """Inbound SMS/email reply from a contact."""
    token = await _token_for_location(db, event.location_id)
    crm = client_factory(token)
    from_address = token.campaign_email if event.channel == Channel.EMAIL else None
    return await inbound_service.handle_inbound_message(
        db, crm, provider, tools_factory(crm), event, from_address=from_address
    )


@router.post("/disposition", response_model=DispositionResult)
@limiter.limit(settings.RATE_LIMIT_WEBHOOK)
async def disposition(
    request: Request,
    event: DispositionEvent,
    db: Session = Depends(get_db),
    client_factory: ClientFactory = Depends(get_client_factory),
):
    """Call outcome set on a contact; fan it out to the contact's siblings."""
    location_id = event.location_id
    if not location_id:
        items = outreach_queue_service.get_items_for_contact(db, event.contact_id)
        if not items:
            raise HTTPException(status_code=422, detail="locationId required for unknown contact")
        location_id = items[0].location_id

    token = await _token_for_location(db, location_id)
    result = await disposition_service.handle_disposition_webhook(
        db, client_factory(token), event.contact_id, event.outcome
    )
    return DispositionResult(**result)


@router.post("/email-bounce")
async def email_bounce(event: EmailBounceEvent, db: Session = Depends(get_db)):
    """Hard bounce on an outreach email."""
    item = outreach_queue_service.mark_email_bounced(db, event.contact_id)
    if item is None:
        return {"status": "not_queued"}
    return {"status": item.status}


@router.post("/contact-tagged", response_model=EnqueueResult)
async def contact_tagged(event: ContactTaggedEvent, db: Session = Depends(get_db)):
    """Contact tagged for AI outreach; queue one item per reachable channel."""
    integration = crm_token_service.get_integration_by_location(db, event.location_id)
    if not integration:
        raise HTTPException(status_code=404, detail="No active CRM integration for location")

    phone = event.phone
    email = event.email
    created = existing = 0
    for channel in dict.fromkeys(event.channels):
        if channel == Channel.SMS and not phone:
            continue
        if channel == Channel.EMAIL and not email:
            continue
        _, was_created = outreach_queue_service.enqueue(
            db,
            QueueItemCreate(
                user_id=integration.user_id,
                location_id=event.location_id,
                contact_id=event.contact_id,
                channel=channel,
                lead_id=event.lead_id,
                property_address=event.property_address,
                contact_name=event.contact_name,
                contact_phone=phone,
                contact_email=email,
            ),
        )
        if was_created:
            created += 1
        else:
            existing += 1
    return EnqueueResult(created=created, existing=existing)
