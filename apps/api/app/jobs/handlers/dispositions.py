"""Disposition broadcast job handlers."""

from __future__ import annotations

import logging

from app.services import crm_token_service, disposition_service
from app.services.crm_client import CrmClient

logger = logging.getLogger(__name__)


async def process_disposition_broadcast(db, job) -> None:
    """Fan a terminal outcome out to the contact's siblings."""
    payload = job.payload or {}
    contact_id = payload.get("contact_id")
    location_id = payload.get("location_id")
    outcome = payload.get("outcome")
    if not contact_id or not location_id or not outcome:
        raise Exception("Missing contact_id, location_id or outcome in disposition job payload")

    token = await crm_token_service.require_token_for_location(db, location_id)
    crm = CrmClient(token.token, token.location_id)
    result = await disposition_service.on_terminal_outcome(db, crm, contact_id, outcome)
    logger.info(
        "Disposition job %s: %s updated, %s failed, %s skipped",
        job.id,
        result.updated_contacts,
        len(result.failed_contacts),
        len(result.skipped_contacts),
    )
