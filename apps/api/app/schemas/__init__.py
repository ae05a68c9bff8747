"""Pydantic schemas for API request/response models."""

from app.schemas.crm import CrmContact, CrmOpportunity, FreeSlot
from app.schemas.outreach import (
    ContactTaggedEvent,
    DispositionEvent,
    DispositionResult,
    EmailBounceEvent,
    EnqueueResult,
    InboundMessageEvent,
    InboundMessageResult,
    OutreachRunResult,
    QueueItemCreate,
    QueueItemRead,
)

__all__ = [
    # CRM
    "CrmContact",
    "CrmOpportunity",
    "FreeSlot",
    # Outreach
    "QueueItemCreate",
    "QueueItemRead",
    "InboundMessageEvent",
    "InboundMessageResult",
    "DispositionEvent",
    "DispositionResult",
    "EmailBounceEvent",
    "OutreachRunResult",
    "ContactTaggedEvent",
    "EnqueueResult",
]
