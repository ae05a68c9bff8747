"""Pydantic schemas for outreach queue, webhooks and scheduled runs."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from app.db.enums import Channel
from app.utils.normalization import normalize_email, normalize_phone


class QueueItemCreate(BaseModel):
    """Fields captured when a CRM contact is tagged for outreach."""
    user_id: str
    location_id: str
    contact_id: str
    channel: Channel
    lead_id: str | None = None
    property_address: str | None = None
    contact_name: str | None = None
    contact_phone: str | None = None
    contact_email: str | None = None


class QueueItemRead(BaseModel):
    """Queue item response schema."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: str
    contact_id: str
    channel: str
    lead_id: str | None
    status: str
    touch_count: int
    last_sent_at: datetime | None
    created_at: datetime


class InboundMessageEvent(BaseModel):
    """Inbound SMS/email webhook body."""
    model_config = ConfigDict(populate_by_name=True)

    contact_id: str = Field(alias="contactId")
    conversation_id: str | None = Field(default=None, alias="conversationId")
    location_id: str = Field(alias="locationId")
    channel: Channel = Channel.SMS
    body: str
    message_id: str | None = Field(default=None, alias="messageId")


class InboundMessageResult(BaseModel):
    reply: str | None = None
    status: str


class DispositionEvent(BaseModel):
    """Call/SMS outcome webhook body."""
    model_config = ConfigDict(populate_by_name=True)

    contact_id: str = Field(alias="contactId")
    location_id: str | None = Field(default=None, alias="locationId")
    outcome: str = Field(min_length=1)


class DispositionResult(BaseModel):
    updated_contacts: int


class EmailBounceEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    contact_id: str = Field(alias="contactId")
    email: EmailStr | None = None


class OutreachRunResult(BaseModel):
    """Result of one scheduled runner pass."""
    status_code: int = 200
    message: str
    contacts_processed: int = 0
    emails_sent: int = 0
    accounts_processed: int = 0
    accounts_skipped: int = 0


class ContactTaggedEvent(BaseModel):
    """Contact tagged for AI outreach in the CRM; one queue item per channel."""
    model_config = ConfigDict(populate_by_name=True)

    contact_id: str = Field(alias="contactId")
    location_id: str = Field(alias="locationId")
    channels: list[Channel] = Field(default_factory=lambda: [Channel.SMS, Channel.EMAIL])
    lead_id: str | None = Field(default=None, alias="leadId")
    property_address: str | None = Field(default=None, alias="propertyAddress")
    contact_name: str | None = Field(default=None, alias="name")
    phone: str | None = None
    email: str | None = None

    @field_validator("phone")
    @classmethod
    def _normalize_phone(cls, v: str | None) -> str | None:
        return normalize_phone(v)

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, v: str | None) -> str | None:
        return normalize_email(v)


class EnqueueResult(BaseModel):
    created: int
    existing: int
