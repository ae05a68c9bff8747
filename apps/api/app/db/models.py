"""SQLAlchemy ORM models for the outreach core."""

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.db.enums import JobStatus, QueueItemStatus
from app.utils.datetime_parsing import utc_now


# =============================================================================
# CRM Integration
# =============================================================================


class CrmIntegration(Base):
    """
    OAuth connection between a user and one CRM location.

    Tokens are Fernet-encrypted at rest. At most one row per user is active;
    connecting again deactivates previous rows.
    """

    __tablename__ = "crm_integrations"
    __table_args__ = (Index("idx_crm_integrations_user_active", "user_id", "is_active"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    location_id: Mapped[str] = mapped_column(String(100), nullable=False)
    access_token_encrypted: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=text("true"), nullable=False
    )
    # Sender address for email campaigns; email outreach is skipped without it
    campaign_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # Incremented on each token write; refreshes only apply to the version they read
    token_version: Mapped[int] = mapped_column(
        Integer, default=1, server_default=text("1"), nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(
        default=utc_now, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utc_now, server_default=func.now(), onupdate=utc_now, nullable=False
    )


# =============================================================================
# Outreach Queue
# =============================================================================


class OutreachQueueItem(Base):
    """
    One contact awaiting touches on one channel.

    Unique per (contact_id, channel). Only PENDING items are batched;
    OPTED_OUT and COMPLETED are terminal.
    """

    __tablename__ = "outreach_queue_items"
    __table_args__ = (
        UniqueConstraint("contact_id", "channel", name="uq_outreach_queue_contact_channel"),
        Index("idx_outreach_queue_batch", "user_id", "channel", "status", "created_at"),
        Index("idx_outreach_queue_lead", "user_id", "lead_id"),
        Index("idx_outreach_queue_address", "user_id", "property_address"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    location_id: Mapped[str] = mapped_column(String(100), nullable=False)
    contact_id: Mapped[str] = mapped_column(String(100), nullable=False)
    channel: Mapped[str] = mapped_column(String(10), nullable=False)

    lead_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    property_address: Mapped[str | None] = mapped_column(String(500), nullable=True)
    contact_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    contact_phone: Mapped[str | None] = mapped_column(String(30), nullable=True)
    contact_email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20),
        default=QueueItemStatus.PENDING.value,
        server_default=text(f"'{QueueItemStatus.PENDING.value}'"),
        nullable=False,
    )
    touch_count: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0"), nullable=False
    )
    last_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        default=utc_now, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utc_now, server_default=func.now(), onupdate=utc_now, nullable=False
    )


# =============================================================================
# Rate Limiting
# =============================================================================


class RateLimitCounter(Base):
    """
    Hourly and daily send counters for one CRM location and quota kind.

    Windows reset lazily on the next write. Every write is conditional on
    `version` so concurrent runners never lose an increment.
    """

    __tablename__ = "rate_limit_counters"
    __table_args__ = (
        UniqueConstraint("location_id", "kind", name="uq_rate_limit_location_kind"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    location_id: Mapped[str] = mapped_column(String(100), nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    hourly_count: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0"), nullable=False
    )
    daily_count: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0"), nullable=False
    )
    last_hour_reset: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)
    last_day_reset: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)
    version: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0"), nullable=False
    )


# =============================================================================
# Inbound Dedup
# =============================================================================


class InboundMessageReceipt(Base):
    """Processed inbound message keys, used when Redis is not configured."""

    __tablename__ = "inbound_message_receipts"
    __table_args__ = (
        UniqueConstraint("message_key", name="uq_inbound_message_key"),
        Index("idx_inbound_receipts_created", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    message_key: Mapped[str] = mapped_column(String(255), nullable=False)
    contact_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        default=utc_now, server_default=func.now(), nullable=False
    )


# =============================================================================
# Background Jobs
# =============================================================================


class Job(Base):
    """
    Background job for async processing.

    Used for: disposition fan-out after STOP replies, queued outreach runs.
    Worker polls for pending jobs and processes them.
    """

    __tablename__ = "jobs"
    __table_args__ = (
        Index("idx_jobs_pending", "status", "run_at"),
        UniqueConstraint("idempotency_key", name="uq_job_idempotency"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    job_type: Mapped[str] = mapped_column(String(50), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    run_at: Mapped[datetime] = mapped_column(
        default=utc_now, server_default=func.now(), nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20),
        default=JobStatus.PENDING.value,
        server_default=text(f"'{JobStatus.PENDING.value}'"),
        nullable=False,
    )
    attempts: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0"), nullable=False
    )
    max_attempts: Mapped[int] = mapped_column(
        Integer, default=3, server_default=text("3"), nullable=False
    )
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        default=utc_now, server_default=func.now(), nullable=False
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
