"""Enum definitions for application constants."""

from app.db.enums.jobs import JobStatus, JobType
from app.db.enums.outreach import (
    Channel,
    ConversationState,
    QueueItemStatus,
    RateLimitKind,
    ReplyIntent,
    TERMINAL_CONVERSATION_STATES,
    TERMINAL_QUEUE_STATUSES,
)

__all__ = [
    "Channel",
    "ConversationState",
    "JobStatus",
    "JobType",
    "QueueItemStatus",
    "RateLimitKind",
    "ReplyIntent",
    "TERMINAL_CONVERSATION_STATES",
    "TERMINAL_QUEUE_STATUSES",
]
