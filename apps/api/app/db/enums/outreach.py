"""Outreach and conversation enums."""

from enum import Enum


class Channel(str, Enum):
    """Outbound channel of a queue item."""

    SMS = "sms"
    EMAIL = "email"


class QueueItemStatus(str, Enum):
    """Lifecycle of an outreach queue item."""

    PENDING = "pending"
    SENT = "sent"  # Touch ceiling reached, terminal disposition not yet written
    REPLIED = "replied"
    FAILED = "failed"
    OPTED_OUT = "opted_out"
    COMPLETED = "completed"


TERMINAL_QUEUE_STATUSES = frozenset(
    {QueueItemStatus.OPTED_OUT, QueueItemStatus.COMPLETED}
)


class RateLimitKind(str, Enum):
    """Quota bucket tracked per CRM location."""

    SMS = "sms"
    EMAIL = "email"
    CRM_WRITE = "crm_write"


class ConversationState(str, Enum):
    """Node of the AI conversation state machine, stored on the contact."""

    NEW_LEAD = "new_lead"
    ASK_INTENT = "ask_intent"
    SELLER_QUALIFICATION = "seller_qualification"
    BUYER_QUALIFICATION = "buyer_qualification"
    PROPERTY_VALUATION = "property_valuation"
    APPOINTMENT_BOOKING = "appointment_booking"
    QUALIFIED = "qualified"
    HANDOFF = "handoff"


TERMINAL_CONVERSATION_STATES = frozenset(
    {ConversationState.QUALIFIED, ConversationState.HANDOFF}
)


class ReplyIntent(str, Enum):
    """Coarse classification of an inbound reply before the state machine runs."""

    STOP = "stop"
    WRONG_CONTACT = "wrong_contact"
    CONVERSATION = "conversation"
