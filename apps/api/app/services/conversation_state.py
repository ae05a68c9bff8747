"""Conversation state machine and inbound keyword classifiers.

The transition function is a heuristic keyword matcher, not an NLU model.
It sits behind `TransitionPolicy` so a trained classifier can replace it
without touching the orchestration in conversation_service.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass

from app.core import crm_fields
from app.db.enums import Channel, ConversationState, ReplyIntent, TERMINAL_CONVERSATION_STATES
from app.schemas.crm import CrmContact

BOOKING_KEYWORDS = ("schedule", "appointment", "meet")
SELLER_KEYWORDS = ("sell", "value", "worth")
BUYER_KEYWORDS = ("buy", "looking for")
AFFIRMATIVE_KEYWORDS = ("yes", "interested")

HANDOFF_KEYWORDS = (
    "speak to someone",
    "talk to a person",
    "talk to someone",
    "human agent",
    "real person",
    "ready to sell now",
    "schedule a call",
    "call me back",
)

STOP_KEYWORDS = (
    "not interested",
    "stop",
    "remove",
    "unsubscribe",
    "leave me alone",
)

WRONG_CONTACT_KEYWORDS = (
    "wrong number",
    "wrong email",
    "wrong person",
    "not me",
    "you have the wrong",
)

PHONE_PATTERN = re.compile(r"(?:\+?1[\s.-]?)?\(?\b\d{3}\)?[\s.-]?\d{3}[\s.-]?\d{4}\b")

# Stored values written by earlier versions of the agent
LEGACY_STATE_ALIASES = {
    "handoff": ConversationState.HANDOFF,
    "qualified": ConversationState.QUALIFIED,
    "valuation": ConversationState.PROPERTY_VALUATION,
}


def _keyword_pattern(keywords: tuple[str, ...], *, whole_word: bool = False) -> re.Pattern:
    # Prefix match by default, so "sell" also matches "selling"/"seller"
    suffix = r"\b" if whole_word else ""
    return re.compile(
        "|".join(r"\b" + re.escape(k) + suffix for k in keywords), re.IGNORECASE
    )


_BOOKING = _keyword_pattern(BOOKING_KEYWORDS)
_SELLER = _keyword_pattern(SELLER_KEYWORDS)
_BUYER = _keyword_pattern(BUYER_KEYWORDS)
_AFFIRMATIVE = _keyword_pattern(AFFIRMATIVE_KEYWORDS)
_HANDOFF = _keyword_pattern(HANDOFF_KEYWORDS, whole_word=True)
_STOP = _keyword_pattern(STOP_KEYWORDS, whole_word=True)
_WRONG_CONTACT = _keyword_pattern(WRONG_CONTACT_KEYWORDS, whole_word=True)


def parse_state(raw: str | None) -> ConversationState:
    """Read a stored AI state; unknown or empty values start a new conversation."""
    if not raw:
        return ConversationState.NEW_LEAD
    value = raw.strip().lower()
    if value in LEGACY_STATE_ALIASES:
        return LEGACY_STATE_ALIASES[value]
    try:
        return ConversationState(value)
    except ValueError:
        try:
            return ConversationState[value.upper()]
        except KeyError:
            return ConversationState.NEW_LEAD


@dataclass(frozen=True)
class TransitionSignals:
    """What the transition function may look at for one inbound message."""

    text: str
    has_known_address: bool = False
    declared_intent: str | None = None  # "seller" | "buyer"

    def wants_to_sell(self) -> bool:
        return self.declared_intent == "seller" or bool(_SELLER.search(self.text))

    def wants_to_buy(self) -> bool:
        return self.declared_intent == "buyer" or bool(_BUYER.search(self.text))


class TransitionPolicy(ABC):
    """Maps (state, signals) to the next state."""

    @abstractmethod
    def next_state(
        self, state: ConversationState, signals: TransitionSignals
    ) -> ConversationState:
        pass


class KeywordTransitionPolicy(TransitionPolicy):
    """Keyword heuristic; ambiguous input stays put (or asks for intent)."""

    def _route_intent(
        self, signals: TransitionSignals, fallback: ConversationState
    ) -> ConversationState:
        if signals.wants_to_sell():
            if signals.has_known_address:
                return ConversationState.PROPERTY_VALUATION
            return ConversationState.SELLER_QUALIFICATION
        if signals.wants_to_buy():
            return ConversationState.BUYER_QUALIFICATION
        return fallback

    def next_state(
        self, state: ConversationState, signals: TransitionSignals
    ) -> ConversationState:
        state = ConversationState(state)
        if state in TERMINAL_CONVERSATION_STATES:
            return state

        if _BOOKING.search(signals.text):
            return ConversationState.APPOINTMENT_BOOKING

        if state == ConversationState.NEW_LEAD:
            return self._route_intent(signals, ConversationState.ASK_INTENT)
        if state == ConversationState.ASK_INTENT:
            return self._route_intent(signals, state)
        if state == ConversationState.SELLER_QUALIFICATION:
            if signals.has_known_address:
                return ConversationState.PROPERTY_VALUATION
            return state
        if state == ConversationState.PROPERTY_VALUATION:
            return ConversationState.APPOINTMENT_BOOKING
        if state == ConversationState.BUYER_QUALIFICATION:
            if _AFFIRMATIVE.search(signals.text):
                return ConversationState.APPOINTMENT_BOOKING
            return state
        if state == ConversationState.APPOINTMENT_BOOKING:
            return ConversationState.QUALIFIED
        return state


def detect_handoff(text: str) -> bool:
    """Explicit request for a human, or a volunteered phone number."""
    return bool(_HANDOFF.search(text) or PHONE_PATTERN.search(text))


def classify_reply(text: str) -> ReplyIntent:
    """Coarse triage of an inbound reply before the state machine runs."""
    if _STOP.search(text):
        return ReplyIntent.STOP
    if _WRONG_CONTACT.search(text):
        return ReplyIntent.WRONG_CONTACT
    return ReplyIntent.CONVERSATION


@dataclass
class ConversationContext:
    """
    Per-event view of a contact, built from the CRM record and discarded after
    the reply. Tools update the property fields in place.
    """

    contact_id: str
    location_id: str | None
    channel: Channel
    state: ConversationState
    first_name: str = ""
    full_name: str = ""
    phone: str | None = None
    email: str | None = None
    property_address: str | None = None
    property_city: str | None = None
    property_state: str | None = None
    property_zip: str | None = None
    estimated_value: float | None = None
    cash_offer: float | None = None
    lead_type: str | None = None
    is_organic: bool = False
    declared_intent: str | None = None

    @property
    def has_known_address(self) -> bool:
        return bool(self.property_address)


def _to_float(value) -> float | None:
    if value in (None, ""):
        return None
    try:
        return float(str(value).replace("$", "").replace(",", ""))
    except ValueError:
        return None


def declared_intent_from_tags(tags: list[str]) -> str | None:
    """Lead forms tag contacts as buyer or seller leads."""
    lowered = [t.lower() for t in tags]
    if any("seller" in t for t in lowered):
        return "seller"
    if any("buyer" in t for t in lowered):
        return "buyer"
    return None


def build_context(contact: CrmContact, channel: Channel, *, is_organic: bool) -> ConversationContext:
    return ConversationContext(
        contact_id=contact.id,
        location_id=contact.location_id,
        channel=Channel(channel),
        state=parse_state(contact.field(crm_fields.AI_STATE)),
        first_name=contact.first_name or "",
        full_name=contact.full_name,
        phone=contact.phone,
        email=contact.email,
        property_address=contact.field(crm_fields.PROPERTY_ADDRESS),
        property_city=contact.field(crm_fields.PROPERTY_CITY),
        property_state=contact.field(crm_fields.PROPERTY_STATE),
        property_zip=contact.field(crm_fields.PROPERTY_ZIP),
        estimated_value=_to_float(contact.field(crm_fields.ESTIMATED_VALUE)),
        cash_offer=_to_float(contact.field(crm_fields.CASH_OFFER)),
        lead_type=contact.field(crm_fields.LEAD_TYPE),
        is_organic=is_organic,
        declared_intent=declared_intent_from_tags(contact.tags),
    )
