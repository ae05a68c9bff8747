"""AI conversation engine for inbound replies.

Flow for one inbound message:
1. Load the contact and check it may receive AI replies.
2. Compute the next state (or hand off to a human).
3. Persist the state to the CRM before generating, so a failed generation
   does not lose the transition.
4. Generate a reply; when the model asks for a tool, run exactly one tool
   and generate once more with the result (no tools on the second round).
5. Send the reply through the CRM.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from app.core import crm_fields
from app.core.constants import (
    AI_ENABLED_LEAD_TYPES,
    DIRECT_MAIL_CONTACT_TYPE,
    HANDOFF_REPLY,
    HANDOFF_TAG,
    ORGANIC_LEAD_MEDIUM,
)
from app.core.structured_logging import build_log_context
from app.db.enums import Channel, ConversationState, RateLimitKind, TERMINAL_CONVERSATION_STATES
from app.schemas.crm import CrmContact
from app.services import rate_limit_service
from app.services.ai_provider import AIProvider
from app.services.conversation_state import (
    ConversationContext,
    KeywordTransitionPolicy,
    TransitionPolicy,
    TransitionSignals,
    build_context,
    detect_handoff,
    parse_state,
)
from app.services.conversation_tools import ConversationTools, ToolResult
from app.services.crm_client import CrmClient
from app.services.outreach_errors import IneligibleContact, QuotaExceeded

logger = logging.getLogger(__name__)

BASE_PROMPT = (
    "You are a friendly, professional real estate assistant texting with a "
    "homeowner on behalf of a local investor. Keep replies short (under 320 "
    "characters for SMS), plain text, no emojis, and never invent numbers. "
    "Ask at most one question per message."
)

STATE_PROMPTS: dict[ConversationState, str] = {
    ConversationState.NEW_LEAD: (
        "Greet the contact by first name and ask whether they are thinking about "
        "selling a property or looking to buy."
    ),
    ConversationState.ASK_INTENT: (
        "The contact's goal is unclear. Politely ask if they want to sell a "
        "property or buy one."
    ),
    ConversationState.SELLER_QUALIFICATION: (
        "The contact may sell. Ask for the full property address. When they give "
        "one, call validate_address."
    ),
    ConversationState.BUYER_QUALIFICATION: (
        "The contact wants to buy. Collect the cities, state and maximum price, "
        "then call save_buyer_search. Ask if they would like to set up a call."
    ),
    ConversationState.PROPERTY_VALUATION: (
        "The property address is known. Use get_property_value to share the "
        "estimated value and a cash offer range, then offer a quick call."
    ),
    ConversationState.APPOINTMENT_BOOKING: (
        "The contact wants to talk. Use check_availability to offer a few times, "
        "then schedule_consultation for the time they pick."
    ),
    ConversationState.QUALIFIED: (
        "The contact is booked. Thank them and confirm someone will follow up."
    ),
    ConversationState.HANDOFF: HANDOFF_REPLY,
}


@dataclass
class ConversationOutcome:
    """Result of one inbound message through the engine."""

    contact_id: str
    previous_state: ConversationState
    state: ConversationState
    reply: str | None = None
    tool_result: ToolResult | None = None
    handoff: bool = False


def is_ai_enabled(contact: CrmContact) -> bool:
    """Has a phone, is not a direct-mail contact, and has an AI-worked lead type."""
    if not contact.phone:
        return False
    if (contact.contact_type or "").strip().lower() == DIRECT_MAIL_CONTACT_TYPE:
        return False
    lead_type = contact.field(crm_fields.LEAD_TYPE)
    if not lead_type:
        return False
    return str(lead_type).strip().lower() in AI_ENABLED_LEAD_TYPES


def is_organic_lead(contact: CrmContact) -> bool:
    """Leads that came in through the organic social funnel."""
    source = contact.attribution_source or {}
    medium = str(source.get("medium") or "").strip().lower()
    return medium == ORGANIC_LEAD_MEDIUM


def check_eligibility(contact: CrmContact) -> None:
    """Raise IneligibleContact when the contact must not get an AI reply."""
    if contact.dnd:
        raise IneligibleContact(contact.id, "do not disturb")
    if not (is_ai_enabled(contact) or is_organic_lead(contact)):
        raise IneligibleContact(contact.id, "AI not enabled for contact")
    state = crm_state(contact)
    if state in TERMINAL_CONVERSATION_STATES:
        raise IneligibleContact(contact.id, f"conversation already {state.value}")


def crm_state(contact: CrmContact) -> ConversationState:
    return parse_state(contact.field(crm_fields.AI_STATE))


def build_system_prompt(context: ConversationContext, state: ConversationState) -> str:
    facts = {
        "first_name": context.first_name or None,
        "property_address": context.property_address,
        "property_city": context.property_city,
        "property_state": context.property_state,
        "estimated_value": context.estimated_value,
        "cash_offer": context.cash_offer,
        "lead_type": context.lead_type,
    }
    known = {k: v for k, v in facts.items() if v not in (None, "")}
    return (
        f"{BASE_PROMPT}\n\nGoal: {STATE_PROMPTS[state]}\n\n"
        f"Known facts: {json.dumps(known, default=str)}"
    )


def _tool_followup_message(text: str, result: ToolResult) -> str:
    payload = {"tool": result.name, "ok": result.ok, "data": result.data, "error": result.error}
    return (
        f"Contact said: {text}\n\n"
        f"Tool result: {json.dumps(payload, default=str)}\n\n"
        "Write the reply to the contact using this result."
    )


def _reserve(db: Session | None, location_id: str, kind: RateLimitKind) -> None:
    """Take one unit of the location's quota or raise QuotaExceeded."""
    if db is None:
        return
    if not rate_limit_service.check_and_reserve(db, location_id, kind).allowed:
        raise QuotaExceeded(location_id, kind.value)


async def _send_reply(
    crm: CrmClient,
    context: ConversationContext,
    body: str,
    from_address: str | None,
) -> None:
    subject = None
    if context.channel == Channel.EMAIL:
        subject = (
            f"Re: {context.property_address}" if context.property_address else "Re: your property"
        )
    await crm.send_message(
        context.contact_id, context.channel, body, from_address=from_address, subject=subject
    )


async def process_inbound(
    crm: CrmClient,
    provider: AIProvider,
    tools: ConversationTools,
    *,
    db: Session | None = None,
    contact_id: str,
    channel: Channel,
    text: str,
    policy: TransitionPolicy | None = None,
    from_address: str | None = None,
) -> ConversationOutcome:
    """
    Run one inbound message through the state machine and reply.

    Raises IneligibleContact without sending anything when the contact is
    not eligible for AI replies. With a session, every CRM write takes a
    crm_write unit and the reply takes an SMS or email unit; a denied quota
    raises QuotaExceeded and nothing further is written or sent.
    """
    policy = policy or KeywordTransitionPolicy()
    log_context = build_log_context(contact_id=contact_id, channel=Channel(channel).value)
    location_id = crm.location_id
    reply_kind = RateLimitKind.SMS if Channel(channel) == Channel.SMS else RateLimitKind.EMAIL

    contact = await crm.get_contact(contact_id)
    check_eligibility(contact)

    context = build_context(contact, channel, is_organic=is_organic_lead(contact))
    previous = context.state

    if detect_handoff(text):
        _reserve(db, location_id, RateLimitKind.CRM_WRITE)
        await crm.update_custom_fields(
            contact_id, {crm_fields.AI_STATE: ConversationState.HANDOFF.value}
        )
        _reserve(db, location_id, RateLimitKind.CRM_WRITE)
        await crm.add_tags(contact_id, [HANDOFF_TAG])
        _reserve(db, location_id, reply_kind)
        await _send_reply(crm, context, HANDOFF_REPLY, from_address)
        logger.info("Handing off to a human from %s", previous.value, extra=log_context)
        return ConversationOutcome(
            contact_id=contact_id,
            previous_state=previous,
            state=ConversationState.HANDOFF,
            reply=HANDOFF_REPLY,
            handoff=True,
        )

    signals = TransitionSignals(
        text=text,
        has_known_address=context.has_known_address,
        declared_intent=context.declared_intent,
    )
    state = policy.next_state(previous, signals)
    context.state = state

    _reserve(db, location_id, RateLimitKind.CRM_WRITE)
    await crm.update_custom_fields(contact_id, {crm_fields.AI_STATE: state.value})
    if state != previous:
        logger.info("Conversation %s -> %s", previous.value, state.value, extra=log_context)

    system_prompt = build_system_prompt(context, state)
    generation = await provider.generate(system_prompt, text, tools=tools.schemas_for(state))

    tool_result = None
    if generation.is_tool_call:
        tool_result = await tools.execute(context, generation.tool_call)
        generation = await provider.generate(
            build_system_prompt(context, state), _tool_followup_message(text, tool_result)
        )

    reply = (generation.text or "").strip()
    if not reply:
        logger.warning("Empty AI reply, nothing sent", extra=log_context)
        return ConversationOutcome(
            contact_id=contact_id,
            previous_state=previous,
            state=state,
            tool_result=tool_result,
        )

    _reserve(db, location_id, reply_kind)
    await _send_reply(crm, context, reply, from_address)
    return ConversationOutcome(
        contact_id=contact_id,
        previous_state=previous,
        state=state,
        reply=reply,
        tool_result=tool_result,
    )
