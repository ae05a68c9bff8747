"""Tools the conversation model may call, at most one per inbound message.

Tool failures never raise out of `execute`; they come back as a failed
ToolResult so the model can word the reply around them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any
from zoneinfo import ZoneInfo

from app.core import crm_fields
from app.core.config import settings
from app.core.structured_logging import build_log_context
from app.db.enums import ConversationState
from app.services.ai_provider import ToolCall, ToolSchema
from app.services.conversation_state import ConversationContext
from app.services.crm_client import CrmClient
from app.services.outreach_errors import OutreachError
from app.services.property_services import (
    AddressValidator,
    BuyerSearch,
    SearchAlertService,
    ValuationLookup,
)

logger = logging.getLogger(__name__)

MAX_SLOTS_OFFERED = 5

VALIDATE_ADDRESS = ToolSchema(
    name="validate_address",
    description="Validate and standardize an address. Use this FIRST before getting property value.",
    parameters={
        "type": "object",
        "properties": {
            "address": {
                "type": "string",
                "description": 'Full address string (e.g., "123 Main St, Miami, FL 33101")',
            }
        },
        "required": ["address"],
    },
)

GET_PROPERTY_VALUE = ToolSchema(
    name="get_property_value",
    description="Get the estimated value of a property. Use AFTER validate_address.",
    parameters={
        "type": "object",
        "properties": {
            "street": {"type": "string"},
            "city": {"type": "string"},
            "state": {"type": "string", "description": "State abbreviation"},
            "zip": {"type": "string"},
            "lat": {"type": "number"},
            "lng": {"type": "number"},
        },
        "required": ["street", "city", "state", "zip"],
    },
)

CHECK_AVAILABILITY = ToolSchema(
    name="check_availability",
    description="Check available appointment slots. Use this BEFORE scheduling.",
    parameters={
        "type": "object",
        "properties": {
            "startDate": {"type": "string", "description": "Start date (YYYY-MM-DD)"},
            "endDate": {"type": "string", "description": "End date (YYYY-MM-DD)"},
        },
        "required": ["startDate", "endDate"],
    },
)

SCHEDULE_CONSULTATION = ToolSchema(
    name="schedule_consultation",
    description="Book a consultation in an available slot. Use AFTER check_availability.",
    parameters={
        "type": "object",
        "properties": {
            "consultationType": {"type": "string", "enum": ["buyer", "seller"]},
            "startTime": {"type": "string", "description": "ISO 8601 start from available slots"},
        },
        "required": ["consultationType", "startTime"],
    },
)

SAVE_BUYER_SEARCH = ToolSchema(
    name="save_buyer_search",
    description="Save buyer search criteria for automated property alerts.",
    parameters={
        "type": "object",
        "properties": {
            "cities": {"type": "array", "items": {"type": "string"}},
            "state": {"type": "string", "description": "State abbreviation"},
            "minPrice": {"type": "number"},
            "maxPrice": {"type": "number"},
            "beds": {"type": "number"},
            "baths": {"type": "number"},
            "propertyTypes": {"type": "array", "items": {"type": "string"}},
        },
        "required": ["cities", "state", "maxPrice"],
    },
)

TOOLS_BY_STATE: dict[ConversationState, list[ToolSchema]] = {
    ConversationState.SELLER_QUALIFICATION: [VALIDATE_ADDRESS],
    ConversationState.PROPERTY_VALUATION: [VALIDATE_ADDRESS, GET_PROPERTY_VALUE],
    ConversationState.BUYER_QUALIFICATION: [SAVE_BUYER_SEARCH],
    ConversationState.APPOINTMENT_BOOKING: [CHECK_AVAILABILITY, SCHEDULE_CONSULTATION],
}


@dataclass
class ToolResult:
    name: str
    ok: bool
    data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None


class ConversationTools:
    """Executes one tool call against the CRM and property collaborators."""

    def __init__(
        self,
        crm: CrmClient,
        address_validator: AddressValidator,
        valuation_lookup: ValuationLookup,
        search_alerts: SearchAlertService,
        *,
        calendar_id: str | None = None,
        timezone: str | None = None,
    ):
        self.crm = crm
        self.address_validator = address_validator
        self.valuation_lookup = valuation_lookup
        self.search_alerts = search_alerts
        self.calendar_id = calendar_id if calendar_id is not None else settings.CRM_CALENDAR_ID
        self.timezone = timezone or settings.BUSINESS_TIMEZONE

    def schemas_for(self, state: ConversationState) -> list[ToolSchema]:
        return list(TOOLS_BY_STATE.get(ConversationState(state), []))

    async def execute(self, context: ConversationContext, call: ToolCall) -> ToolResult:
        handlers = {
            VALIDATE_ADDRESS.name: self._validate_address,
            GET_PROPERTY_VALUE.name: self._get_property_value,
            CHECK_AVAILABILITY.name: self._check_availability,
            SCHEDULE_CONSULTATION.name: self._schedule_consultation,
            SAVE_BUYER_SEARCH.name: self._save_buyer_search,
        }
        handler = handlers.get(call.name)
        if handler is None:
            return ToolResult(name=call.name, ok=False, error="unknown tool")

        try:
            return await handler(context, call.arguments)
        except (OutreachError, KeyError, ValueError, TypeError) as exc:
            logger.warning(
                "Tool %s failed: %s",
                call.name,
                type(exc).__name__,
                extra=build_log_context(contact_id=context.contact_id),
            )
            return ToolResult(name=call.name, ok=False, error=str(exc)[:200])

    async def _validate_address(self, context: ConversationContext, args: dict) -> ToolResult:
        validated = await self.address_validator.validate(str(args["address"]))
        if validated is None:
            return ToolResult(name=VALIDATE_ADDRESS.name, ok=False, error="address not found")

        await self.crm.update_custom_fields(
            context.contact_id,
            {
                crm_fields.PROPERTY_ADDRESS: validated.street,
                crm_fields.PROPERTY_CITY: validated.city,
                crm_fields.PROPERTY_STATE: validated.state,
                crm_fields.PROPERTY_ZIP: validated.zip,
            },
        )
        context.property_address = validated.street
        context.property_city = validated.city
        context.property_state = validated.state
        context.property_zip = validated.zip
        return ToolResult(
            name=VALIDATE_ADDRESS.name,
            ok=True,
            data={
                "street": validated.street,
                "city": validated.city,
                "state": validated.state,
                "zip": validated.zip,
                "lat": validated.lat,
                "lng": validated.lng,
                "formatted": validated.formatted,
            },
        )

    async def _get_property_value(self, context: ConversationContext, args: dict) -> ToolResult:
        valuation = await self.valuation_lookup.get_valuation(
            str(args["street"]),
            str(args["city"]),
            str(args["state"]),
            str(args["zip"]),
            args.get("lat"),
            args.get("lng"),
        )
        if valuation is None:
            return ToolResult(name=GET_PROPERTY_VALUE.name, ok=False, error="no valuation found")

        cash_offer = round(valuation.estimated_value * settings.CASH_OFFER_RATIO)
        await self.crm.update_custom_fields(
            context.contact_id,
            {
                crm_fields.ESTIMATED_VALUE: round(valuation.estimated_value),
                crm_fields.CASH_OFFER: cash_offer,
            },
        )
        context.estimated_value = valuation.estimated_value
        context.cash_offer = cash_offer
        return ToolResult(
            name=GET_PROPERTY_VALUE.name,
            ok=True,
            data={
                "estimated_value": round(valuation.estimated_value),
                "cash_offer": cash_offer,
                "sqft": valuation.sqft,
                "beds": valuation.beds,
                "baths": valuation.baths,
                "year_built": valuation.year_built,
            },
        )

    async def _check_availability(self, context: ConversationContext, args: dict) -> ToolResult:
        if not self.calendar_id:
            return ToolResult(name=CHECK_AVAILABILITY.name, ok=False, error="no calendar configured")
        tz = ZoneInfo(self.timezone)
        start_day = date.fromisoformat(str(args["startDate"]))
        end_day = date.fromisoformat(str(args["endDate"]))
        if end_day < start_day:
            start_day, end_day = end_day, start_day
        start = datetime.combine(start_day, time.min, tzinfo=tz)
        end = datetime.combine(end_day + timedelta(days=1), time.min, tzinfo=tz)

        slots = await self.crm.list_free_slots(self.calendar_id, start, end, self.timezone)
        return ToolResult(
            name=CHECK_AVAILABILITY.name,
            ok=True,
            data={"slots": [slot.start for slot in slots[:MAX_SLOTS_OFFERED]]},
        )

    async def _schedule_consultation(self, context: ConversationContext, args: dict) -> ToolResult:
        if not self.calendar_id:
            return ToolResult(name=SCHEDULE_CONSULTATION.name, ok=False, error="no calendar configured")
        consultation_type = str(args.get("consultationType") or "seller").lower()
        start_time = str(args["startTime"])
        appointment_id = await self.crm.book_appointment(
            self.calendar_id,
            context.contact_id,
            start_time,
            f"{consultation_type.title()} consultation - {context.full_name or context.contact_id}",
        )
        return ToolResult(
            name=SCHEDULE_CONSULTATION.name,
            ok=True,
            data={"appointment_id": appointment_id, "start_time": start_time},
        )

    async def _save_buyer_search(self, context: ConversationContext, args: dict) -> ToolResult:
        cities = [str(c) for c in args.get("cities") or [] if c]
        if not cities:
            return ToolResult(name=SAVE_BUYER_SEARCH.name, ok=False, error="no cities given")
        search = BuyerSearch(
            cities=cities,
            state=str(args["state"]),
            max_price=float(args["maxPrice"]),
            min_price=args.get("minPrice"),
            beds=args.get("beds"),
            baths=args.get("baths"),
        )
        if args.get("propertyTypes"):
            search.property_types = [str(t) for t in args["propertyTypes"]]
        saved = await self.search_alerts.save_search(
            name=context.full_name, email=context.email, phone=context.phone, search=search
        )
        if not saved:
            return ToolResult(name=SAVE_BUYER_SEARCH.name, ok=False, error="search not saved")
        return ToolResult(name=SAVE_BUYER_SEARCH.name, ok=True, data={"cities": cities})
