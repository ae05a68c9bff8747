"""Custom field mapping between logical names and CRM vendor field ids.

The vendor ids are opaque per CRM location, so they are injected through
`settings.CRM_CUSTOM_FIELD_IDS` rather than written into service logic.
"""

from typing import Any

from app.core.config import settings

LEAD_SOURCE_ID = "lead_source_id"
LEAD_TYPE = "lead_type"
PROPERTY_ADDRESS = "property_address"
PROPERTY_CITY = "property_city"
PROPERTY_STATE = "property_state"
PROPERTY_ZIP = "property_zip"
ESTIMATED_VALUE = "estimated_value"
CASH_OFFER = "cash_offer"
AI_STATE = "ai_state"
SMS_TOUCH_COUNT = "sms_touch_count"
EMAIL_TOUCH_COUNT = "email_touch_count"
LAST_TOUCH_DATE = "last_touch_date"
CALL_OUTCOME = "call_outcome"
OPPORTUNITY_DISPOSITION = "opportunity_disposition"


def field_id(name: str) -> str:
    """Resolve a logical field name to the configured vendor id."""
    try:
        return settings.CRM_CUSTOM_FIELD_IDS[name]
    except KeyError:
        raise KeyError(f"CRM custom field '{name}' is not mapped in CRM_CUSTOM_FIELD_IDS")


def build_field_updates(values: dict[str, Any]) -> list[dict[str, Any]]:
    """Build the CRM `customFields` payload from logical names."""
    return [
        {"id": field_id(name), "field_value": value}
        for name, value in values.items()
    ]
