"""Pydantic schemas for CRM (GoHighLevel) payloads."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from app.core import crm_fields


class CrmContact(BaseModel):
    """Contact as returned by `GET /contacts/{id}`, reduced to outreach fields."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    location_id: str | None = Field(default=None, alias="locationId")
    first_name: str | None = Field(default=None, alias="firstName")
    last_name: str | None = Field(default=None, alias="lastName")
    phone: str | None = None
    email: str | None = None
    tags: list[str] = []
    dnd: bool = False
    contact_type: str | None = Field(default=None, alias="type")
    attribution_source: dict[str, Any] | None = Field(default=None, alias="attributionSource")
    custom_fields: dict[str, Any] = {}

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "CrmContact":
        """Build from the raw API body (with or without the `contact` envelope)."""
        raw = data.get("contact", data)
        fields = {}
        for entry in raw.get("customFields") or raw.get("customField") or []:
            if entry.get("id"):
                fields[entry["id"]] = entry.get("value", entry.get("field_value"))
        payload = {k: v for k, v in raw.items() if k not in ("customFields", "customField")}
        return cls.model_validate({**payload, "custom_fields": fields})

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part).strip()

    def field(self, name: str) -> Any:
        """Read a custom field by logical name."""
        value = self.custom_fields.get(crm_fields.field_id(name))
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value

    def has_tag(self, tag: str) -> bool:
        wanted = tag.lower()
        return any(t.lower() == wanted for t in self.tags)


class CrmOpportunity(BaseModel):
    """Opportunity reduced to the fields the cadence tracker writes."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    name: str | None = None
    pipeline_id: str | None = Field(default=None, alias="pipelineId")
    status: str | None = None


class FreeSlot(BaseModel):
    """Calendar free slot (ISO start time)."""
    start: str
    date: str | None = None
