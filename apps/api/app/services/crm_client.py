"""GoHighLevel CRM client for outreach.

Handles:
- Contact reads, custom field writes and tag adds
- SMS/email sends through the conversations API
- Opportunity lookups and updates
- Calendar free slots and appointment booking
- Retry policy: reads and repeat-safe writes retry on timeouts/5xx,
  message sends and note/appointment creation are attempted once
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable

import httpx

from app.core import crm_fields
from app.core.config import settings
from app.db.enums import Channel
from app.schemas.crm import CrmContact, CrmOpportunity, FreeSlot
from app.services.http_service import request_with_retries
from app.services.outreach_errors import PermanentRejection, TransientNetworkError

logger = logging.getLogger(__name__)

THROTTLED_STATUS = 429

MESSAGE_TYPES = {
    Channel.SMS: "SMS",
    Channel.EMAIL: "Email",
}


class CrmClient:
    """Authenticated client bound to one CRM location."""

    def __init__(
        self,
        token: str,
        location_id: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.token = token
        self.location_id = location_id
        self._transport = transport
        self._sleep = sleep

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Version": settings.CRM_API_VERSION,
            "Accept": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        retry: bool = True,
    ) -> dict[str, Any]:
        url = f"{settings.CRM_BASE_URL}{path}"
        timeout = httpx.Timeout(settings.CRM_TIMEOUT_SECONDS)

        async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:

            async def do_request() -> httpx.Response:
                return await client.request(
                    method, url, params=params, json=json, headers=self._headers()
                )

            try:
                response = await request_with_retries(
                    do_request,
                    max_attempts=settings.CRM_RETRY_ATTEMPTS if retry else 1,
                    base_delay=settings.CRM_RETRY_BASE_DELAY_SECONDS,
                    sleep=self._sleep,
                )
            except httpx.TimeoutException as exc:
                raise TransientNetworkError(f"CRM {method} {path} timed out") from exc
            except httpx.RequestError as exc:
                raise TransientNetworkError(f"CRM {method} {path} failed: {type(exc).__name__}") from exc

        status = response.status_code
        if status >= 500 or status == THROTTLED_STATUS:
            raise TransientNetworkError(
                f"CRM {method} {path} returned {status}", status_code=status
            )
        if status >= 400:
            raise PermanentRejection(
                f"CRM {method} {path} returned {status}: {response.text[:300]}",
                status_code=status,
            )
        if not response.content:
            return {}
        return response.json()

    # =========================================================================
    # Contacts
    # =========================================================================

    async def get_contact(self, contact_id: str) -> CrmContact:
        data = await self._request("GET", f"/contacts/{contact_id}")
        return CrmContact.from_api(data)

    async def update_custom_fields(self, contact_id: str, values: dict[str, Any]) -> None:
        """Write custom fields by logical name. Absolute values, so safe to retry."""
        await self._request(
            "PUT",
            f"/contacts/{contact_id}",
            json={"customFields": crm_fields.build_field_updates(values)},
        )

    async def add_tags(self, contact_id: str, tags: list[str]) -> None:
        """Add tags; the CRM treats tags as a set, so repeats are harmless."""
        await self._request("POST", f"/contacts/{contact_id}/tags", json={"tags": tags})

    async def search_contacts(
        self, filters: list[dict[str, Any]], *, page_limit: int = 100
    ) -> list[CrmContact]:
        data = await self._request(
            "POST",
            "/contacts/search",
            json={"locationId": self.location_id, "pageLimit": page_limit, "filters": filters},
        )
        return [CrmContact.from_api(item) for item in data.get("contacts", [])]

    async def add_note(self, contact_id: str, body: str) -> None:
        await self._request(
            "POST", f"/contacts/{contact_id}/notes", json={"body": body}, retry=False
        )

    # =========================================================================
    # Conversations
    # =========================================================================

    async def send_message(
        self,
        contact_id: str,
        channel: Channel,
        body: str,
        from_address: str | None = None,
        subject: str | None = None,
    ) -> str | None:
        """
        Send one SMS or email. Never retried: a failure is surfaced so the
        caller decides, since a retry after an ambiguous timeout could deliver twice.

        Returns the CRM message id when provided.
        """
        payload: dict[str, Any] = {
            "type": MESSAGE_TYPES[Channel(channel)],
            "contactId": contact_id,
            "message": body,
        }
        if Channel(channel) == Channel.EMAIL:
            payload["html"] = body
            payload["subject"] = subject or ""
            if from_address:
                payload["emailFrom"] = from_address
        elif from_address:
            payload["fromNumber"] = from_address

        data = await self._request("POST", "/conversations/messages", json=payload, retry=False)
        return data.get("messageId") or data.get("id")

    # =========================================================================
    # Opportunities
    # =========================================================================

    async def get_opportunities_for_contact(self, contact_id: str) -> list[CrmOpportunity]:
        data = await self._request(
            "GET",
            "/opportunities/search",
            params={"location_id": self.location_id, "contact_id": contact_id},
        )
        return [CrmOpportunity.model_validate(item) for item in data.get("opportunities", [])]

    async def update_opportunity(self, opportunity_id: str, values: dict[str, Any]) -> None:
        await self._request(
            "PUT",
            f"/opportunities/{opportunity_id}",
            json={"customFields": crm_fields.build_field_updates(values)},
        )

    # =========================================================================
    # Calendars
    # =========================================================================

    async def list_free_slots(
        self, calendar_id: str, start: datetime, end: datetime, timezone: str
    ) -> list[FreeSlot]:
        data = await self._request(
            "GET",
            f"/calendars/{calendar_id}/free-slots",
            params={
                "startDate": int(start.timestamp() * 1000),
                "endDate": int(end.timestamp() * 1000),
                "timezone": timezone,
            },
        )
        slots: list[FreeSlot] = []
        for day, entry in data.items():
            if not isinstance(entry, dict):
                continue
            for start_time in entry.get("slots", []):
                slots.append(FreeSlot(start=start_time, date=day))
        return slots

    async def book_appointment(
        self, calendar_id: str, contact_id: str, start_time: str, title: str
    ) -> str | None:
        data = await self._request(
            "POST",
            "/calendars/events/appointments",
            json={
                "calendarId": calendar_id,
                "locationId": self.location_id,
                "contactId": contact_id,
                "startTime": start_time,
                "title": title,
                "appointmentStatus": "confirmed",
            },
            retry=False,
        )
        return data.get("id")
