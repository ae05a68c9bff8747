"""
Test configuration and fixtures.

Provides:
- In-memory SQLite session (tables created and dropped per test)
- FakeCrm: a GoHighLevel API served through httpx.MockTransport
- Scripted AI provider and stub property collaborators
- HTTPX AsyncClient with dependency overrides
"""
import json
import os
from datetime import datetime, timezone
from typing import Generator

# Settings are read at import time, so the environment goes first
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["TESTING"] = "1"
os.environ["ENV"] = "test"
os.environ["REDIS_URL"] = "memory://"
os.environ["CRM_TOKEN_ENCRYPTION_KEY"] = "MDEyMzQ1Njc4OWFiY2RlZjAxMjM0NTY3ODlhYmNkZWY="
os.environ["INTERNAL_SECRET"] = "test-internal-secret"
os.environ["WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ["AI_API_KEY"] = ""
os.environ["SENTRY_DSN"] = ""
os.environ["CRM_RETRY_BASE_DELAY_SECONDS"] = "0"
os.environ["SMS_SEND_DELAY_SECONDS"] = "0"
os.environ["EMAIL_SEND_DELAY_SECONDS"] = "0"
os.environ["DISPOSITION_SPACING_SECONDS"] = "0"

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

from app.core.deps import get_ai_provider, get_client_factory, get_db, get_tools_factory
from app.db.base import Base
from app.db.session import SessionLocal, engine
from app.main import app
from app.services import crm_token_service
from app.services.ai_provider import AIProvider, GenerationResult
from app.services.conversation_tools import ConversationTools
from app.services.crm_client import CrmClient
from app.services.property_services import (
    AddressValidator,
    SearchAlertService,
    ValuationLookup,
)

INTERNAL_HEADERS = {"X-Internal-Secret": "test-internal-secret"}
WEBHOOK_HEADERS = {"X-Webhook-Secret": "test-webhook-secret"}

LOCATION_ID = "loc-1"
USER_ID = "user-1"

# Tuesday 2026-10-13 14:00 America/New_York (EDT)
TUESDAY_AFTERNOON = datetime(2026, 10, 13, 18, 0, tzinfo=timezone.utc)


async def no_sleep(seconds: float) -> None:
    return None


# =============================================================================
# Fake CRM
# =============================================================================

class FakeCrm:
    """Minimal in-memory GoHighLevel API. Every request is recorded."""

    def __init__(self):
        self.contacts: dict[str, dict] = {}
        self.opportunities: dict[str, list[dict]] = {}
        self.opportunity_updates: list[tuple[str, dict]] = []
        self.notes: list[tuple[str, str]] = []
        self.appointments: list[dict] = []
        self.free_slots: dict = {}
        self.failures: dict[tuple[str, str], list[int]] = {}
        self.requests: list[httpx.Request] = []
        self._message_seq = 0

    def add_contact(self, contact_id: str, *, fields: dict | None = None, **attrs) -> dict:
        record = {
            "id": contact_id,
            "locationId": LOCATION_ID,
            "tags": [],
            "customFields": [{"id": k, "value": v} for k, v in (fields or {}).items()],
        }
        record.update(attrs)
        self.contacts[contact_id] = record
        return record

    def field(self, contact_id: str, field_id: str):
        for entry in self.contacts[contact_id]["customFields"]:
            if entry["id"] == field_id:
                return entry["value"]
        return None

    def fail(self, method: str, path: str, *statuses: int) -> None:
        """Answer the next requests to (method, path) with these statuses."""
        self.failures.setdefault((method, path), []).extend(statuses)

    def calls(self, method: str, path: str | None = None) -> list[httpx.Request]:
        return [
            r for r in self.requests
            if r.method == method and (path is None or r.url.path == path)
        ]

    @property
    def sent_messages(self) -> list[dict]:
        return [json.loads(r.content) for r in self.calls("POST", "/conversations/messages")]

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def client(self, location_id: str = LOCATION_ID, token: str = "access-1") -> CrmClient:
        return CrmClient(token, location_id, transport=self.transport, sleep=no_sleep)

    def _set_field(self, contact: dict, field_id: str, value) -> None:
        for entry in contact["customFields"]:
            if entry["id"] == field_id:
                entry["value"] = value
                return
        contact["customFields"].append({"id": field_id, "value": value})

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        method, path = request.method, request.url.path
        queued = self.failures.get((method, path))
        if queued:
            return httpx.Response(queued.pop(0), json={"message": "error"})

        body = json.loads(request.content) if request.content else {}
        parts = path.strip("/").split("/")

        if path == "/contacts/search":
            return httpx.Response(200, json={"contacts": list(self.contacts.values())})

        if parts[0] == "contacts" and len(parts) >= 2:
            contact = self.contacts.get(parts[1])
            if contact is None:
                return httpx.Response(404, json={"message": "Contact not found"})
            if len(parts) == 2 and method == "GET":
                return httpx.Response(200, json={"contact": contact})
            if len(parts) == 2 and method == "PUT":
                for update in body.get("customFields", []):
                    self._set_field(contact, update["id"], update["field_value"])
                return httpx.Response(200, json={"succeeded": True, "contact": contact})
            if parts[2:] == ["tags"]:
                for tag in body.get("tags", []):
                    if tag not in contact["tags"]:
                        contact["tags"].append(tag)
                return httpx.Response(201, json={"tags": contact["tags"]})
            if parts[2:] == ["notes"]:
                self.notes.append((parts[1], body["body"]))
                return httpx.Response(201, json={"note": {"id": f"note-{len(self.notes)}"}})

        if path == "/conversations/messages":
            self._message_seq += 1
            return httpx.Response(201, json={"messageId": f"msg-{self._message_seq}"})

        if path == "/opportunities/search":
            contact_id = request.url.params.get("contact_id")
            return httpx.Response(200, json={"opportunities": self.opportunities.get(contact_id, [])})

        if parts[0] == "opportunities" and method == "PUT":
            self.opportunity_updates.append((parts[1], body))
            return httpx.Response(200, json={"opportunity": {"id": parts[1]}})

        if parts[0] == "calendars" and parts[-1] == "free-slots":
            return httpx.Response(200, json=self.free_slots)

        if path == "/calendars/events/appointments":
            self.appointments.append(body)
            return httpx.Response(201, json={"id": f"appt-{len(self.appointments)}"})

        return httpx.Response(404, json={"message": f"No route {method} {path}"})


# =============================================================================
# AI and property collaborators
# =============================================================================

class ScriptedProvider(AIProvider):
    """Returns queued generations in order; empty text once the queue runs out."""

    def __init__(self):
        self.results: list[GenerationResult] = []
        self.calls: list[dict] = []

    def queue(self, *results: GenerationResult) -> None:
        self.results.extend(results)

    async def generate(
        self,
        system_prompt,
        user_message,
        tools=None,
        temperature=0.4,
        max_tokens=400,
    ) -> GenerationResult:
        self.calls.append(
            {"system_prompt": system_prompt, "user_message": user_message, "tools": tools}
        )
        if not self.results:
            return GenerationResult(text="")
        return self.results.pop(0)


class StubAddressValidator(AddressValidator):
    def __init__(self):
        self.result = None
        self.calls: list[str] = []

    async def validate(self, address_text):
        self.calls.append(address_text)
        return self.result


class StubValuationLookup(ValuationLookup):
    def __init__(self):
        self.result = None
        self.calls: list[tuple] = []

    async def get_valuation(self, street, city, state, zip_code, lat=None, lng=None):
        self.calls.append((street, city, state, zip_code))
        return self.result


class StubSearchAlerts(SearchAlertService):
    def __init__(self):
        self.saved = True
        self.searches: list = []

    async def save_search(self, *, name, email, phone, search):
        self.searches.append(search)
        return self.saved


def build_tools(crm: CrmClient) -> ConversationTools:
    return ConversationTools(
        crm,
        StubAddressValidator(),
        StubValuationLookup(),
        StubSearchAlerts(),
        calendar_id="cal-1",
        timezone="America/New_York",
    )


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """
    Fresh schema per test.

    The in-memory engine uses a single shared connection, so tables are
    created and dropped around each test instead of rolled back.
    """
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def crm_api() -> FakeCrm:
    return FakeCrm()


@pytest.fixture
def provider() -> ScriptedProvider:
    return ScriptedProvider()


@pytest.fixture
def tools(crm_api) -> ConversationTools:
    return build_tools(crm_api.client())


@pytest.fixture
def integration(db):
    """Active CRM connection for USER_ID / LOCATION_ID with a long-lived token."""
    return crm_token_service.connect_integration(
        db,
        user_id=USER_ID,
        location_id=LOCATION_ID,
        access_token="access-1",
        refresh_token="refresh-1",
        expires_in=365 * 24 * 3600,
        campaign_email="offers@example.com",
    )


@pytest.fixture
async def client(db, crm_api, provider) -> AsyncClient:
    """API client wired to the test session, FakeCrm and scripted provider."""

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_client_factory] = lambda: (
        lambda token: crm_api.client(token.location_id, token.token)
    )
    app.dependency_overrides[get_ai_provider] = lambda: provider
    app.dependency_overrides[get_tools_factory] = lambda: build_tools

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
