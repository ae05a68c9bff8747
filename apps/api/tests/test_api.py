"""API tests for CRM webhooks and scheduler endpoints."""

from app.db.enums import Channel, QueueItemStatus
from app.schemas.outreach import QueueItemCreate
from app.services import outreach_queue_service
from app.services.ai_provider import GenerationResult

INTERNAL_HEADERS = {"X-Internal-Secret": "test-internal-secret"}
WEBHOOK_HEADERS = {"X-Webhook-Secret": "test-webhook-secret"}


def queue(db, contact_id, channel=Channel.SMS, **kwargs):
    item, _ = outreach_queue_service.enqueue(
        db,
        QueueItemCreate(
            user_id="user-1", location_id="loc-1", contact_id=contact_id, channel=channel, **kwargs
        ),
    )
    return item


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


# =============================================================================
# Shared secrets
# =============================================================================

async def test_webhooks_require_secret(client):
    response = await client.post("/webhooks/crm/email-bounce", json={"contactId": "c1"})
    assert response.status_code == 403

    response = await client.post(
        "/webhooks/crm/email-bounce",
        json={"contactId": "c1"},
        headers={"X-Webhook-Secret": "wrong"},
    )
    assert response.status_code == 403


async def test_scheduler_endpoints_require_internal_secret(client):
    response = await client.post("/internal/scheduled/sms-outreach", headers=WEBHOOK_HEADERS)
    assert response.status_code == 403


# =============================================================================
# Inbound messages
# =============================================================================

async def test_inbound_message_replies(client, db, crm_api, provider, integration):
    crm_api.add_contact(
        "c1",
        phone="+15551230001",
        fields={"lead_type": "Probate", "ai_state": "property_valuation", "property_address": "12 Oak St"},
    )
    provider.queue(GenerationResult(text="Would Tuesday at 3 work for a quick call?"))
    body = {"contactId": "c1", "locationId": "loc-1", "body": "yes still interested", "messageId": "m1"}

    first = await client.post("/webhooks/crm/inbound-message", json=body, headers=WEBHOOK_HEADERS)
    second = await client.post("/webhooks/crm/inbound-message", json=body, headers=WEBHOOK_HEADERS)

    assert first.status_code == 200
    assert first.json() == {"reply": "Would Tuesday at 3 work for a quick call?", "status": "replied"}
    assert second.json()["status"] == "duplicate"
    assert len(crm_api.sent_messages) == 1


async def test_inbound_email_reply_uses_campaign_address(client, crm_api, provider, integration):
    crm_api.add_contact(
        "c1",
        phone="+15551230001",
        fields={"lead_type": "Probate", "ai_state": "property_valuation", "property_address": "12 Oak St"},
    )
    provider.queue(GenerationResult(text="Happy to set up a call."))

    response = await client.post(
        "/webhooks/crm/inbound-message",
        json={"contactId": "c1", "locationId": "loc-1", "channel": "email", "body": "yes still interested"},
        headers=WEBHOOK_HEADERS,
    )

    assert response.status_code == 200
    assert crm_api.sent_messages[0]["emailFrom"] == "offers@example.com"


async def test_inbound_message_for_unknown_location(client):
    response = await client.post(
        "/webhooks/crm/inbound-message",
        json={"contactId": "c1", "locationId": "loc-unknown", "body": "hi"},
        headers=WEBHOOK_HEADERS,
    )
    assert response.status_code == 503


# =============================================================================
# Dispositions, bounces, tagging
# =============================================================================

async def test_disposition_webhook_fans_out(client, db, crm_api, integration):
    for contact_id in ("c1", "c2", "c3"):
        crm_api.add_contact(contact_id)
        queue(db, contact_id, lead_id="lead-9")

    response = await client.post(
        "/webhooks/crm/disposition",
        json={"contactId": "c1", "outcome": "Listed With Realtor"},
        headers=WEBHOOK_HEADERS,
    )

    assert response.status_code == 200
    assert response.json() == {"updated_contacts": 2}
    assert crm_api.field("c3", "call_outcome") == "Listed With Realtor"


async def test_disposition_needs_location_for_unknown_contact(client, integration):
    response = await client.post(
        "/webhooks/crm/disposition",
        json={"contactId": "stranger", "outcome": "Not Interested"},
        headers=WEBHOOK_HEADERS,
    )
    assert response.status_code == 422


async def test_email_bounce(client, db):
    queue(db, "c1", channel=Channel.EMAIL, contact_email="jane@example.com")

    response = await client.post(
        "/webhooks/crm/email-bounce", json={"contactId": "c1"}, headers=WEBHOOK_HEADERS
    )
    missing = await client.post(
        "/webhooks/crm/email-bounce", json={"contactId": "nobody"}, headers=WEBHOOK_HEADERS
    )

    assert response.json() == {"status": QueueItemStatus.FAILED.value}
    assert missing.json() == {"status": "not_queued"}


async def test_contact_tagged_enqueues_reachable_channels(client, db, integration):
    body = {
        "contactId": "c1",
        "locationId": "loc-1",
        "name": "Jane Doe",
        "phone": "(555) 123-0001",
        "email": "Jane@Example.com",
        "propertyAddress": "12 Oak St",
    }

    first = await client.post("/webhooks/crm/contact-tagged", json=body, headers=WEBHOOK_HEADERS)
    second = await client.post("/webhooks/crm/contact-tagged", json=body, headers=WEBHOOK_HEADERS)

    assert first.json() == {"created": 2, "existing": 0}
    assert second.json() == {"created": 0, "existing": 2}
    items = outreach_queue_service.get_items_for_contact(db, "c1")
    assert {i.contact_phone for i in items} == {"+15551230001"}
    assert {i.contact_email for i in items} == {"jane@example.com"}


async def test_contact_tagged_skips_channels_without_address(client, integration):
    response = await client.post(
        "/webhooks/crm/contact-tagged",
        json={"contactId": "c1", "locationId": "loc-1", "phone": "5551230001"},
        headers=WEBHOOK_HEADERS,
    )
    assert response.json() == {"created": 1, "existing": 0}


async def test_contact_tagged_rejects_bad_phone(client, integration):
    response = await client.post(
        "/webhooks/crm/contact-tagged",
        json={"contactId": "c1", "locationId": "loc-1", "phone": "12"},
        headers=WEBHOOK_HEADERS,
    )
    assert response.status_code == 422


async def test_contact_tagged_unknown_location(client):
    response = await client.post(
        "/webhooks/crm/contact-tagged",
        json={"contactId": "c1", "locationId": "loc-unknown", "phone": "5551230001"},
        headers=WEBHOOK_HEADERS,
    )
    assert response.status_code == 404


# =============================================================================
# Scheduler endpoints
# =============================================================================

async def test_scheduled_sms_pass(client, integration):
    response = await client.post("/internal/scheduled/sms-outreach", headers=INTERNAL_HEADERS)

    assert response.status_code == 200
    body = response.json()
    assert body["status_code"] == 200
    assert body["contacts_processed"] == 0


async def test_queue_stats_endpoint(client, db):
    queue(db, "c1")
    queue(db, "c2", channel=Channel.EMAIL)

    response = await client.get("/internal/scheduled/queue-stats", headers=INTERNAL_HEADERS)

    assert response.status_code == 200
    assert response.json() == {"sms": {"pending": 1}, "email": {"pending": 1}}
