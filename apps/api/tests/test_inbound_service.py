"""Tests for inbound reply triage and at-most-once processing."""

from datetime import timedelta

from redis.exceptions import ConnectionError as RedisConnectionError

from app.core.config import settings
from app.core.constants import DNC_TAG, WRONG_CONTACT_TAG
from app.db.enums import Channel, JobType, QueueItemStatus, RateLimitKind
from app.db.models import InboundMessageReceipt, Job, RateLimitCounter
from app.schemas.outreach import InboundMessageEvent, QueueItemCreate
from app.services import (
    idempotency_service,
    inbound_service,
    outreach_queue_service,
    rate_limit_service,
)
from app.services.ai_provider import GenerationResult
from app.utils.datetime_parsing import utc_now

REPLY = "Great! Would Tuesday or Wednesday afternoon work for a quick call?"


def event(body, message_id="m1", **extra) -> InboundMessageEvent:
    payload = {"contactId": "c1", "locationId": "loc-1", "body": body, "messageId": message_id}
    payload.update(extra)
    return InboundMessageEvent.model_validate(payload)


def add_lead(db, crm_api):
    crm_api.add_contact(
        "c1",
        firstName="Jane",
        phone="+15551230001",
        fields={"lead_type": "Pre-Foreclosure", "ai_state": "property_valuation", "property_address": "12 Oak St"},
    )
    item, _ = outreach_queue_service.enqueue(
        db,
        QueueItemCreate(user_id="user-1", location_id="loc-1", contact_id="c1", channel=Channel.SMS),
    )
    return item


async def handle(db, crm_api, provider, tools, evt):
    return await inbound_service.handle_inbound_message(db, crm_api.client(), provider, tools, evt)


async def test_replayed_message_is_processed_once(db, crm_api, provider, tools):
    """The same inbound event delivered twice produces one reply."""
    add_lead(db, crm_api)
    provider.queue(GenerationResult(text=REPLY), GenerationResult(text="second reply"))

    first = await handle(db, crm_api, provider, tools, event("yes still interested"))
    second = await handle(db, crm_api, provider, tools, event("yes still interested"))

    assert first.status == "replied"
    assert first.reply == REPLY
    assert second.status == "duplicate"
    assert len(crm_api.sent_messages) == 1
    assert len(provider.calls) == 1
    assert crm_api.field("c1", "ai_state") == "appointment_booking"


async def test_messages_without_vendor_id_dedup_on_content(db, crm_api, provider, tools):
    add_lead(db, crm_api)
    provider.queue(GenerationResult(text=REPLY))

    await handle(db, crm_api, provider, tools, event("yes still interested", message_id=None))
    second = await handle(db, crm_api, provider, tools, event("yes still interested", message_id=None))

    assert second.status == "duplicate"


async def test_reply_marks_queue_items_replied(db, crm_api, provider, tools):
    item = add_lead(db, crm_api)
    provider.queue(GenerationResult(text=REPLY))

    await handle(db, crm_api, provider, tools, event("yes still interested"))

    db.refresh(item)
    assert item.status == QueueItemStatus.REPLIED.value


async def test_stop_reply_opts_out_and_schedules_broadcast(db, crm_api, provider, tools):
    item = add_lead(db, crm_api)

    result = await handle(db, crm_api, provider, tools, event("STOP texting me"))

    assert result.status == "opted_out"
    db.refresh(item)
    assert item.status == QueueItemStatus.OPTED_OUT.value
    assert DNC_TAG in crm_api.contacts["c1"]["tags"]
    assert crm_api.sent_messages == []
    assert provider.calls == []

    job = db.query(Job).one()
    assert job.job_type == JobType.DISPOSITION_BROADCAST.value
    assert job.payload == {"contact_id": "c1", "location_id": "loc-1", "outcome": "Not Interested"}
    assert job.idempotency_key == "disposition:inbound:m1"


async def test_stop_reply_survives_crm_tag_failure(db, crm_api, provider, tools):
    """The broadcast job is scheduled even when the CRM rejects the DNC tag."""
    item = add_lead(db, crm_api)
    crm_api.fail("POST", "/contacts/c1/tags", 500, 500, 500)

    result = await handle(db, crm_api, provider, tools, event("STOP"))
    replay = await handle(db, crm_api, provider, tools, event("STOP"))

    assert result.status == "opted_out"
    assert replay.status == "duplicate"
    db.refresh(item)
    assert item.status == QueueItemStatus.OPTED_OUT.value
    job = db.query(Job).one()
    assert job.job_type == JobType.DISPOSITION_BROADCAST.value


async def test_wrong_contact_reply(db, crm_api, provider, tools):
    item = add_lead(db, crm_api)

    result = await handle(db, crm_api, provider, tools, event("sorry, wrong number"))

    assert result.status == "wrong_contact"
    db.refresh(item)
    assert item.status == QueueItemStatus.OPTED_OUT.value
    assert WRONG_CONTACT_TAG in crm_api.contacts["c1"]["tags"]
    assert crm_api.notes and crm_api.notes[0][0] == "c1"


async def test_wrong_contact_survives_crm_note_failure(db, crm_api, provider, tools):
    item = add_lead(db, crm_api)
    crm_api.fail("POST", "/contacts/c1/notes", 400)

    result = await handle(db, crm_api, provider, tools, event("wrong number"))

    assert result.status == "wrong_contact"
    db.refresh(item)
    assert item.status == QueueItemStatus.OPTED_OUT.value


async def test_missing_provider_leaves_reply_for_a_human(db, crm_api, tools):
    item = add_lead(db, crm_api)

    result = await handle(db, crm_api, None, tools, event("yes still interested"))

    assert result.status == "ai_unavailable"
    db.refresh(item)
    assert item.status == QueueItemStatus.REPLIED.value
    assert crm_api.sent_messages == []


async def test_ineligible_contact(db, crm_api, provider, tools):
    crm_api.add_contact("c1", dnd=True, phone="+15551230001", fields={"lead_type": "Probate"})

    result = await handle(db, crm_api, provider, tools, event("yes still interested"))

    assert result.status == "ineligible"
    assert result.reply is None


async def test_handoff_status(db, crm_api, provider, tools):
    add_lead(db, crm_api)

    result = await handle(db, crm_api, provider, tools, event("can I talk to someone"))

    assert result.status == "handoff"
    assert result.reply


async def test_reply_takes_message_and_write_quota(db, crm_api, provider, tools):
    add_lead(db, crm_api)
    provider.queue(GenerationResult(text=REPLY))

    await handle(db, crm_api, provider, tools, event("yes still interested"))

    assert rate_limit_service.get_counter(db, "loc-1", RateLimitKind.SMS).hourly_count == 1
    assert rate_limit_service.get_counter(db, "loc-1", RateLimitKind.CRM_WRITE).hourly_count == 1


async def test_exhausted_sms_quota_suppresses_reply(db, crm_api, provider, tools):
    add_lead(db, crm_api)
    provider.queue(GenerationResult(text=REPLY))
    recent = utc_now() - timedelta(minutes=1)
    db.add(
        RateLimitCounter(
            location_id="loc-1",
            kind=RateLimitKind.SMS.value,
            hourly_count=settings.SMS_HOURLY_CAP,
            daily_count=settings.SMS_HOURLY_CAP,
            last_hour_reset=recent,
            last_day_reset=recent,
            version=0,
        )
    )
    db.commit()

    result = await handle(db, crm_api, provider, tools, event("yes still interested"))

    assert result.status == "quota_exceeded"
    assert result.reply is None
    assert crm_api.sent_messages == []


async def test_empty_generation_reports_no_reply(db, crm_api, provider, tools):
    add_lead(db, crm_api)

    result = await handle(db, crm_api, provider, tools, event("yes still interested"))

    assert result.status == "no_reply"


# =============================================================================
# Idempotency store
# =============================================================================

def test_message_key_prefers_vendor_id():
    assert (
        idempotency_service.message_key(message_id="m1", contact_id="c1", conversation_id=None, body="hi")
        == "inbound:m1"
    )
    hashed = idempotency_service.message_key(message_id=None, contact_id="c1", conversation_id="cv1", body="hi")
    assert hashed.startswith("inbound:")
    assert hashed != idempotency_service.message_key(
        message_id=None, contact_id="c1", conversation_id="cv1", body="hi!"
    )


async def test_database_claims_are_unique(db):
    assert await idempotency_service.claim(db, "inbound:m1", "c1") is True
    assert await idempotency_service.claim(db, "inbound:m1", "c1") is False
    assert db.query(InboundMessageReceipt).count() == 1


async def test_redis_claim_with_ttl(db, monkeypatch):
    class FakeRedis:
        def __init__(self):
            self.keys = {}

        async def set(self, key, value, nx=False, ex=None):
            if nx and key in self.keys:
                return None
            self.keys[key] = (value, ex)
            return True

    redis = FakeRedis()
    monkeypatch.setattr(idempotency_service, "get_async_redis_client", lambda: redis)

    assert await idempotency_service.claim(db, "inbound:m1", "c1") is True
    assert await idempotency_service.claim(db, "inbound:m1", "c1") is False
    assert redis.keys["inbound:m1"][1] == 7 * 24 * 3600
    assert db.query(InboundMessageReceipt).count() == 0


async def test_redis_outage_falls_back_to_database(db, monkeypatch):
    class BrokenRedis:
        async def set(self, *args, **kwargs):
            raise RedisConnectionError("down")

    monkeypatch.setattr(idempotency_service, "get_async_redis_client", lambda: BrokenRedis())

    assert await idempotency_service.claim(db, "inbound:m1", "c1") is True
    assert await idempotency_service.claim(db, "inbound:m1", "c1") is False
