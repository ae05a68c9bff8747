"""Tests for the scheduled SMS/email outreach passes."""

from datetime import datetime, timedelta, timezone

from app.core.config import settings
from app.db.enums import Channel, QueueItemStatus, RateLimitKind
from app.db.models import RateLimitCounter
from app.schemas.outreach import QueueItemCreate
from app.services import crm_token_service, outreach_queue_service, outreach_runner
from app.services.outreach_templates import SMS_INITIAL

TUESDAY_AFTERNOON = datetime(2026, 10, 13, 18, 0, tzinfo=timezone.utc)
SUNDAY = datetime(2026, 10, 18, 16, 0, tzinfo=timezone.utc)


async def no_sleep(seconds):
    return None


def queue(db, contact_id="c1", channel=Channel.SMS, **kwargs):
    item, _ = outreach_queue_service.enqueue(
        db,
        QueueItemCreate(
            user_id="user-1",
            location_id="loc-1",
            contact_id=contact_id,
            channel=channel,
            contact_name="Jane Doe",
            property_address="12 Oak St",
            contact_phone="+15551230001",
            **kwargs,
        ),
    )
    return item


async def run_sms(db, crm_api, now=TUESDAY_AFTERNOON):
    return await outreach_runner.run_sms_outreach(
        db,
        now=now,
        client_factory=lambda token: crm_api.client(token.location_id, token.token),
        sleep=no_sleep,
    )


async def test_fresh_contact_gets_one_sms(db, crm_api, integration):
    """One pass sends exactly one SMS and leaves the item pending for the next touch."""
    crm_api.add_contact("c1")
    item = queue(db)

    result = await run_sms(db, crm_api)

    assert result.status_code == 200
    assert result.contacts_processed == 1
    assert result.accounts_processed == 1
    assert len(crm_api.sent_messages) == 1
    message = crm_api.sent_messages[0]
    assert message["type"] == "SMS"
    assert message["contactId"] == "c1"
    assert message["message"] == SMS_INITIAL.format(first_name="Jane", property_address="12 Oak St")

    db.refresh(item)
    assert item.touch_count == 1
    assert item.status == QueueItemStatus.PENDING.value
    assert item.last_sent_at is not None
    assert crm_api.field("c1", "sms_touch_count") == 1


async def test_second_pass_same_day_sends_nothing(db, crm_api, integration):
    crm_api.add_contact("c1")
    queue(db)

    await run_sms(db, crm_api)
    await run_sms(db, crm_api, now=TUESDAY_AFTERNOON + timedelta(hours=1))

    assert len(crm_api.sent_messages) == 1


async def test_empty_queue_makes_no_crm_calls(db, crm_api, integration):
    """No pending items means no contact search and no sends."""
    result = await run_sms(db, crm_api)

    assert result.contacts_processed == 0
    assert result.accounts_processed == 1
    assert crm_api.requests == []


async def test_closed_hours_skip_the_pass(db, crm_api, integration):
    crm_api.add_contact("c1")
    queue(db)

    result = await run_sms(db, crm_api, now=SUNDAY)

    assert result.message == "Sunday - closed. Next business hours: Monday 9 AM EST"
    assert result.contacts_processed == 0
    assert crm_api.requests == []


async def test_account_without_token_is_skipped(db, crm_api):
    """An expired token that cannot be refreshed skips the account, not the run."""
    crm_token_service.connect_integration(
        db,
        user_id="user-1",
        location_id="loc-1",
        access_token="expired",
        refresh_token=None,
        expires_in=60,
        now=TUESDAY_AFTERNOON - timedelta(days=1),
    )
    queue(db)

    result = await run_sms(db, crm_api)

    assert result.accounts_skipped == 1
    assert result.accounts_processed == 0
    assert crm_api.requests == []


async def test_touch_count_never_passes_ceiling(db, crm_api, integration):
    """Daily passes stop at the ceiling and write the disposition once."""
    crm_api.add_contact("c1")
    crm_api.opportunities["c1"] = [{"id": "opp-1"}]
    item = queue(db)

    day = TUESDAY_AFTERNOON
    for _ in range(settings.SMS_MAX_TOUCHES + 3):
        await run_sms(db, crm_api, now=day)
        day += timedelta(days=1)
        # Sunday passes are closed anyway
        while day.weekday() == 6:
            day += timedelta(days=1)

    db.refresh(item)
    assert item.touch_count == settings.SMS_MAX_TOUCHES
    assert item.status == QueueItemStatus.COMPLETED.value
    assert len(crm_api.sent_messages) == settings.SMS_MAX_TOUCHES
    assert len(crm_api.opportunity_updates) == 1


async def test_quota_exhaustion_leaves_items_pending(db, crm_api, integration):
    cap = settings.SMS_HOURLY_CAP
    db.add(
        RateLimitCounter(
            location_id="loc-1",
            kind=RateLimitKind.SMS.value,
            hourly_count=cap - 1,
            daily_count=cap - 1,
            last_hour_reset=TUESDAY_AFTERNOON - timedelta(minutes=5),
            last_day_reset=TUESDAY_AFTERNOON - timedelta(minutes=5),
            version=0,
        )
    )
    db.commit()
    for contact_id in ("c1", "c2", "c3"):
        crm_api.add_contact(contact_id)
        queue(db, contact_id=contact_id)

    result = await run_sms(db, crm_api)

    assert result.contacts_processed == 1
    assert len(crm_api.sent_messages) == 1
    batch = outreach_queue_service.get_pending_batch(db, "user-1", Channel.SMS, 10)
    assert sorted(i.touch_count for i in batch) == [0, 0, 1]


async def test_rejected_send_fails_item_and_batch_continues(db, crm_api, integration):
    crm_api.add_contact("c1")
    crm_api.add_contact("c2")
    bad = queue(db, contact_id="c1")
    good = queue(db, contact_id="c2")
    crm_api.fail("POST", "/conversations/messages", 400)

    result = await run_sms(db, crm_api)

    assert result.contacts_processed == 1
    db.refresh(bad)
    db.refresh(good)
    assert bad.status == QueueItemStatus.FAILED.value
    assert good.touch_count == 1


async def test_transient_send_failure_stays_pending(db, crm_api, integration):
    crm_api.add_contact("c1")
    item = queue(db)
    crm_api.fail("POST", "/conversations/messages", 503)

    await run_sms(db, crm_api)

    db.refresh(item)
    assert item.status == QueueItemStatus.PENDING.value
    assert item.touch_count == 0
    assert item.last_error


async def test_email_pass_sends_from_campaign_address(db, crm_api, integration):
    crm_api.add_contact("c1")
    queue(db, channel=Channel.EMAIL, contact_email="jane@example.com")

    result = await outreach_runner.run_email_outreach(
        db,
        now=TUESDAY_AFTERNOON,
        client_factory=lambda token: crm_api.client(token.location_id, token.token),
        sleep=no_sleep,
    )

    assert result.emails_sent == 1
    message = crm_api.sent_messages[0]
    assert message["type"] == "Email"
    assert message["emailFrom"] == "offers@example.com"
    assert message["subject"] == "Clarity on 12 Oak St"
    assert crm_api.field("c1", "email_touch_count") == 1
