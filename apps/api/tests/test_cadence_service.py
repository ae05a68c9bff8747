"""Tests for touch ceilings, spacing and the terminal disposition."""

from datetime import datetime, timedelta, timezone

from app.db.enums import Channel, QueueItemStatus, RateLimitKind
from app.schemas.outreach import QueueItemCreate
from app.services import cadence_service, outreach_queue_service, rate_limit_service
from app.services.cadence_service import CadencePolicy

NOW = datetime(2026, 10, 13, 18, 0, tzinfo=timezone.utc)  # Tuesday 14:00 local


def queue(db, contact_id="c1"):
    item, _ = outreach_queue_service.enqueue(
        db,
        QueueItemCreate(
            user_id="user-1",
            location_id="loc-1",
            contact_id=contact_id,
            channel=Channel.SMS,
            contact_phone="+15551230001",
        ),
    )
    return item


def test_fresh_item_is_eligible(db):
    item = queue(db)
    assert cadence_service.is_eligible_for_next_touch(item, CadencePolicy(max_touches=7), NOW)


def test_one_touch_per_business_day(db):
    """A contact touched this morning is not touched again until tomorrow."""
    item = queue(db)
    policy = CadencePolicy(max_touches=7)
    outreach_queue_service.mark_sent(db, item, 1, 7, NOW - timedelta(hours=4))

    assert cadence_service.is_eligible_for_next_touch(item, policy, NOW) is False
    assert cadence_service.is_eligible_for_next_touch(item, policy, NOW + timedelta(days=1)) is True


def test_spacing_rule_is_off_by_default(db):
    item = queue(db)
    outreach_queue_service.mark_sent(db, item, 1, 7, NOW - timedelta(days=1))

    assert cadence_service.is_eligible_for_next_touch(item, CadencePolicy(max_touches=7), NOW)


def test_spacing_rule_counts_business_days_when_enabled(db):
    item = queue(db)
    policy = CadencePolicy(max_touches=7, spacing_enabled=True, min_business_days=5)
    outreach_queue_service.mark_sent(db, item, 1, 7, NOW)

    # Tue 13th -> Mon 19th is 4 business days, Tue 20th is 5
    assert cadence_service.is_eligible_for_next_touch(item, policy, NOW + timedelta(days=6)) is False
    assert cadence_service.is_eligible_for_next_touch(item, policy, NOW + timedelta(days=7)) is True


def test_channel_policies_use_configured_ceilings():
    assert cadence_service.policy_for_channel(Channel.SMS).max_touches == 7
    assert cadence_service.dial_tracking_policy().max_touches == 8
    assert cadence_service.dial_tracking_policy().spacing_enabled is False


def test_item_at_ceiling_is_not_eligible(db):
    item = queue(db)
    outreach_queue_service.mark_sent(db, item, 2, 2, NOW - timedelta(days=3))
    assert cadence_service.is_eligible_for_next_touch(item, CadencePolicy(max_touches=2), NOW) is False


async def test_record_touch_mirrors_counter_to_crm(db, crm_api):
    crm_api.add_contact("c1")
    item = queue(db)

    await cadence_service.record_touch(db, crm_api.client(), item, CadencePolicy(max_touches=7), NOW)

    assert item.touch_count == 1
    assert item.status == QueueItemStatus.PENDING.value
    assert crm_api.field("c1", "sms_touch_count") == 1
    assert crm_api.field("c1", "last_touch_date") == "2026-10-13"


async def test_ceiling_writes_one_terminal_disposition(db, crm_api):
    """Reaching the ceiling completes the item with exactly one disposition write."""
    crm_api.add_contact("c1")
    crm_api.opportunities["c1"] = [{"id": "opp-1"}]
    item = queue(db)
    policy = CadencePolicy(max_touches=2)
    crm = crm_api.client()

    await cadence_service.record_touch(db, crm, item, policy, NOW - timedelta(days=1))
    await cadence_service.record_touch(db, crm, item, policy, NOW)

    assert item.touch_count == 2
    assert item.status == QueueItemStatus.COMPLETED.value
    assert crm_api.opportunity_updates == [
        ("opp-1", {"customFields": [{"id": "disposition", "field_value": "Direct Mail Campaign"}]})
    ]
    assert outreach_queue_service.get_pending_batch(db, "user-1", Channel.SMS, 10) == []

    # Nothing left to retry
    assert await cadence_service.complete_exhausted_items(db, crm, "user-1", Channel.SMS) == 0
    assert len(crm_api.opportunity_updates) == 1


async def test_each_crm_write_takes_write_quota(db, crm_api):
    """Counter mirror and opportunity update each count; the opportunity read does not."""
    crm_api.add_contact("c1")
    crm_api.opportunities["c1"] = [{"id": "opp-1"}]
    item = queue(db)

    await cadence_service.record_touch(db, crm_api.client(), item, CadencePolicy(max_touches=1), NOW)

    counter = rate_limit_service.get_counter(db, "loc-1", RateLimitKind.CRM_WRITE)
    assert counter.hourly_count == 2
    assert item.status == QueueItemStatus.COMPLETED.value


async def test_failed_disposition_write_is_retried_later(db, crm_api):
    crm_api.add_contact("c1")
    crm_api.opportunities["c1"] = [{"id": "opp-1"}]
    crm_api.fail("PUT", "/opportunities/opp-1", 400)
    item = queue(db)
    crm = crm_api.client()

    await cadence_service.record_touch(db, crm, item, CadencePolicy(max_touches=1), NOW)

    assert item.status == QueueItemStatus.SENT.value
    assert outreach_queue_service.get_pending_batch(db, "user-1", Channel.SMS, 10) == []

    completed = await cadence_service.complete_exhausted_items(db, crm, "user-1", Channel.SMS)

    assert completed == 1
    db.refresh(item)
    assert item.status == QueueItemStatus.COMPLETED.value


async def test_counter_mirror_failure_does_not_undo_touch(db, crm_api):
    item = queue(db, contact_id="not-in-crm")

    await cadence_service.record_touch(db, crm_api.client(), item, CadencePolicy(max_touches=7), NOW)

    assert item.touch_count == 1


async def test_completed_item_gets_no_second_disposition(db, crm_api):
    crm_api.add_contact("c1")
    item = queue(db)
    outreach_queue_service.mark_status(db, item, QueueItemStatus.COMPLETED)

    assert await cadence_service.on_max_touches_reached(db, crm_api.client(), item) is False
    assert crm_api.calls("GET", "/opportunities/search") == []
