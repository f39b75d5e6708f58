"""Tests for alert lifecycle decisions, including the end-to-end scenarios."""

from datetime import UTC, datetime, time, timedelta

import pytest
from support import make_subject

from contracts.subject import (
    ActiveAlert,
    ClearedAlert,
    InactiveAlert,
    MonitoringSettings,
    QuietHours,
)
from core.db.base import WriteOutcome
from core.monitoring.lifecycle import AlertDecision

T0 = datetime(2026, 10, 12, 8, 0, tzinfo=UTC)


async def seed(store, **overrides):
    subject = make_subject(**overrides)
    await store.upsert_subject(subject)
    return await store.get(subject.id)


@pytest.mark.asyncio
async def test_stale_subject_raises_alert(store, sender, lifecycle):
    """Threshold 12h, quiet hours off, sweep at T0+12h01m."""
    subject = await seed(store, last_heartbeat_at=T0)
    now = T0 + timedelta(hours=12, minutes=1)

    outcome = await lifecycle.on_stale(subject, now)

    assert outcome.decision == AlertDecision.RAISED
    assert outcome.delivery.succeeded == 1
    stored = await store.get("subject-1")
    assert stored.alert_state == ActiveAlert(since=now, cooldown_until=now + timedelta(hours=6))
    assert stored.alert_version == 1

    endpoint, subject_id, message = sender.sent[0]
    assert endpoint == "push:family-phone"
    assert subject_id == "subject-1"
    assert message.title == "Grandma safety alert"
    assert message.data["type"] == "survival_alert"
    assert message.data["hours_inactive"] == "12"


@pytest.mark.asyncio
async def test_quiet_hours_suppress_new_alert(store, sender, lifecycle):
    quiet = QuietHours(enabled=True, start=time(22, 0), end=time(6, 0))
    settings = MonitoringSettings(alert_threshold=timedelta(hours=2), quiet_hours=quiet)
    last = datetime(2026, 10, 12, 21, 0, tzinfo=UTC)
    subject = await seed(store, last_heartbeat_at=last, settings=settings)

    outcome = await lifecycle.on_stale(subject, datetime(2026, 10, 13, 2, 0, tzinfo=UTC))

    assert outcome.decision == AlertDecision.SUPPRESSED_QUIET
    assert sender.sent == []
    assert (await store.get("subject-1")).alert_state == InactiveAlert()


@pytest.mark.asyncio
async def test_heartbeats_through_the_night_leave_no_false_alarm(store, sender, lifecycle):
    quiet = QuietHours(enabled=True, start=time(22, 0), end=time(6, 0))
    settings = MonitoringSettings(alert_threshold=timedelta(hours=2), quiet_hours=quiet)
    subject = await seed(
        store, last_heartbeat_at=datetime(2026, 10, 13, 6, 58, tzinfo=UTC), settings=settings
    )
    now = datetime(2026, 10, 13, 7, 0, tzinfo=UTC)

    assert subject.is_stale(now) is False
    outcome = await lifecycle.on_fresh(subject, now)

    assert outcome.decision == AlertDecision.UNCHANGED
    assert sender.sent == []


@pytest.mark.asyncio
async def test_cooldown_blocks_duplicate_then_allows_realert(store, sender, lifecycle):
    subject = await seed(store, last_heartbeat_at=T0)

    first = await lifecycle.on_stale(subject, T0 + timedelta(hours=12))
    assert first.decision == AlertDecision.RAISED

    subject = await store.get("subject-1")
    second = await lifecycle.on_stale(subject, T0 + timedelta(hours=14))
    assert second.decision == AlertDecision.COOLDOWN

    subject = await store.get("subject-1")
    third = await lifecycle.on_stale(subject, T0 + timedelta(hours=19))
    assert third.decision == AlertDecision.RAISED

    assert len(sender.sent) == 2
    assert (await store.get("subject-1")).alert_version == 2


@pytest.mark.asyncio
async def test_weekday_scoped_quiet_hours(store, sender, lifecycle):
    quiet = QuietHours(
        enabled=True, start=time(22, 0), end=time(6, 0), active_weekdays={1, 2, 3, 4, 5}
    )
    settings = MonitoringSettings(quiet_hours=quiet)

    tuesday = datetime(2026, 10, 13, 23, 0, tzinfo=UTC)
    weekday_subject = await seed(
        store, last_heartbeat_at=tuesday - timedelta(hours=13), settings=settings
    )
    assert (await lifecycle.on_stale(weekday_subject, tuesday)).decision == (
        AlertDecision.SUPPRESSED_QUIET
    )

    saturday = datetime(2026, 10, 17, 23, 0, tzinfo=UTC)
    weekend_subject = await seed(
        store,
        subject_id="subject-2",
        last_heartbeat_at=saturday - timedelta(hours=13),
        settings=settings,
    )
    assert (await lifecycle.on_stale(weekend_subject, saturday)).decision == AlertDecision.RAISED
    assert len(sender.sent) == 1


@pytest.mark.asyncio
async def test_active_alert_clears_on_fresh_heartbeat_during_quiet_hours(store, lifecycle):
    quiet = QuietHours(enabled=True, start=time(0, 0), end=time(23, 59))
    now = datetime(2026, 10, 13, 3, 0, tzinfo=UTC)
    subject = await seed(
        store,
        last_heartbeat_at=now - timedelta(minutes=5),
        settings=MonitoringSettings(quiet_hours=quiet),
        alert_state=ActiveAlert(since=now - timedelta(hours=2), cooldown_until=now),
    )

    outcome = await lifecycle.on_fresh(subject, now)

    assert outcome.decision == AlertDecision.CLEARED
    assert (await store.get("subject-1")).alert_state == InactiveAlert()


@pytest.mark.asyncio
async def test_active_alert_survives_quiet_hours_starting(store, sender, lifecycle):
    quiet = QuietHours(enabled=True, start=time(22, 0), end=time(6, 0))
    since = datetime(2026, 10, 13, 20, 0, tzinfo=UTC)
    active = ActiveAlert(since=since, cooldown_until=since + timedelta(hours=1))
    subject = await seed(
        store,
        last_heartbeat_at=since - timedelta(hours=12),
        settings=MonitoringSettings(quiet_hours=quiet),
        alert_state=active,
    )

    outcome = await lifecycle.on_stale(subject, datetime(2026, 10, 13, 23, 0, tzinfo=UTC))

    assert outcome.decision == AlertDecision.SUPPRESSED_QUIET
    assert (await store.get("subject-1")).alert_state == active
    assert sender.sent == []


@pytest.mark.asyncio
async def test_fresh_heartbeat_committed_after_read_blocks_alert(store, sender, lifecycle):
    subject = await seed(store, last_heartbeat_at=T0)
    now = T0 + timedelta(hours=13)
    # The subject checks in between the sweep's read and its write.
    await store.update_heartbeat("subject-1", now - timedelta(minutes=1), "periodic")

    outcome = await lifecycle.on_stale(subject, now)

    assert outcome.decision == AlertDecision.CONFLICT
    assert outcome.dispatched is False
    assert sender.sent == []


@pytest.mark.asyncio
async def test_stale_read_cannot_clear_a_newer_alert(store, lifecycle):
    subject = await seed(store, last_heartbeat_at=T0)
    now = T0 + timedelta(hours=13)
    stale_view = subject.model_copy(update={"alert_state": ActiveAlert(since=T0, cooldown_until=T0)})

    outcome = await lifecycle.on_fresh(stale_view, now)

    assert outcome.decision == AlertDecision.CONFLICT


@pytest.mark.asyncio
async def test_acknowledge_holds_off_realert_for_one_cooldown(store, sender, lifecycle, clock):
    subject = await seed(store, last_heartbeat_at=T0)
    raised_at = T0 + timedelta(hours=12)
    await lifecycle.on_stale(subject, raised_at)

    clock.now = raised_at + timedelta(minutes=30)
    ack = await lifecycle.acknowledge("subject-1", cleared_by="daughter")
    assert ack.decision == AlertDecision.ACKNOWLEDGED
    stored = await store.get("subject-1")
    assert stored.alert_state == ClearedAlert(at=clock.now, cleared_by="daughter")

    held = await lifecycle.on_stale(stored, raised_at + timedelta(hours=6))
    assert held.decision == AlertDecision.ACKNOWLEDGED

    stored = await store.get("subject-1")
    again = await lifecycle.on_stale(stored, raised_at + timedelta(hours=6, minutes=31))
    assert again.decision == AlertDecision.RAISED
    assert len(sender.sent) == 2


@pytest.mark.asyncio
async def test_acknowledge_without_active_alert_is_a_noop(store, lifecycle):
    await seed(store, last_heartbeat_at=T0)

    outcome = await lifecycle.acknowledge("subject-1")

    assert outcome.decision == AlertDecision.UNCHANGED
    assert (await store.get("subject-1")).alert_version == 0


@pytest.mark.asyncio
async def test_cas_rejects_version_mismatch(store):
    subject = await seed(store, last_heartbeat_at=T0)

    outcome = await store.update_alert_state(
        subject.id,
        subject.alert_state,
        ActiveAlert(since=T0, cooldown_until=T0),
        expected_version=subject.alert_version + 1,
    )

    assert outcome is WriteOutcome.CONFLICT
