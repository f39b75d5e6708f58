"""Tests for notification fan-out and send capabilities."""

import asyncio
import json
from datetime import UTC, datetime, timedelta

import httpx
import pytest
from support import RecordingSender, make_subject

from core.alerting.channels import EmailSender, HttpPushSender, RedisPushSender
from core.alerting.manager import (
    AlertMessage,
    NotificationDispatcher,
    RoutingSender,
    build_survival_alert,
    mask_endpoint,
)
from core.db.redis import RedisQueueAdapter

NOW = datetime(2026, 10, 13, 9, 0, tzinfo=UTC)


class FakeSMTP:
    def __init__(self, host: str, port: int):
        self.host = host
        self.port = port
        self.sent_messages = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        _ = exc_type, exc, tb
        return False

    def send_message(self, msg):
        self.sent_messages.append(msg)


class SMTPFactory:
    def __init__(self):
        self.instances = []

    def __call__(self, host: str, port: int):
        instance = FakeSMTP(host, port)
        self.instances.append(instance)
        return instance


class FakeRedis:
    def __init__(self):
        self.lists: dict[str, list[str]] = {}

    async def lpush(self, key, value):
        self.lists.setdefault(key, []).insert(0, value)
        return len(self.lists[key])

    async def ltrim(self, key, start, end):
        self.lists[key] = self.lists[key][start : end + 1]

    async def ping(self):
        return True


class HangingSender(RecordingSender):
    async def send(self, endpoint_id, subject_id, message):
        if endpoint_id == "push:slow":
            await asyncio.sleep(10)
        await super().send(endpoint_id, subject_id, message)


def sample_message() -> AlertMessage:
    subject = make_subject(last_heartbeat_at=NOW - timedelta(hours=13, minutes=20))
    return build_survival_alert(subject, NOW)


def test_survival_alert_payload():
    message = sample_message()
    assert message.title == "Grandma safety alert"
    assert message.severity == "CRITICAL"
    assert message.body.startswith("No activity for 13 hours")
    assert message.data == {
        "type": "survival_alert",
        "subject_id": "subject-1",
        "display_name": "Grandma",
        "hours_inactive": "13",
        "timestamp": NOW.isoformat(),
    }


def test_unnamed_subject_alert_uses_placeholder():
    subject = make_subject(display_name=None, last_heartbeat_at=NOW - timedelta(hours=12))
    assert build_survival_alert(subject, NOW).title == "Unknown safety alert"


def test_mask_endpoint_truncates_long_tokens():
    assert mask_endpoint("short") == "short"
    assert mask_endpoint("x" * 40) == "x" * 20 + "..."


@pytest.mark.asyncio
async def test_partial_failure_still_counts_as_delivered(metrics):
    sender = RecordingSender(failing={"push:broken"})
    dispatcher = NotificationDispatcher(sender, metrics=metrics)
    subject = make_subject(subscribers=["push:broken", "push:ok-1", "push:ok-2"])

    report = await dispatcher.dispatch(subject, sample_message())

    assert report.ok is True
    assert report.attempted == 3
    assert report.succeeded == 2
    assert set(report.failures) == {"push:broken"}
    assert [endpoint for endpoint, _, _ in sender.sent] == ["push:ok-1", "push:ok-2"]
    assert metrics.registry.get_sample_value(
        "liveness_notification_sends_total", {"outcome": "failed"}
    ) == 1.0


@pytest.mark.asyncio
async def test_slow_endpoint_times_out_without_blocking_others(metrics):
    sender = HangingSender()
    dispatcher = NotificationDispatcher(sender, send_timeout_seconds=0.05, metrics=metrics)
    subject = make_subject(subscribers=["push:slow", "push:fast"])

    report = await dispatcher.dispatch(subject, sample_message())

    assert report.succeeded == 1
    assert report.failures["push:slow"] == "TimeoutError"


@pytest.mark.asyncio
async def test_all_endpoints_failing_is_not_ok(metrics):
    sender = RecordingSender(failing={"push:a"})
    dispatcher = NotificationDispatcher(sender, metrics=metrics)

    report = await dispatcher.dispatch(make_subject(subscribers=["push:a"]), sample_message())

    assert report.ok is False


@pytest.mark.asyncio
async def test_no_subscribers_attempts_nothing(metrics):
    dispatcher = NotificationDispatcher(RecordingSender(), metrics=metrics)

    report = await dispatcher.dispatch(make_subject(subscribers=[]), sample_message())

    assert report.attempted == 0
    assert report.ok is False


@pytest.mark.asyncio
async def test_routing_sender_dispatches_by_scheme():
    push = RecordingSender()
    email = RecordingSender()
    router = RoutingSender({"push": push, "mailto": email})

    await router.send("push:token-1", "s", sample_message())
    await router.send("mailto:family@example.com", "s", sample_message())

    assert push.sent[0][0] == "token-1"
    assert email.sent[0][0] == "family@example.com"
    with pytest.raises(LookupError):
        await router.send("sms:+5511999999999", "s", sample_message())


@pytest.mark.asyncio
async def test_routing_sender_falls_back_to_default():
    default = RecordingSender()
    router = RoutingSender({}, default=default)

    await router.send("raw-device-token", "s", sample_message())

    assert default.sent[0][0] == "raw-device-token"


@pytest.mark.asyncio
async def test_http_push_sender_posts_payload():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"accepted": True})

    client = httpx.AsyncClient(
        base_url="https://push.example.com", transport=httpx.MockTransport(handler)
    )
    async with HttpPushSender("https://push.example.com", client=client) as sender:
        await sender.send("device-token", "subject-1", sample_message())

    assert requests[0].url.path == "/v1/send"
    body = json.loads(requests[0].content)
    assert body["token"] == "device-token"
    assert body["notification"]["title"] == "Grandma safety alert"
    assert body["data"]["type"] == "survival_alert"
    assert body["priority"] == "high"


@pytest.mark.asyncio
async def test_http_push_sender_raises_on_rejection():
    client = httpx.AsyncClient(
        base_url="https://push.example.com",
        transport=httpx.MockTransport(lambda request: httpx.Response(410, text="unregistered")),
    )
    sender = HttpPushSender("https://push.example.com", client=client)

    with pytest.raises(httpx.HTTPStatusError):
        await sender.send("stale-token", "subject-1", sample_message())
    await sender.close()


@pytest.mark.asyncio
async def test_redis_sender_queues_capped_json():
    adapter = RedisQueueAdapter("redis://localhost:6379/0")
    adapter.client = FakeRedis()
    sender = RedisPushSender(adapter, max_queue_length=2)

    for _ in range(3):
        await sender.send("device-1", "subject-1", sample_message())

    queue = adapter.client.lists["liveness:notifications:device-1"]
    assert len(queue) == 2
    assert json.loads(queue[0])["data"]["subject_id"] == "subject-1"


@pytest.mark.asyncio
async def test_redis_adapter_requires_connection():
    adapter = RedisQueueAdapter("redis://localhost:6379/0")
    with pytest.raises(RuntimeError):
        await adapter.push_json("key", {"a": 1})


@pytest.mark.asyncio
async def test_email_sender_delivers_via_smtp():
    smtp_factory = SMTPFactory()
    sender = EmailSender(
        smtp_host="smtp.example.com",
        smtp_port=2525,
        sender="alerts@example.com",
        smtp_factory=smtp_factory,
    )

    await sender.send("family@example.com", "subject-1", sample_message())

    smtp = smtp_factory.instances[0]
    assert (smtp.host, smtp.port) == ("smtp.example.com", 2525)
    msg = smtp.sent_messages[0]
    assert msg["To"] == "family@example.com"
    assert msg["Subject"] == "[CRITICAL] Grandma safety alert"
    assert "hours_inactive: 13" in msg.get_content()
