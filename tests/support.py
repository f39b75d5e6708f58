"""Test doubles shared across test modules."""

from datetime import UTC, datetime, timedelta

from contracts.subject import MonitoringSettings, Subject
from core.alerting.manager import AlertMessage, PushSender

T0 = datetime(2026, 10, 12, 8, 0, tzinfo=UTC)  # Monday


class FakeClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingSender(PushSender):
    def __init__(self, failing: set[str] | None = None):
        self.failing = failing or set()
        self.sent: list[tuple[str, str, AlertMessage]] = []

    async def send(self, endpoint_id: str, subject_id: str, message: AlertMessage) -> None:
        if endpoint_id in self.failing:
            raise ConnectionError(f"endpoint {endpoint_id} unreachable")
        self.sent.append((endpoint_id, subject_id, message))


def make_subject(subject_id: str = "subject-1", **overrides) -> Subject:
    payload = {
        "id": subject_id,
        "display_name": "Grandma",
        "subscribers": ["push:family-phone"],
        "settings": MonitoringSettings(),
    }
    payload.update(overrides)
    return Subject(**payload)
