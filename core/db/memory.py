"""In-process LivenessStore for tests and single-node development."""

from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import datetime

from contracts.subject import (
    AlertState,
    HeartbeatKind,
    Subject,
    SubjectQuery,
    ensure_aware,
)
from core.db.base import LivenessStore, WriteOutcome
from core.errors import SubjectNotFoundError


class InMemoryLivenessStore(LivenessStore):
    """Dictionary-backed store.

    Every check-and-set below runs without an await in between, which makes it
    atomic on a single event loop.
    """

    def __init__(self, subjects: list[Subject] | None = None):
        self._subjects: dict[str, Subject] = {}
        for subject in subjects or []:
            self._subjects[subject.id] = subject.model_copy(deep=True)

    async def get(self, subject_id: str) -> Subject:
        subject = self._subjects.get(subject_id)
        if subject is None:
            raise SubjectNotFoundError(subject_id)
        return subject.model_copy(deep=True)

    async def update_heartbeat(
        self, subject_id: str, timestamp: datetime, kind: HeartbeatKind
    ) -> bool:
        subject = self._subjects.get(subject_id)
        if subject is None:
            raise SubjectNotFoundError(subject_id)

        timestamp = ensure_aware(timestamp)
        if subject.last_heartbeat_at is not None and timestamp <= subject.last_heartbeat_at:
            return False

        self._subjects[subject_id] = subject.model_copy(
            update={"last_heartbeat_at": timestamp, "heartbeat_kind": str(kind)}
        )
        return True

    async def update_alert_state(
        self,
        subject_id: str,
        expected_state: AlertState,
        new_state: AlertState,
        *,
        expected_version: int,
        heartbeat_not_after: datetime | None = None,
        heartbeat_after: datetime | None = None,
    ) -> WriteOutcome:
        subject = self._subjects.get(subject_id)
        if subject is None:
            return WriteOutcome.CONFLICT
        if subject.alert_version != expected_version:
            return WriteOutcome.CONFLICT
        if subject.alert_state.status != expected_state.status:
            return WriteOutcome.CONFLICT

        last = subject.last_heartbeat_at
        if heartbeat_not_after is not None and (last is None or last > heartbeat_not_after):
            return WriteOutcome.CONFLICT
        if heartbeat_after is not None and (last is None or last <= heartbeat_after):
            return WriteOutcome.CONFLICT

        self._subjects[subject_id] = subject.model_copy(
            update={"alert_state": new_state, "alert_version": expected_version + 1}
        )
        return WriteOutcome.OK

    async def list_monitored_subjects(self, query: SubjectQuery) -> AsyncIterator[Subject]:
        matching = [
            subject
            for subject in self._subjects.values()
            if subject.monitoring_enabled == query.monitoring_enabled
        ]
        matching.sort(key=_heartbeat_sort_key)
        for subject in matching:
            yield subject.model_copy(deep=True)

    async def upsert_subject(self, subject: Subject) -> None:
        self._subjects[subject.id] = subject.model_copy(deep=True)

    async def ping(self) -> bool:
        return True


def _heartbeat_sort_key(subject: Subject) -> tuple[int, float]:
    if subject.last_heartbeat_at is None:
        return (0, 0.0)
    return (1, subject.last_heartbeat_at.timestamp())
