"""LivenessStore interface shared by the Mongo and in-memory adapters."""

from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import datetime
from enum import StrEnum

from contracts.subject import AlertState, HeartbeatKind, Subject, SubjectQuery


class WriteOutcome(StrEnum):
    OK = "ok"
    CONFLICT = "conflict"


class LivenessStore:
    """One record per subject; single-document conditional updates only.

    Transient failures raise `StoreUnavailableError`; unknown ids raise
    `SubjectNotFoundError` where a method documents it.
    """

    async def get(self, subject_id: str) -> Subject:  # pragma: no cover - interface
        """Return the subject or raise `SubjectNotFoundError`."""
        raise NotImplementedError

    async def update_heartbeat(
        self, subject_id: str, timestamp: datetime, kind: HeartbeatKind
    ) -> bool:  # pragma: no cover - interface
        """Advance `last_heartbeat_at`.

        Returns False when `timestamp` is not newer than the stored value; the
        stored value never moves backward. Raises `SubjectNotFoundError`.
        """
        raise NotImplementedError

    async def update_alert_state(
        self,
        subject_id: str,
        expected_state: AlertState,
        new_state: AlertState,
        *,
        expected_version: int,
        heartbeat_not_after: datetime | None = None,
        heartbeat_after: datetime | None = None,
    ) -> WriteOutcome:  # pragma: no cover - interface
        """Compare-and-swap the alert state.

        Applies only if the stored state still has the expected status and
        version, and the stored heartbeat satisfies the optional bounds
        (`last_heartbeat_at <= heartbeat_not_after`, `> heartbeat_after`),
        so staleness is re-checked at commit time. Bumps `alert_version`.
        """
        raise NotImplementedError

    def list_monitored_subjects(
        self, query: SubjectQuery
    ) -> AsyncIterator[Subject]:  # pragma: no cover - interface
        """Stream matching subjects, least recently heard from first."""
        raise NotImplementedError

    async def upsert_subject(self, subject: Subject) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def ping(self) -> bool:  # pragma: no cover - interface
        raise NotImplementedError
