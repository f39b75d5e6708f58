"""Heartbeat batching policy for one subject.

The write decision looks only at elapsed time and the force flag. Quiet hours
never reach this module; heartbeats keep flowing through a quiet period so
`last_heartbeat_at` is current the moment the period ends.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from contracts.subject import (
    DEFAULT_LONG_SILENCE_THRESHOLD,
    DEFAULT_MIN_REFRESH_INTERVAL,
    HeartbeatKind,
)
from core.db.base import LivenessStore
from core.monitoring.metrics import LivenessMetrics
from core.utils.clock import Clock, utc_now

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class EmitResult:
    """Outcome of one `record_activity` call."""

    written: bool
    kind: HeartbeatKind | None = None
    deferred: bool = False
    error: str | None = None


class HeartbeatEmitter:
    """Decides whether an activity event becomes a store write now or later."""

    def __init__(
        self,
        subject_id: str,
        *,
        store: LivenessStore,
        min_refresh_interval: timedelta = DEFAULT_MIN_REFRESH_INTERVAL,
        long_silence_threshold: timedelta = DEFAULT_LONG_SILENCE_THRESHOLD,
        clock: Clock = utc_now,
        metrics: LivenessMetrics | None = None,
    ):
        self.subject_id = subject_id
        self.store = store
        self.min_refresh_interval = min_refresh_interval
        self.long_silence_threshold = long_silence_threshold
        self.clock = clock
        self.metrics = metrics or LivenessMetrics()
        self.last_write_at: datetime | None = None
        self.last_attempt_at: datetime | None = None
        self.last_attempt_failed = False
        self.last_activity_at: datetime | None = None
        self.deferred_count = 0

    @property
    def is_first_activity(self) -> bool:
        return self.last_write_at is None

    def classify(self, now: datetime) -> HeartbeatKind | None:
        """Kind of write due at `now`, or None when the event should be batched.

        Retries after a failed write are throttled by the refresh interval, so
        an unreachable store is hit at most once per interval.
        """
        if (
            self.last_attempt_failed
            and self.last_attempt_at is not None
            and now - self.last_attempt_at < self.min_refresh_interval
        ):
            return None

        if self.last_write_at is None:
            return HeartbeatKind.FIRST_CONTACT

        elapsed = now - self.last_write_at
        if elapsed >= self.long_silence_threshold:
            return HeartbeatKind.RESUMED
        if elapsed >= self.min_refresh_interval:
            return HeartbeatKind.PERIODIC
        return None

    def _forced_kind(self, now: datetime) -> HeartbeatKind:
        if self.last_write_at is None:
            return HeartbeatKind.FIRST_CONTACT
        if now - self.last_write_at >= self.long_silence_threshold:
            return HeartbeatKind.RESUMED
        return HeartbeatKind.PERIODIC

    async def record_activity(self, force_immediate: bool = False) -> EmitResult:
        now = self.clock()
        self.last_activity_at = now

        kind = self._forced_kind(now) if force_immediate else self.classify(now)
        if kind is None:
            self.deferred_count += 1
            self.metrics.heartbeats_deferred.inc()
            logger.debug(f"Batching activity for {self.subject_id}")
            return EmitResult(written=False, deferred=True)

        if kind is HeartbeatKind.RESUMED:
            logger.info(f"Breaking long silence for {self.subject_id}, writing immediately")
        return await self._write(now, kind)

    async def flush(self) -> EmitResult:
        """Write the latest deferred activity now, if any is pending."""
        if self.deferred_count == 0 or self.last_activity_at is None:
            return EmitResult(written=False)
        return await self._write(self.last_activity_at, self._forced_kind(self.last_activity_at))

    async def _write(self, timestamp: datetime, kind: HeartbeatKind) -> EmitResult:
        self.last_attempt_at = timestamp
        try:
            await self.store.update_heartbeat(self.subject_id, timestamp, kind)
        except Exception as exc:
            self.last_attempt_failed = True
            self.metrics.heartbeat_writes.labels(kind=str(kind), outcome="failed").inc()
            logger.error(f"Heartbeat write for {self.subject_id} failed: {exc}")
            return EmitResult(written=False, kind=kind, error=str(exc) or type(exc).__name__)

        self.last_attempt_failed = False
        self.last_write_at = timestamp
        self.deferred_count = 0
        self.metrics.heartbeat_writes.labels(kind=str(kind), outcome="written").inc()
        logger.debug(f"Heartbeat for {self.subject_id} written ({kind})")
        return EmitResult(written=True, kind=kind)
