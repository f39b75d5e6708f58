"""Alert lifecycle: Inactive -> Active -> Inactive, with cooldown and acknowledgement."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from contracts.subject import ActiveAlert, ClearedAlert, InactiveAlert, Subject
from core.alerting.manager import DispatchReport, NotificationDispatcher, build_survival_alert
from core.db.base import LivenessStore, WriteOutcome
from core.monitoring.metrics import LivenessMetrics
from core.monitoring.quiet_hours import is_quiet
from core.utils.clock import Clock, utc_now

logger = logging.getLogger(__name__)


class AlertDecision(StrEnum):
    RAISED = "raised"
    SUPPRESSED_QUIET = "suppressed_quiet"
    COOLDOWN = "cooldown"
    ACKNOWLEDGED = "acknowledged"
    CLEARED = "cleared"
    UNCHANGED = "unchanged"
    CONFLICT = "conflict"


@dataclass(slots=True)
class LifecycleOutcome:
    subject_id: str
    decision: AlertDecision
    delivery: DispatchReport | None = None

    @property
    def dispatched(self) -> bool:
        return self.delivery is not None


class AlertLifecycleManager:
    """Decides the next alert state for one subject and commits it.

    Every state write is a compare-and-swap on (status, alert_version) that
    also re-checks the heartbeat bound, so two overlapping sweeps cannot both
    raise the same alert and a stale read cannot clear a live alert.
    """

    def __init__(
        self,
        *,
        store: LivenessStore,
        dispatcher: NotificationDispatcher,
        clock: Clock = utc_now,
        metrics: LivenessMetrics | None = None,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.clock = clock
        self.metrics = metrics or LivenessMetrics()

    async def on_fresh(self, subject: Subject, now: datetime | None = None) -> LifecycleOutcome:
        """Return Active/Cleared to Inactive. Applies during quiet hours too."""
        now = now or self.clock()
        if isinstance(subject.alert_state, InactiveAlert):
            return self._outcome(subject, AlertDecision.UNCHANGED)

        outcome = await self.store.update_alert_state(
            subject.id,
            subject.alert_state,
            InactiveAlert(),
            expected_version=subject.alert_version,
            heartbeat_after=now - subject.settings.alert_threshold,
        )
        if outcome is WriteOutcome.CONFLICT:
            logger.info(f"Clear of {subject.id} lost a race; leaving state as written")
            return self._outcome(subject, AlertDecision.CONFLICT)

        logger.info(f"Alert for {subject.id} ({subject.name}) cleared by fresh heartbeat")
        return self._outcome(subject, AlertDecision.CLEARED)

    async def on_stale(self, subject: Subject, now: datetime | None = None) -> LifecycleOutcome:
        now = now or self.clock()
        settings = subject.settings
        state = subject.alert_state

        if is_quiet(now, settings.quiet_hours):
            logger.info(f"Alert for {subject.id} suppressed, in quiet period")
            return self._outcome(subject, AlertDecision.SUPPRESSED_QUIET)

        if isinstance(state, ActiveAlert) and now < state.cooldown_until:
            logger.info(
                f"Already alerted for {subject.id}, in cooldown until "
                f"{state.cooldown_until.isoformat()}"
            )
            return self._outcome(subject, AlertDecision.COOLDOWN)

        if isinstance(state, ClearedAlert) and now < state.at + settings.cooldown:
            logger.info(
                f"Alert for {subject.id} acknowledged at {state.at.isoformat()}, "
                "holding off re-alert"
            )
            return self._outcome(subject, AlertDecision.ACKNOWLEDGED)

        new_state = ActiveAlert(since=now, cooldown_until=now + settings.cooldown)
        outcome = await self.store.update_alert_state(
            subject.id,
            state,
            new_state,
            expected_version=subject.alert_version,
            heartbeat_not_after=now - settings.alert_threshold,
        )
        if outcome is WriteOutcome.CONFLICT:
            logger.info(f"Alert for {subject.id} already handled by a concurrent sweep")
            return self._outcome(subject, AlertDecision.CONFLICT)

        staleness = subject.staleness(now)
        logger.warning(
            f"SURVIVAL ALERT: {subject.name} ({subject.id}) silent for "
            f"{staleness.total_seconds() / 3600:.1f}h "
            f"(threshold {settings.alert_threshold.total_seconds() / 3600:.1f}h)"
        )
        delivery = await self._deliver(subject, now)
        return self._outcome(subject, AlertDecision.RAISED, delivery)

    async def _deliver(self, subject: Subject, now: datetime) -> DispatchReport:
        """Dispatch a committed alert; cancellation waits for delivery to finish.

        Once the Active state is written the cooldown suppresses later sweeps,
        so an alert cancelled mid-dispatch would never reach anyone.
        """
        delivery = asyncio.ensure_future(
            self.dispatcher.dispatch(subject, build_survival_alert(subject, now))
        )
        try:
            return await asyncio.shield(delivery)
        except asyncio.CancelledError:
            logger.warning(f"Cancelled while alerting for {subject.id}, finishing delivery first")
            await delivery
            raise

    async def acknowledge(
        self,
        subject_id: str,
        cleared_by: str | None = None,
        now: datetime | None = None,
    ) -> LifecycleOutcome:
        """Subscriber acknowledgement of an active alert."""
        now = now or self.clock()
        subject = await self.store.get(subject_id)
        if not isinstance(subject.alert_state, ActiveAlert):
            return self._outcome(subject, AlertDecision.UNCHANGED)

        outcome = await self.store.update_alert_state(
            subject.id,
            subject.alert_state,
            ClearedAlert(at=now, cleared_by=cleared_by),
            expected_version=subject.alert_version,
        )
        if outcome is WriteOutcome.CONFLICT:
            return self._outcome(subject, AlertDecision.CONFLICT)

        logger.info(f"Alert for {subject.id} acknowledged by {cleared_by or 'unknown'}")
        return self._outcome(subject, AlertDecision.ACKNOWLEDGED)

    def _outcome(
        self,
        subject: Subject,
        decision: AlertDecision,
        delivery: DispatchReport | None = None,
    ) -> LifecycleOutcome:
        self.metrics.alert_decisions.labels(decision=str(decision)).inc()
        return LifecycleOutcome(subject_id=subject.id, decision=decision, delivery=delivery)
