"""Alert payloads and per-subscriber fan-out."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime

from contracts.subject import Subject
from core.monitoring.metrics import LivenessMetrics
from otel_init import get_tracer

logger = logging.getLogger(__name__)

SURVIVAL_ALERT_SEVERITY = "CRITICAL"


@dataclass(slots=True)
class AlertMessage:
    """Canonical alert payload handed to every send capability."""

    subject_id: str
    title: str
    body: str
    severity: str = SURVIVAL_ALERT_SEVERITY
    data: dict[str, str] = field(default_factory=dict)
    created_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())


def build_survival_alert(subject: Subject, now: datetime) -> AlertMessage:
    staleness = subject.staleness(now)
    hours_inactive = int(staleness.total_seconds() // 3600) if staleness else 0
    return AlertMessage(
        subject_id=subject.id,
        title=f"{subject.name} safety alert",
        body=(
            f"No activity for {hours_inactive} hours or more. "
            "Please check in on them."
        ),
        data={
            "type": "survival_alert",
            "subject_id": subject.id,
            "display_name": subject.name,
            "hours_inactive": str(hours_inactive),
            "timestamp": now.isoformat(),
        },
    )


def mask_endpoint(endpoint: str, keep: int = 20) -> str:
    if len(endpoint) <= keep:
        return endpoint
    return f"{endpoint[:keep]}..."


class PushSender:
    """Send capability for one endpoint. Raises on failure."""

    async def send(
        self, endpoint_id: str, subject_id: str, message: AlertMessage
    ) -> None:  # pragma: no cover - interface
        raise NotImplementedError


class RoutingSender(PushSender):
    """Routes `scheme:address` endpoints to the sender registered for the scheme.

    Endpoints without a registered scheme go to the default sender untouched.
    """

    def __init__(
        self,
        routes: dict[str, PushSender],
        default: PushSender | None = None,
    ):
        self.routes = routes
        self.default = default

    async def send(self, endpoint_id: str, subject_id: str, message: AlertMessage) -> None:
        scheme, sep, address = endpoint_id.partition(":")
        if sep and scheme in self.routes:
            await self.routes[scheme].send(address, subject_id, message)
            return
        if self.default is None:
            raise LookupError(f"no sender configured for endpoint {mask_endpoint(endpoint_id)}")
        await self.default.send(endpoint_id, subject_id, message)


@dataclass(slots=True)
class DispatchReport:
    subject_id: str
    attempted: int = 0
    succeeded: int = 0
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.succeeded > 0


class NotificationDispatcher:
    """Delivers one alert to every subscriber of a subject.

    Each endpoint is sent to independently and bounded by `send_timeout_seconds`;
    a failing endpoint never blocks the others. Duplicate suppression is the
    caller's job (alert cooldown), not the dispatcher's.
    """

    def __init__(
        self,
        sender: PushSender,
        *,
        send_timeout_seconds: float = 5.0,
        metrics: LivenessMetrics | None = None,
    ):
        self.sender = sender
        self.send_timeout_seconds = send_timeout_seconds
        self.metrics = metrics or LivenessMetrics()
        self.tracer = get_tracer(__name__)

    async def dispatch(self, subject: Subject, message: AlertMessage) -> DispatchReport:
        report = DispatchReport(subject_id=subject.id)
        endpoints = list(subject.subscribers)
        if not endpoints:
            logger.warning(f"No subscribers registered for {subject.id}; alert not delivered")
            return report

        with self.tracer.start_as_current_span("liveness.alert.dispatch") as span:
            span.set_attribute("alert.subject_id", subject.id)
            span.set_attribute("alert.severity", str(message.severity))
            span.set_attribute("alert.title", message.title)

            errors = await asyncio.gather(
                *(self._send_one(endpoint, subject.id, message) for endpoint in endpoints)
            )
            report.attempted = len(endpoints)
            for endpoint, error in zip(endpoints, errors, strict=True):
                if error is None:
                    report.succeeded += 1
                else:
                    report.failures[endpoint] = error

            span.set_attribute("alert.attempted", report.attempted)
            span.set_attribute("alert.succeeded", report.succeeded)

        if report.ok:
            logger.info(
                f"Alert for {subject.id} delivered to "
                f"{report.succeeded}/{report.attempted} subscriber(s)"
            )
        else:
            logger.error(
                f"Alert for {subject.id} reached no subscribers "
                f"({report.attempted} attempted)"
            )
        return report

    async def _send_one(
        self, endpoint: str, subject_id: str, message: AlertMessage
    ) -> str | None:
        try:
            await asyncio.wait_for(
                self.sender.send(endpoint, subject_id, message),
                timeout=self.send_timeout_seconds,
            )
        except Exception as exc:
            self.metrics.notification_sends.labels(outcome="failed").inc()
            logger.error(
                f"Failed to notify {mask_endpoint(endpoint)} for {subject_id}: {exc!r}"
            )
            return str(exc) or type(exc).__name__

        self.metrics.notification_sends.labels(outcome="sent").inc()
        logger.debug(f"Notified {mask_endpoint(endpoint)} for {subject_id}")
        return None
