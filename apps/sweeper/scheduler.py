"""Periodic stale sweep over every monitored subject."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any

from contracts.subject import Subject, SubjectQuery
from core.db.base import LivenessStore
from core.errors import StoreUnavailableError
from core.monitoring.lifecycle import AlertDecision, AlertLifecycleManager
from core.monitoring.metrics import LivenessMetrics
from core.utils.clock import Clock, utc_now
from otel_init import get_tracer

logger = logging.getLogger(__name__)

DEFAULT_SWEEP_PERIOD = timedelta(minutes=15)

_DECISION_COUNTERS = {
    AlertDecision.RAISED: "raised",
    AlertDecision.SUPPRESSED_QUIET: "suppressed_quiet",
    AlertDecision.COOLDOWN: "cooldown",
    AlertDecision.ACKNOWLEDGED: "acknowledged",
    AlertDecision.CLEARED: "cleared",
    AlertDecision.CONFLICT: "conflicts",
}


@dataclass(slots=True)
class SweepSummary:
    started_at: datetime
    checked: int = 0
    raised: int = 0
    suppressed_quiet: int = 0
    cooldown: int = 0
    acknowledged: int = 0
    cleared: int = 0
    conflicts: int = 0
    failed: int = 0
    skipped_no_data: int = 0
    deadline_exceeded: bool = False
    interrupted: bool = False
    duration_ms: float = 0.0

    def record(self, decision: AlertDecision) -> None:
        counter = _DECISION_COUNTERS.get(decision)
        if counter is not None:
            setattr(self, counter, getattr(self, counter) + 1)

    @property
    def result(self) -> str:
        if self.deadline_exceeded:
            return "deadline_exceeded"
        if self.interrupted:
            return "interrupted"
        return "completed"

    def as_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["started_at"] = self.started_at.isoformat()
        payload["result"] = self.result
        return payload


class StaleSweepScheduler:
    """Runs one sweep tick per period.

    Subjects are streamed most-stale first and handed to at most
    `max_concurrency` workers. A tick that outlives its deadline (the period,
    unless given) cancels whatever is still in flight; the next tick picks
    those subjects up again. An alert already committed finishes its delivery
    before the tick returns.
    """

    def __init__(
        self,
        *,
        store: LivenessStore,
        lifecycle: AlertLifecycleManager,
        period: timedelta = DEFAULT_SWEEP_PERIOD,
        deadline: timedelta | None = None,
        max_concurrency: int = 16,
        page_size: int = 100,
        clock: Clock = utc_now,
        metrics: LivenessMetrics | None = None,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.store = store
        self.lifecycle = lifecycle
        self.period = period
        self.deadline = deadline or period
        self.max_concurrency = max_concurrency
        self.page_size = page_size
        self.clock = clock
        self.metrics = metrics or LivenessMetrics()
        self.tracer = get_tracer(__name__)
        self.last_summary: SweepSummary | None = None
        self._running = False
        self._task: asyncio.Task[Any] | None = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(f"Stale sweep started, every {self.period.total_seconds():.0f}s")

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.run_sweep_tick()
            except Exception as exc:  # pragma: no cover - background resilience
                logger.error(f"Sweep loop error: {exc}")
            await asyncio.sleep(self.period.total_seconds())

    async def run_sweep_tick(self) -> SweepSummary:
        now = self.clock()
        summary = SweepSummary(started_at=now)
        semaphore = asyncio.Semaphore(self.max_concurrency)
        tasks: set[asyncio.Task[None]] = set()
        started = time.perf_counter()

        with self.tracer.start_as_current_span("liveness.sweep.tick") as span:
            try:
                async with asyncio.timeout(self.deadline.total_seconds()):
                    await self._schedule(now, summary, semaphore, tasks)
                    if tasks:
                        await asyncio.gather(*tasks)
            except TimeoutError:
                summary.deadline_exceeded = True
                logger.error(
                    f"Sweep tick exceeded its {self.deadline.total_seconds():.0f}s deadline, "
                    "cancelling in-flight subjects"
                )
            finally:
                for task in tasks:
                    task.cancel()
                if tasks:
                    await asyncio.gather(*tasks, return_exceptions=True)

            summary.duration_ms = (time.perf_counter() - started) * 1000
            span.set_attribute("sweep.checked", summary.checked)
            span.set_attribute("sweep.raised", summary.raised)
            span.set_attribute("sweep.failed", summary.failed)
            span.set_attribute("sweep.result", summary.result)

        self.metrics.sweep_ticks.labels(result=summary.result).inc()
        self.metrics.sweep_duration.observe(summary.duration_ms / 1000)
        self.last_summary = summary
        logger.info(
            f"Sweep tick {summary.result}: checked={summary.checked} "
            f"raised={summary.raised} suppressed_quiet={summary.suppressed_quiet} "
            f"cooldown={summary.cooldown} cleared={summary.cleared} "
            f"conflicts={summary.conflicts} failed={summary.failed} "
            f"skipped_no_data={summary.skipped_no_data} "
            f"duration_ms={summary.duration_ms:.1f}"
        )
        return summary

    async def _schedule(
        self,
        now: datetime,
        summary: SweepSummary,
        semaphore: asyncio.Semaphore,
        tasks: set[asyncio.Task[None]],
    ) -> None:
        query = SubjectQuery(monitoring_enabled=True, batch_size=self.page_size)
        try:
            async for subject in self.store.list_monitored_subjects(query):
                if subject.last_heartbeat_at is None:
                    summary.skipped_no_data += 1
                    logger.info(f"No activity recorded yet for {subject.id}, skipping")
                    continue
                await semaphore.acquire()
                tasks.add(
                    asyncio.create_task(self._process_guarded(subject, now, summary, semaphore))
                )
        except StoreUnavailableError as exc:
            summary.interrupted = True
            logger.error(f"Listing monitored subjects failed, tick abandoned early: {exc}")

    async def _process_guarded(
        self,
        subject: Subject,
        now: datetime,
        summary: SweepSummary,
        semaphore: asyncio.Semaphore,
    ) -> None:
        summary.checked += 1
        try:
            if subject.is_stale(now):
                outcome = await self.lifecycle.on_stale(subject, now)
            else:
                outcome = await self.lifecycle.on_fresh(subject, now)
        except Exception as exc:
            summary.failed += 1
            logger.error(f"Sweep of {subject.id} failed: {exc!r}")
        else:
            summary.record(outcome.decision)
        finally:
            semaphore.release()
