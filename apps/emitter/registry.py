"""Server-side ingestion entry point: one emitter per subject."""

from __future__ import annotations

import logging

from apps.emitter.batcher import EmitResult, HeartbeatEmitter
from contracts.subject import MonitoringSettings
from core.db.base import LivenessStore
from core.errors import StoreUnavailableError
from core.monitoring.metrics import LivenessMetrics
from core.utils.clock import Clock, utc_now

logger = logging.getLogger(__name__)


class EmitterRegistry:
    """Routes `record_activity(subject_id, ...)` to that subject's emitter.

    Emitters are sized from the subject's own refresh and long-silence
    settings the first time the subject reports. An emitter built from the
    defaults because the store could not be read picks up the subject's
    settings on the first later call where the read succeeds.
    """

    def __init__(
        self,
        store: LivenessStore,
        *,
        clock: Clock = utc_now,
        metrics: LivenessMetrics | None = None,
    ):
        self.store = store
        self.clock = clock
        self.metrics = metrics or LivenessMetrics()
        self._emitters: dict[str, HeartbeatEmitter] = {}
        self._on_defaults: set[str] = set()

    def __len__(self) -> int:
        return len(self._emitters)

    async def _load_settings(self, subject_id: str) -> MonitoringSettings:
        subject = await self.store.get(subject_id)
        return subject.settings

    async def emitter_for(self, subject_id: str) -> HeartbeatEmitter:
        """Raises `SubjectNotFoundError` for ids the store does not know."""
        emitter = self._emitters.get(subject_id)
        if emitter is not None:
            if subject_id in self._on_defaults:
                await self._refresh_settings(emitter)
            return emitter

        try:
            settings = await self._load_settings(subject_id)
            on_defaults = False
        except StoreUnavailableError as exc:
            logger.warning(f"Could not load settings for {subject_id}, using defaults: {exc}")
            settings = MonitoringSettings()
            on_defaults = True

        emitter = HeartbeatEmitter(
            subject_id,
            store=self.store,
            min_refresh_interval=settings.min_refresh_interval,
            long_silence_threshold=settings.long_silence_threshold,
            clock=self.clock,
            metrics=self.metrics,
        )
        # Another caller may have registered one while we awaited the store.
        registered = self._emitters.setdefault(subject_id, emitter)
        if registered is emitter and on_defaults:
            self._on_defaults.add(subject_id)
        return registered

    async def _refresh_settings(self, emitter: HeartbeatEmitter) -> None:
        try:
            settings = await self._load_settings(emitter.subject_id)
        except StoreUnavailableError as exc:
            logger.debug(f"Settings for {emitter.subject_id} still unavailable: {exc}")
            return

        emitter.min_refresh_interval = settings.min_refresh_interval
        emitter.long_silence_threshold = settings.long_silence_threshold
        self._on_defaults.discard(emitter.subject_id)
        logger.info(f"Loaded settings for {emitter.subject_id}, replacing defaults")

    async def record_activity(self, subject_id: str, force_immediate: bool = False) -> EmitResult:
        emitter = await self.emitter_for(subject_id)
        return await emitter.record_activity(force_immediate=force_immediate)

    async def flush_all(self) -> int:
        written = 0
        for emitter in list(self._emitters.values()):
            result = await emitter.flush()
            if result.written:
                written += 1
        if written:
            logger.info(f"Flushed {written} deferred heartbeat(s)")
        return written
