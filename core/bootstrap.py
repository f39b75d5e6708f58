"""Wires store, senders, lifecycle and sweep from `LivenessSettings`.

Shared by the HTTP service and the sweep CLI.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta

from apps.emitter.registry import EmitterRegistry
from apps.sweeper.scheduler import StaleSweepScheduler
from core.alerting.channels import EmailSender, HttpPushSender, RedisPushSender
from core.alerting.manager import NotificationDispatcher, PushSender, RoutingSender
from core.config import LivenessSettings
from core.db.base import LivenessStore
from core.db.memory import InMemoryLivenessStore
from core.db.mongo import MongoLivenessStore
from core.db.redis import RedisQueueAdapter
from core.health import DependencyHealth
from core.monitoring.lifecycle import AlertLifecycleManager
from core.monitoring.metrics import LivenessMetrics
from core.utils.clock import Clock, utc_now

logger = logging.getLogger(__name__)


@dataclass
class Components:
    settings: LivenessSettings
    metrics: LivenessMetrics
    store: LivenessStore
    dispatcher: NotificationDispatcher
    lifecycle: AlertLifecycleManager
    registry: EmitterRegistry
    scheduler: StaleSweepScheduler
    health: DependencyHealth
    redis: RedisQueueAdapter | None = None
    closables: list[HttpPushSender] = field(default_factory=list)

    async def connect(self) -> None:
        """Connect external stores. Failures are logged and surface as not-ready."""
        if isinstance(self.store, MongoLivenessStore):
            try:
                await self.store.connect()
                await self.store.ensure_indexes()
                logger.info(f"Connected to MongoDB database {self.store.db_name}")
            except Exception as exc:
                logger.warning(f"MongoDB unavailable at startup: {exc}")
        if self.redis is not None:
            try:
                await self.redis.connect()
                logger.info("Connected to Redis notification queue")
            except Exception as exc:
                logger.warning(f"Redis unavailable at startup: {exc}")

    async def close(self) -> None:
        await self.scheduler.stop()
        await self.registry.flush_all()
        for sender in self.closables:
            await sender.close()
        if self.redis is not None:
            await self.redis.disconnect()
        if isinstance(self.store, MongoLivenessStore):
            await self.store.disconnect()


def build_sender(
    settings: LivenessSettings,
    redis: RedisQueueAdapter | None,
) -> tuple[RoutingSender, list[HttpPushSender]]:
    routes: dict[str, PushSender] = {}
    closables: list[HttpPushSender] = []
    default: PushSender | None = None

    if settings.smtp_host:
        routes["mailto"] = EmailSender(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            sender=settings.smtp_sender,
        )
    if redis is not None:
        routes["redis"] = RedisPushSender(redis)
    if settings.push_gateway_url:
        http_sender = HttpPushSender(
            settings.push_gateway_url, timeout=settings.send_timeout_seconds
        )
        routes["push"] = http_sender
        closables.append(http_sender)
        default = http_sender
    elif redis is not None:
        default = routes["redis"]

    if default is None and not routes:
        logger.warning("No notification channel configured; alerts will not be delivered")
    return RoutingSender(routes, default=default), closables


def build_components(
    settings: LivenessSettings,
    *,
    store: LivenessStore | None = None,
    clock: Clock = utc_now,
    metrics: LivenessMetrics | None = None,
) -> Components:
    metrics = metrics or LivenessMetrics()
    if store is None:
        if settings.mongo_url:
            store = MongoLivenessStore(
                settings.mongo_url,
                settings.mongo_db,
                timeout_seconds=settings.store_timeout_seconds,
            )
        else:
            logger.warning("MONGO_URL not set, using in-memory liveness store")
            store = InMemoryLivenessStore()

    redis = RedisQueueAdapter(settings.redis_url) if settings.redis_url else None
    sender, closables = build_sender(settings, redis)
    dispatcher = NotificationDispatcher(
        sender, send_timeout_seconds=settings.send_timeout_seconds, metrics=metrics
    )
    lifecycle = AlertLifecycleManager(
        store=store, dispatcher=dispatcher, clock=clock, metrics=metrics
    )
    scheduler = StaleSweepScheduler(
        store=store,
        lifecycle=lifecycle,
        period=timedelta(seconds=settings.sweep_period_seconds),
        max_concurrency=settings.sweep_max_concurrency,
        page_size=settings.sweep_page_size,
        clock=clock,
        metrics=metrics,
    )
    return Components(
        settings=settings,
        metrics=metrics,
        store=store,
        dispatcher=dispatcher,
        lifecycle=lifecycle,
        registry=EmitterRegistry(store, clock=clock, metrics=metrics),
        scheduler=scheduler,
        health=DependencyHealth(store, redis=redis),
        redis=redis,
        closables=closables,
    )
