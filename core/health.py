"""Dependency health for readiness probes and the `liveness.health` NATS subject."""

from __future__ import annotations

import json
import time
from datetime import UTC, datetime
from typing import Any

from opentelemetry.trace import Status, StatusCode

from core.db.base import LivenessStore
from core.db.redis import RedisQueueAdapter
from otel_init import get_initialization_state, get_tracer


def telemetry_status() -> dict[str, str]:
    """Export state per OTel component. Informational; never affects readiness."""
    status = {}
    for component, state in get_initialization_state().items():
        if state["success"]:
            status[component] = "enabled"
        elif state["error"] is not None:
            status[component] = "failed"
        else:
            status[component] = "disabled"
    return status


class DependencyHealth:
    """Pings the liveness store and, when configured, the Redis queue."""

    def __init__(
        self,
        store: LivenessStore,
        *,
        redis: RedisQueueAdapter | None = None,
        response_budget_ms: float = 50.0,
    ):
        self.store = store
        self.redis = redis
        self.response_budget_ms = response_budget_ms
        self.tracer = get_tracer(__name__)

    async def check_store_health(self) -> bool:
        try:
            return bool(await self.store.ping())
        except Exception:
            return False

    async def check_redis_health(self) -> bool | None:
        if self.redis is None:
            return None
        try:
            return await self.redis.ping()
        except Exception:
            return False

    async def build_report(self) -> dict[str, Any]:
        start = time.perf_counter()

        with self.tracer.start_as_current_span("liveness.health") as span:
            store_ok = await self.check_store_health()
            redis_ok = await self.check_redis_health()
            elapsed_ms = (time.perf_counter() - start) * 1000.0

            ready = store_ok and redis_ok is not False
            dependencies = {"store": "connected" if store_ok else "disconnected"}
            if redis_ok is not None:
                dependencies["redis"] = "connected" if redis_ok else "disconnected"

            report = {
                "status": "ok" if ready else "degraded",
                "ready": ready,
                "timestamp": datetime.now(UTC).isoformat(),
                "dependencies": dependencies,
                "telemetry": telemetry_status(),
                "response_time_ms": elapsed_ms,
            }

            span.set_attribute("service.health.ready", ready)
            span.set_attribute("service.health.store", store_ok)
            if redis_ok is not None:
                span.set_attribute("service.health.redis", redis_ok)
            span.set_attribute("service.health.response_time_ms", elapsed_ms)
            if not ready:
                span.set_status(Status(StatusCode.ERROR, "dependency_unavailable"))

            return report

    async def handle_request(self, msg: Any) -> None:
        report = await self.build_report()
        await msg.respond(json.dumps(report, separators=(",", ":")).encode())

    async def start(self, nats_client: Any) -> None:
        await nats_client.subscribe("liveness.health", cb=self.handle_request)
