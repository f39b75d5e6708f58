"""
Liveness Watch - heartbeat ingestion, stale sweep and survival alerts
"""

import logging

from fastapi import FastAPI, HTTPException, Response
from nats import connect as nats_connect
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel

from core.bootstrap import Components, build_components
from core.config import LivenessSettings
from core.errors import StoreUnavailableError, SubjectNotFoundError
from core.monitoring.quiet_hours import describe_schedule, is_quiet, quiet_period_ends_at
from core.nats.activity import ActivityListener
from otel_init import attach_logging_handler, instrument_fastapi_app, setup_telemetry

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Liveness Watch",
    description="Heartbeat ingestion, stale sweep and survival alerts",
    version="1.0.0",
)
app.state.components = None
app.state.nats_client = None


class ActivityRequest(BaseModel):
    force_immediate: bool = False


class AcknowledgeRequest(BaseModel):
    cleared_by: str | None = None


@app.on_event("startup")
async def startup_event():
    """Run on startup."""
    settings = LivenessSettings.from_env()
    setup_telemetry(service_name=settings.service_name)
    instrument_fastapi_app(app)
    attach_logging_handler()

    components = build_components(settings)
    await components.connect()
    app.state.components = components
    if settings.run_sweeper:
        await components.scheduler.start()

    if settings.nats_url:
        try:
            app.state.nats_client = await nats_connect(settings.nats_url, connect_timeout=1)
            await ActivityListener(app.state.nats_client, components.registry).start()
            await components.health.start(app.state.nats_client)
            logger.info("NATS activity listener active on subject liveness.activity.*")
        except Exception as exc:
            logger.warning(f"NATS activity listener disabled: {exc}")

    logger.info("Liveness Watch service started")


@app.on_event("shutdown")
async def shutdown_event():
    """Stop the sweep, flush batched heartbeats and close connections."""
    if app.state.nats_client is not None:
        await app.state.nats_client.close()
        app.state.nats_client = None
    if app.state.components is not None:
        await app.state.components.close()


def _components() -> Components:
    components = app.state.components
    if components is None:
        raise HTTPException(status_code=503, detail="service not started")
    return components


def _raise_http(exc: Exception) -> None:
    if isinstance(exc, SubjectNotFoundError):
        raise HTTPException(status_code=404, detail=f"unknown subject {exc.subject_id}") from exc
    if isinstance(exc, StoreUnavailableError):
        logger.error(f"Store unavailable: {exc}")
        raise HTTPException(status_code=503, detail="liveness store unavailable") from exc
    raise exc


@app.get("/health/liveness")
async def liveness():
    """Liveness probe."""
    return {"status": "ok"}


@app.get("/health/readiness")
async def readiness():
    """Readiness probe."""
    report = await _components().health.build_report()
    if not report["ready"]:
        raise HTTPException(status_code=503, detail=report)
    return report


@app.get("/")
async def root():
    """Root endpoint."""
    return {"service": "liveness-watch", "version": app.version, "status": "operational"}


@app.post("/subjects/{subject_id}/activity")
async def record_activity(subject_id: str, payload: ActivityRequest | None = None):
    """Single ingestion point for subject activity."""
    force_immediate = payload.force_immediate if payload else False
    try:
        result = await _components().registry.record_activity(subject_id, force_immediate)
    except (SubjectNotFoundError, StoreUnavailableError) as exc:
        _raise_http(exc)
    return {
        "subject_id": subject_id,
        "written": result.written,
        "deferred": result.deferred,
        "kind": str(result.kind) if result.kind else None,
        "error": result.error,
    }


@app.post("/sweep")
async def trigger_sweep():
    """Run one sweep tick now (external cron trigger)."""
    summary = await _components().scheduler.run_sweep_tick()
    return summary.as_dict()


@app.get("/subjects/{subject_id}/status")
async def subject_status(subject_id: str):
    components = _components()
    try:
        subject = await components.store.get(subject_id)
    except (SubjectNotFoundError, StoreUnavailableError) as exc:
        _raise_http(exc)

    now = components.scheduler.clock()
    quiet_hours = subject.settings.quiet_hours
    staleness = subject.staleness(now)
    quiet_ends_at = quiet_period_ends_at(now, quiet_hours)
    return {
        "subject_id": subject.id,
        "display_name": subject.name,
        "monitoring_enabled": subject.monitoring_enabled,
        "last_heartbeat_at": (
            subject.last_heartbeat_at.isoformat() if subject.last_heartbeat_at else None
        ),
        "staleness_seconds": staleness.total_seconds() if staleness is not None else None,
        "stale": subject.is_stale(now),
        "alert_state": subject.alert_state.model_dump(mode="json"),
        "alert_version": subject.alert_version,
        "quiet_now": is_quiet(now, quiet_hours),
        "quiet_ends_at": quiet_ends_at.isoformat() if quiet_ends_at else None,
        "quiet_schedule": describe_schedule(quiet_hours),
    }


@app.post("/subjects/{subject_id}/alert/acknowledge")
async def acknowledge_alert(subject_id: str, payload: AcknowledgeRequest | None = None):
    cleared_by = payload.cleared_by if payload else None
    try:
        outcome = await _components().lifecycle.acknowledge(subject_id, cleared_by=cleared_by)
    except (SubjectNotFoundError, StoreUnavailableError) as exc:
        _raise_http(exc)
    return {"subject_id": subject_id, "decision": str(outcome.decision)}


@app.get("/metrics")
async def metrics():
    registry = _components().metrics.registry
    return Response(generate_latest(registry), media_type=CONTENT_TYPE_LATEST)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)  # nosec
