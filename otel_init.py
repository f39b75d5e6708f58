"""
OpenTelemetry initialization for Liveness Watch.

Works for both entry points:
- FastAPI/Uvicorn service (`main.py`): call `attach_logging_handler()` in startup
- Sweep CLI / cron job: call `attach_logging_handler_simple()` after setup

Uvicorn loggers do not propagate to the root logger, so the FastAPI variant
attaches the OTLP handler to them as well.

Nothing is exported unless OTEL_EXPORTER_OTLP_ENDPOINT is set.
"""

import logging
import os

from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc._log_exporter import OTLPLogExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

DEFAULT_SERVICE_NAME = "liveness-watch"

_global_logger_provider = None
_otlp_logging_handler = None

logger = logging.getLogger(__name__)

_initialization_state = {
    "tracing": {"success": False, "error": None},
    "metrics": {"success": False, "error": None},
    "logs": {"success": False, "error": None},
    "http_instrumentation": {"success": False, "error": None},
}


def _env_flag(name: str, default: str = "true") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


def parse_otlp_headers(headers_env: str | None) -> dict[str, str] | None:
    """Parse "key1=value1,key2=value2" into a header dict."""
    if not headers_env or not headers_env.strip():
        return None

    headers = {}
    for item in headers_env.split(","):
        key, sep, value = item.strip().partition("=")
        if sep and key.strip():
            headers[key.strip()] = value.strip()

    if not headers:
        logger.warning(
            "OTEL_EXPORTER_OTLP_HEADERS provided but no valid key=value pairs found"
        )
        return None
    return headers


def _build_resource(service_name: str, service_version: str) -> Resource:
    attributes = {
        "service.name": service_name,
        "service.version": service_version,
        "deployment.environment": os.getenv("ENVIRONMENT", "production"),
    }
    if os.getenv("HOSTNAME"):
        attributes["service.instance.id"] = os.getenv("HOSTNAME")

    # OTEL_RESOURCE_ATTRIBUTES wins over the defaults above.
    custom_attributes = os.getenv("OTEL_RESOURCE_ATTRIBUTES", "")
    for attr in custom_attributes.split(","):
        key, sep, value = attr.partition("=")
        if sep and key.strip() and value.strip():
            attributes[key.strip()] = value.strip()

    return Resource.create(attributes)


def _record_failure(component: str, exc: Exception, fail_fast: bool) -> None:
    _initialization_state[component]["error"] = str(exc)
    logger.error(f"Failed to set up OpenTelemetry {component}: {exc}", exc_info=True)
    if fail_fast:
        raise exc


def setup_telemetry(
    service_name: str = DEFAULT_SERVICE_NAME,
    service_version: str | None = None,
    otlp_endpoint: str | None = None,
    enable_metrics: bool = True,
    enable_traces: bool = True,
    enable_logs: bool = True,
) -> None:
    """
    Set up OTLP tracing, metrics and log export plus httpx instrumentation.

    Controlled by ENABLE_OTEL, ENABLE_TRACES, ENABLE_METRICS, ENABLE_LOGS,
    OTEL_EXPORTER_OTLP_ENDPOINT, OTEL_EXPORTER_OTLP_HEADERS and OTEL_FAIL_FAST.
    """
    if not _env_flag("ENABLE_OTEL"):
        return

    global _global_logger_provider

    service_version = service_version or os.getenv("OTEL_SERVICE_VERSION", "1.0.0")
    otlp_endpoint = otlp_endpoint or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    enable_traces = enable_traces and _env_flag("ENABLE_TRACES")
    enable_metrics = enable_metrics and _env_flag("ENABLE_METRICS")
    enable_logs = enable_logs and _env_flag("ENABLE_LOGS")
    fail_fast = _env_flag("OTEL_FAIL_FAST", "false")
    headers = parse_otlp_headers(os.getenv("OTEL_EXPORTER_OTLP_HEADERS"))
    resource = _build_resource(service_name, service_version)

    if enable_traces and otlp_endpoint:
        try:
            tracer_provider = TracerProvider(resource=resource)
            tracer_provider.add_span_processor(
                BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint, headers=headers))
            )
            trace.set_tracer_provider(tracer_provider)
            _initialization_state["tracing"]["success"] = True
            logger.info(f"OpenTelemetry tracing enabled for {service_name}")
        except Exception as e:
            _record_failure("tracing", e, fail_fast)

    if enable_metrics and otlp_endpoint:
        try:
            metric_reader = PeriodicExportingMetricReader(
                OTLPMetricExporter(endpoint=otlp_endpoint, headers=headers),
                export_interval_millis=int(os.getenv("OTEL_METRIC_EXPORT_INTERVAL", "60000")),
            )
            metrics.set_meter_provider(
                MeterProvider(resource=resource, metric_readers=[metric_reader])
            )
            _initialization_state["metrics"]["success"] = True
            logger.info(f"OpenTelemetry metrics enabled for {service_name}")
        except Exception as e:
            _record_failure("metrics", e, fail_fast)

    if enable_logs and otlp_endpoint:
        try:
            LoggingInstrumentor().instrument(set_logging_format=False)
            logger_provider = LoggerProvider(resource=resource)
            logger_provider.add_log_record_processor(
                BatchLogRecordProcessor(OTLPLogExporter(endpoint=otlp_endpoint, headers=headers))
            )
            _global_logger_provider = logger_provider
            _initialization_state["logs"]["success"] = True
            logger.info(f"OpenTelemetry logging export configured for {service_name}")
        except Exception as e:
            _record_failure("logs", e, fail_fast)

    try:
        instrumentor = HTTPXClientInstrumentor()
        if not instrumentor.is_instrumented_by_opentelemetry:
            instrumentor.instrument()
        _initialization_state["http_instrumentation"]["success"] = True
    except Exception as e:
        _record_failure("http_instrumentation", e, fail_fast)

    failed = [k for k, v in _initialization_state.items() if v["error"] is not None]
    if failed:
        logger.warning(
            f"OpenTelemetry setup for {service_name} v{service_version} "
            f"finished with failed component(s): {', '.join(failed)}"
        )
    else:
        logger.info(f"OpenTelemetry setup completed for {service_name} v{service_version}")


def instrument_fastapi_app(app, fail_fast: bool | None = None):
    """Instrument a FastAPI application. Call after the app is created."""
    if fail_fast is None:
        fail_fast = _env_flag("OTEL_FAIL_FAST", "false")

    try:
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

        FastAPIInstrumentor.instrument_app(app)
        logger.info("FastAPI application instrumented")
    except Exception as e:
        logger.error(f"Failed to instrument FastAPI application: {e}", exc_info=True)
        if fail_fast:
            raise


def _attach_handler(logger_names: list[str]) -> bool:
    global _otlp_logging_handler

    if _global_logger_provider is None:
        logger.warning("Logger provider not configured - logging export not available")
        return False

    root_logger = logging.getLogger()
    if _otlp_logging_handler is not None and _otlp_logging_handler in root_logger.handlers:
        logger.debug("OTLP logging handler already attached")
        return True

    try:
        handler = LoggingHandler(level=logging.NOTSET, logger_provider=_global_logger_provider)
        root_logger.addHandler(handler)
        for name in logger_names:
            logging.getLogger(name).addHandler(handler)
        _otlp_logging_handler = handler
    except Exception as e:
        logger.error(f"Failed to attach logging handler: {e}", exc_info=True)
        return False

    logger.info(f"OTLP logging handler attached to root logger and {len(logger_names)} other(s)")
    return True


def attach_logging_handler():
    """Attach the OTLP handler to the root and uvicorn loggers (FastAPI service)."""
    return _attach_handler(["uvicorn", "uvicorn.access", "uvicorn.error"])


def attach_logging_handler_simple():
    """Attach the OTLP handler to the root logger only (CLI and cron jobs)."""
    return _attach_handler([])


def get_tracer(name: str = None) -> trace.Tracer:
    return trace.get_tracer(name or DEFAULT_SERVICE_NAME)


def get_initialization_state() -> dict:
    return {k: dict(v) for k, v in _initialization_state.items()}


# Auto-setup for scripts that only import this module
if _env_flag("ENABLE_OTEL") and os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT"):
    if not os.getenv("OTEL_NO_AUTO_INIT"):
        setup_telemetry()
