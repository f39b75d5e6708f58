import os
from typing import Optional

import pydantic
from pydantic import BaseModel


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


class LivenessSettings(BaseModel):
    """Process-level settings. Per-subject knobs live on the subject record."""

    service_name: str = "liveness-watch"
    mongo_url: Optional[str] = None
    mongo_db: str = "liveness"
    redis_url: Optional[str] = None
    nats_url: Optional[str] = None
    push_gateway_url: Optional[str] = None
    smtp_host: Optional[str] = None
    smtp_port: int = 25
    smtp_sender: str = "alerts@liveness.local"
    sweep_period_seconds: float = 15 * 60
    sweep_max_concurrency: int = 16
    sweep_page_size: int = 100
    store_timeout_seconds: float = 3.0
    send_timeout_seconds: float = 5.0
    run_sweeper: bool = True

    @pydantic.field_validator("sweep_period_seconds", "store_timeout_seconds", "send_timeout_seconds")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @pydantic.field_validator("sweep_max_concurrency", "sweep_page_size")
    @classmethod
    def validate_at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @classmethod
    def from_env(cls) -> "LivenessSettings":
        return cls(
            service_name=os.getenv("OTEL_SERVICE_NAME", "liveness-watch"),
            mongo_url=os.getenv("MONGO_URL") or None,
            mongo_db=os.getenv("MONGO_DB", "liveness"),
            redis_url=os.getenv("REDIS_URL") or None,
            nats_url=os.getenv("NATS_URL") or None,
            push_gateway_url=os.getenv("PUSH_GATEWAY_URL") or None,
            smtp_host=os.getenv("SMTP_HOST") or None,
            smtp_port=int(os.getenv("SMTP_PORT", "25")),
            smtp_sender=os.getenv("SMTP_SENDER", "alerts@liveness.local"),
            sweep_period_seconds=float(os.getenv("SWEEP_PERIOD_SECONDS", "900")),
            sweep_max_concurrency=int(os.getenv("SWEEP_MAX_CONCURRENCY", "16")),
            sweep_page_size=int(os.getenv("SWEEP_PAGE_SIZE", "100")),
            store_timeout_seconds=float(os.getenv("STORE_TIMEOUT_SECONDS", "3.0")),
            send_timeout_seconds=float(os.getenv("SEND_TIMEOUT_SECONDS", "5.0")),
            run_sweeper=_env_bool("RUN_SWEEPER", "true"),
        )


__all__ = ["LivenessSettings"]
