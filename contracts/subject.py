"""Subject record, per-subject monitoring settings, and alert-state variants."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, time, timedelta
from enum import StrEnum
from typing import Annotated, Any, Literal, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_serializer,
    field_validator,
    model_validator,
)

logger = logging.getLogger(__name__)

ALL_WEEKDAYS = frozenset(range(1, 8))

DEFAULT_ALERT_THRESHOLD = timedelta(hours=12)
DEFAULT_COOLDOWN = timedelta(hours=6)
DEFAULT_MIN_REFRESH_INTERVAL = timedelta(minutes=15)
DEFAULT_LONG_SILENCE_THRESHOLD = timedelta(hours=8)


def ensure_aware(value: datetime) -> datetime:
    """Naive timestamps coming out of storage are UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class HeartbeatKind(StrEnum):
    """Why a heartbeat write happened. Informational only."""

    FIRST_CONTACT = "first_contact"
    RESUMED = "resumed"
    PERIODIC = "periodic"


class QuietHours(BaseModel):
    """Recurring window during which new alerts are not raised."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    start: time = time(22, 0)
    end: time = time(6, 0)
    active_weekdays: frozenset[int] = ALL_WEEKDAYS
    timezone: str = "UTC"

    @model_validator(mode="before")
    @classmethod
    def _accept_legacy_keys(cls, data: Any) -> Any:
        # Flat settings map written by older clients.
        if not isinstance(data, dict):
            return data
        payload = dict(data)
        if "sleepStartHour" in payload or "sleepStartMinute" in payload:
            payload.setdefault(
                "start",
                time(
                    int(payload.pop("sleepStartHour", 22)),
                    int(payload.pop("sleepStartMinute", 0)),
                ),
            )
        if "sleepEndHour" in payload or "sleepEndMinute" in payload:
            payload.setdefault(
                "end",
                time(
                    int(payload.pop("sleepEndHour", 6)),
                    int(payload.pop("sleepEndMinute", 0)),
                ),
            )
        if "activeDays" in payload:
            payload.setdefault("active_weekdays", payload.pop("activeDays"))
        return payload

    @field_validator("active_weekdays", mode="before")
    @classmethod
    def _keep_valid_weekdays(cls, value: Any) -> Any:
        if value is None:
            return ALL_WEEKDAYS
        if isinstance(value, str):
            value = [part for part in value.split(",") if part.strip()]
        days = set()
        for day in value:
            try:
                day_number = int(day)
            except (TypeError, ValueError):
                continue
            if 1 <= day_number <= 7:
                days.add(day_number)
        return frozenset(days)

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone: {value}") from exc
        return value

    @field_serializer("start", "end")
    def _serialize_time(self, value: time) -> str:
        return value.strftime("%H:%M")

    @field_serializer("active_weekdays")
    def _serialize_weekdays(self, value: frozenset[int]) -> list[int]:
        return sorted(value)

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @classmethod
    def from_document(cls, raw: Any) -> QuietHours:
        """Parse a stored block; anything unusable means quiet hours disabled."""
        if raw is None:
            return cls()
        if isinstance(raw, QuietHours):
            return raw
        try:
            return cls.model_validate(raw)
        except (ValidationError, TypeError, ValueError) as exc:
            logger.warning(f"Invalid quiet hours config, treating as disabled: {exc}")
            return cls()


class MonitoringSettings(BaseModel):
    """Per-subject knobs. Every field has a documented default."""

    model_config = ConfigDict(frozen=True)

    alert_threshold: timedelta = Field(default=DEFAULT_ALERT_THRESHOLD, gt=timedelta(0))
    cooldown: timedelta = Field(default=DEFAULT_COOLDOWN, ge=timedelta(0))
    min_refresh_interval: timedelta = Field(
        default=DEFAULT_MIN_REFRESH_INTERVAL, ge=timedelta(0)
    )
    long_silence_threshold: timedelta = Field(
        default=DEFAULT_LONG_SILENCE_THRESHOLD, gt=timedelta(0)
    )
    quiet_hours: QuietHours = Field(default_factory=QuietHours)

    @field_validator("quiet_hours", mode="before")
    @classmethod
    def _tolerant_quiet_hours(cls, value: Any) -> QuietHours:
        return QuietHours.from_document(value)

    @field_serializer(
        "alert_threshold", "cooldown", "min_refresh_interval", "long_silence_threshold"
    )
    def _serialize_seconds(self, value: timedelta) -> float:
        return value.total_seconds()

    @classmethod
    def from_document(cls, raw: Any) -> MonitoringSettings:
        """Parse field by field so one bad value only resets that field."""
        if raw is None:
            return cls()
        if isinstance(raw, MonitoringSettings):
            return raw
        if not isinstance(raw, dict):
            logger.warning(f"Invalid monitoring settings {raw!r}, using defaults")
            return cls()

        payload = dict(raw)
        if "alertHours" in payload and "alert_threshold" not in payload:
            try:
                payload["alert_threshold"] = timedelta(hours=float(payload["alertHours"]))
            except (TypeError, ValueError):
                pass

        accepted: dict[str, Any] = {}
        for name in cls.model_fields:
            if name not in payload or payload[name] is None:
                continue
            try:
                cls.model_validate({name: payload[name]})
            except ValidationError as exc:
                logger.warning(f"Ignoring invalid setting {name}: {exc.errors()[0]['msg']}")
                continue
            accepted[name] = payload[name]
        return cls.model_validate(accepted)


class InactiveAlert(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal["inactive"] = "inactive"


class ActiveAlert(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal["active"] = "active"
    since: datetime
    cooldown_until: datetime

    @field_validator("since", "cooldown_until")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return ensure_aware(value)


class ClearedAlert(BaseModel):
    """Acknowledged by a subscriber while the subject may still be silent."""

    model_config = ConfigDict(frozen=True)

    status: Literal["cleared"] = "cleared"
    at: datetime
    cleared_by: str | None = None

    @field_validator("at")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return ensure_aware(value)


AlertState = Annotated[
    Union[InactiveAlert, ActiveAlert, ClearedAlert],
    Field(discriminator="status"),
]


class Subject(BaseModel):
    """One monitored entity, as held by the liveness store."""

    model_config = ConfigDict(use_enum_values=True)

    id: str
    display_name: str | None = None
    monitoring_enabled: bool = True
    last_heartbeat_at: datetime | None = None
    heartbeat_kind: HeartbeatKind | None = None
    settings: MonitoringSettings = Field(default_factory=MonitoringSettings)
    alert_state: AlertState = Field(default_factory=InactiveAlert)
    alert_version: int = 0
    subscribers: list[str] = Field(default_factory=list)

    @field_validator("last_heartbeat_at")
    @classmethod
    def _aware_heartbeat(cls, value: datetime | None) -> datetime | None:
        return ensure_aware(value) if value is not None else None

    @field_validator("settings", mode="before")
    @classmethod
    def _tolerant_settings(cls, value: Any) -> MonitoringSettings:
        return MonitoringSettings.from_document(value)

    @field_validator("subscribers")
    @classmethod
    def _unique_subscribers(cls, value: list[str]) -> list[str]:
        return list(dict.fromkeys(endpoint for endpoint in value if endpoint))

    @property
    def name(self) -> str:
        return self.display_name or "Unknown"

    def staleness(self, now: datetime) -> timedelta | None:
        if self.last_heartbeat_at is None:
            return None
        return now - self.last_heartbeat_at

    def is_stale(self, now: datetime) -> bool:
        staleness = self.staleness(now)
        return staleness is not None and staleness >= self.settings.alert_threshold

    def to_document(self) -> dict[str, Any]:
        document = self.model_dump()
        document["_id"] = document.pop("id")
        return document

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> Subject:
        payload = dict(document)
        if "_id" in payload:
            payload["id"] = str(payload.pop("_id"))
        return cls.model_validate(payload)


class SubjectQuery(BaseModel):
    """Filter for the sweep's subject stream."""

    monitoring_enabled: bool = True
    batch_size: int = Field(default=100, ge=1)
