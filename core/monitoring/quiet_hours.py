"""Quiet-hours policy.

`is_quiet` is the only predicate for the quiet window; callers that need the
answer go through it rather than re-deriving the window.

Boundaries: the start minute is quiet, the end minute is already awake.
Resolution is one minute; seconds are ignored.
"""

from __future__ import annotations

from datetime import UTC, datetime, time, timedelta

from contracts.subject import QuietHours

WEEKDAY_NAMES = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")


def _minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def _local(now: datetime, config: QuietHours) -> datetime:
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    return now.astimezone(config.zone)


def is_quiet(now: datetime, config: QuietHours | None) -> bool:
    """Return True when alerting should be suppressed at `now`."""
    if config is None or not config.enabled:
        return False

    local = _local(now, config)
    if local.isoweekday() not in config.active_weekdays:
        return False

    current = local.hour * 60 + local.minute
    start = _minutes(config.start)
    end = _minutes(config.end)

    if start > end:
        return current >= start or current < end
    return start <= current < end


def quiet_period_ends_at(now: datetime, config: QuietHours | None) -> datetime | None:
    """Instant at which the quiet period containing `now` ends, else None."""
    if not is_quiet(now, config):
        return None

    local = _local(now, config)
    end_today = local.replace(
        hour=config.end.hour, minute=config.end.minute, second=0, microsecond=0
    )
    if end_today <= local:
        end_today += timedelta(days=1)
    return end_today.astimezone(UTC)


def describe_schedule(config: QuietHours | None) -> str:
    if config is None or not config.enabled:
        return "quiet hours disabled"

    window = f"{config.start.strftime('%H:%M')}-{config.end.strftime('%H:%M')}"
    if config.active_weekdays == frozenset(range(1, 8)):
        days = "daily"
    else:
        days = ", ".join(WEEKDAY_NAMES[day - 1] for day in sorted(config.active_weekdays))
    return f"{days} {window} ({config.timezone})"
