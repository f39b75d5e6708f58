"""Tests for the quiet-hours predicate and its helpers."""

from datetime import UTC, datetime, time

import pytest

from contracts.subject import QuietHours
from core.monitoring.quiet_hours import describe_schedule, is_quiet, quiet_period_ends_at

OVERNIGHT = QuietHours(enabled=True, start=time(22, 0), end=time(6, 0))


def at(day: int, hour: int, minute: int = 0, second: int = 0) -> datetime:
    # October 2026: the 12th is a Monday, the 17th a Saturday.
    return datetime(2026, 10, day, hour, minute, second, tzinfo=UTC)


def test_disabled_or_missing_config_is_never_quiet():
    assert is_quiet(at(13, 23), QuietHours()) is False
    assert is_quiet(at(13, 23), None) is False


@pytest.mark.parametrize(
    ("hour", "minute", "expected"),
    [
        (21, 59, False),
        (22, 0, True),
        (23, 30, True),
        (0, 0, True),
        (2, 0, True),
        (5, 59, True),
        (6, 0, False),
        (12, 0, False),
    ],
)
def test_overnight_window(hour, minute, expected):
    assert is_quiet(at(13, hour, minute), OVERNIGHT) is expected


def test_end_minute_is_awake_even_with_seconds():
    assert is_quiet(at(13, 5, 59, 59), OVERNIGHT) is True
    assert is_quiet(at(13, 6, 0, 30), OVERNIGHT) is False


def test_same_day_window():
    config = QuietHours(enabled=True, start=time(13, 0), end=time(15, 30))
    assert is_quiet(at(13, 12, 59), config) is False
    assert is_quiet(at(13, 13, 0), config) is True
    assert is_quiet(at(13, 15, 29), config) is True
    assert is_quiet(at(13, 15, 30), config) is False


def test_equal_start_and_end_is_never_quiet():
    config = QuietHours(enabled=True, start=time(8, 0), end=time(8, 0))
    assert is_quiet(at(13, 8, 0), config) is False
    assert is_quiet(at(13, 20, 0), config) is False


def test_inactive_weekday_is_not_quiet():
    weekdays_only = QuietHours(
        enabled=True, start=time(22, 0), end=time(6, 0), active_weekdays={1, 2, 3, 4, 5}
    )
    assert is_quiet(at(13, 23), weekdays_only) is True  # Tuesday
    assert is_quiet(at(17, 23), weekdays_only) is False  # Saturday


def test_timezone_is_applied_before_the_window_check():
    config = QuietHours(
        enabled=True, start=time(22, 0), end=time(6, 0), timezone="America/Sao_Paulo"
    )
    # 01:00 UTC is 22:00 in Sao Paulo (UTC-3).
    assert is_quiet(at(13, 1, 0), config) is True
    # 23:00 UTC is 20:00 local.
    assert is_quiet(at(13, 23, 0), config) is False


def test_naive_now_is_treated_as_utc():
    assert is_quiet(datetime(2026, 10, 13, 23, 0), OVERNIGHT) is True


def test_quiet_period_ends_at_next_morning():
    assert quiet_period_ends_at(at(13, 23, 15), OVERNIGHT) == at(14, 6, 0)
    assert quiet_period_ends_at(at(14, 2, 0), OVERNIGHT) == at(14, 6, 0)
    assert quiet_period_ends_at(at(14, 12, 0), OVERNIGHT) is None


def test_describe_schedule():
    assert describe_schedule(None) == "quiet hours disabled"
    assert describe_schedule(OVERNIGHT) == "daily 22:00-06:00 (UTC)"
    weekend = QuietHours(enabled=True, active_weekdays={6, 7})
    assert describe_schedule(weekend) == "Sat, Sun 22:00-06:00 (UTC)"
