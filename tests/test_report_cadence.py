"""Tests for report cadence ticks and aligned windows."""

from __future__ import annotations

from datetime import UTC, datetime, time, timedelta
from types import SimpleNamespace
from zoneinfo import ZoneInfo

import pytest

from app.services.reports.cadence import Cadence, parse_time_of_day
from tests.doubles import NOW, WINDOW_END, WINDOW_START


def _weekly(tz: str = "UTC") -> Cadence:
    return Cadence(frequency="weekly", day_of_week=6, at=time(9, 0), tz=ZoneInfo(tz))


def test_parse_time_of_day() -> None:
    assert parse_time_of_day("09:00") == time(9, 0)
    assert parse_time_of_day(" 17:45 ") == time(17, 45)
    assert parse_time_of_day("7") == time(7, 0)


def test_weekly_window_ends_at_last_tick() -> None:
    window = _weekly().window_for(NOW)
    assert window.start == WINDOW_START
    assert window.end == WINDOW_END
    assert window.end - window.start == timedelta(days=7)


def test_all_runs_in_one_period_share_a_window() -> None:
    cadence = _weekly()
    moments = [WINDOW_END, NOW, WINDOW_END + timedelta(days=6, hours=23, minutes=59)]
    assert {cadence.window_for(m).start for m in moments} == {WINDOW_START}


def test_run_just_before_tick_uses_previous_window() -> None:
    window = _weekly().window_for(WINDOW_END - timedelta(seconds=1))
    assert window.end == WINDOW_START


def test_next_tick_is_strictly_after_now() -> None:
    cadence = _weekly()
    assert cadence.next_tick(NOW) == WINDOW_END + timedelta(days=7)
    assert cadence.next_tick(WINDOW_END) == WINDOW_END + timedelta(days=7)


def test_daily_cadence() -> None:
    cadence = Cadence(frequency="daily", day_of_week=0, at=time(6, 30), tz=ZoneInfo("UTC"))
    window = cadence.window_for(datetime(2026, 3, 9, 12, 0, tzinfo=UTC))
    assert window.start == datetime(2026, 3, 8, 6, 30, tzinfo=UTC)
    assert window.end == datetime(2026, 3, 9, 6, 30, tzinfo=UTC)


def test_window_is_aligned_in_cadence_timezone() -> None:
    # Sunday 2026-01-11 09:00 in Berlin (CET, UTC+1) is 08:00 UTC
    window = _weekly("Europe/Berlin").window_for(datetime(2026, 1, 12, 12, 0, tzinfo=UTC))
    assert window.end == datetime(2026, 1, 11, 8, 0, tzinfo=UTC)
    assert window.start == datetime(2026, 1, 4, 8, 0, tzinfo=UTC)
    assert window.end.tzinfo == UTC


def test_unknown_frequency_rejected() -> None:
    with pytest.raises(ValueError, match="frequency"):
        Cadence(frequency="monthly", day_of_week=6, at=time(9, 0), tz=ZoneInfo("UTC"))


def test_day_of_week_out_of_range_rejected() -> None:
    with pytest.raises(ValueError):
        Cadence(frequency="weekly", day_of_week=7, at=time(9, 0), tz=ZoneInfo("UTC"))


def test_from_settings() -> None:
    settings = SimpleNamespace(
        report_frequency="weekly",
        report_day_of_week=0,
        report_time="08:15",
        report_timezone="America/Chicago",
    )
    cadence = Cadence.from_settings(settings)
    assert cadence.day_of_week == 0
    assert cadence.at == time(8, 15)
    assert cadence.tz.key == "America/Chicago"
