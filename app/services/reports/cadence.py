"""Report cadence: tick times and aligned report windows.

Windows are aligned to scheduler ticks in the configured timezone, so every
run within one cadence period resolves to the same (user_id, window_start) key.
A weekly cadence ticking Sunday 09:00 gives windows
``[previous Sunday 09:00, this Sunday 09:00)``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, time, timedelta
from zoneinfo import ZoneInfo

from app.config import Settings, get_settings
from app.services.reports.types import ReportWindow

_PERIODS = {"daily": timedelta(days=1), "weekly": timedelta(days=7)}


def parse_time_of_day(value: str) -> time:
    """Parse ``HH:MM`` (24h)."""
    hour, _, minute = value.strip().partition(":")
    return time(hour=int(hour), minute=int(minute or 0))


@dataclass(frozen=True)
class Cadence:
    frequency: str
    day_of_week: int  # 0=Monday .. 6=Sunday; ignored for daily
    at: time
    tz: ZoneInfo

    def __post_init__(self) -> None:
        if self.frequency not in _PERIODS:
            raise ValueError(f"Unsupported report frequency: {self.frequency}")
        if not 0 <= self.day_of_week <= 6:
            raise ValueError(f"day_of_week must be 0..6, got {self.day_of_week}")

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> Cadence:
        if settings is None:
            settings = get_settings()
        return cls(
            frequency=settings.report_frequency,
            day_of_week=settings.report_day_of_week,
            at=parse_time_of_day(settings.report_time),
            tz=ZoneInfo(settings.report_timezone),
        )

    @property
    def period(self) -> timedelta:
        return _PERIODS[self.frequency]

    def last_tick(self, now: datetime) -> datetime:
        """Most recent tick at or before ``now``, in the cadence timezone."""
        local = now.astimezone(self.tz)
        candidate = local.replace(
            hour=self.at.hour, minute=self.at.minute, second=0, microsecond=0
        )
        if self.frequency == "weekly":
            candidate -= timedelta(days=(local.weekday() - self.day_of_week) % 7)
        if candidate > local:
            candidate -= self.period
        return candidate

    def next_tick(self, now: datetime) -> datetime:
        """First tick strictly after ``now``."""
        return self.last_tick(now) + self.period

    def window_for(self, now: datetime) -> ReportWindow:
        """The completed period ending at the last tick, as a UTC window."""
        end = self.last_tick(now)
        start = end - self.period
        return ReportWindow(start=start.astimezone(UTC), end=end.astimezone(UTC))
