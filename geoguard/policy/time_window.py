# geoguard/policy/time_window.py
"""
Time-of-day access window.

Current instant is projected into the configured IANA timezone and its hour is
compared against ``[start, end]`` (hour-of-day, 0..24). Both bounds are
inclusive in both window modes:

* normal (start <= end), e.g. 9..17: outside iff hour < start or hour > end;
  09:xx and 17:xx are inside, 18:00 is outside.
* overnight (start > end), e.g. 22..6: outside iff end < hour < start;
  22:xx and 06:xx are inside, 07:00 and 21:59 are outside.

A failed projection never blocks: the check reports "inside" and carries the
error for the caller to log.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone as dt_timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

__all__ = [
    "WindowCheck",
    "is_outside_window",
    "TimeWindowEvaluator",
]


@dataclass(frozen=True)
class WindowCheck:
    outside: bool
    hour: Optional[int] = None
    timezone: Optional[str] = None
    error: Optional[str] = None


def is_outside_window(hour: int, start: int, end: int) -> bool:
    if start <= end:
        return hour < start or hour > end
    return end < hour < start


def _validate_hours(start: int, end: int) -> None:
    for name, value in (("start", start), ("end", end)):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"allowed hours {name} must be int, got {value!r}")
        if not 0 <= value <= 24:
            raise ValueError(f"allowed hours {name} out of range 0..24: {value}")


class TimeWindowEvaluator:
    def check(
        self,
        tz_name: Optional[str],
        start: int,
        end: int,
        now: Optional[datetime] = None,
    ) -> WindowCheck:
        try:
            _validate_hours(start, end)
            if not tz_name:
                raise ValueError("empty timezone")
            tz = ZoneInfo(tz_name)
            instant = now or datetime.now(dt_timezone.utc)
            if instant.tzinfo is None:
                instant = instant.replace(tzinfo=dt_timezone.utc)
            hour = instant.astimezone(tz).hour
        except (ZoneInfoNotFoundError, ValueError, TypeError) as e:
            return WindowCheck(outside=False, timezone=tz_name, error=f"{e.__class__.__name__}: {e}")
        return WindowCheck(outside=is_outside_window(hour, start, end), hour=hour, timezone=tz_name)
