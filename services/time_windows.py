"""
Time-window arithmetic for weekly recurring availability.

Wall-clock strings ("HH:MM") are interpreted in the workspace's local time
without any timezone conversion; the workspace timezone is informational.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterator

_HHMM = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")

MINUTES_PER_DAY = 24 * 60


def parse_hhmm(value: str) -> int:
    """'09:30' -> 570 (minutes since midnight)."""
    match = _HHMM.match((value or "").strip())
    if not match:
        raise ValueError(f"Invalid wall-clock time: {value!r}")
    return int(match.group(1)) * 60 + int(match.group(2))


def format_hhmm(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def day_of_week(day: date) -> int:
    """0 = Sunday ... 6 = Saturday (the convention Availability rows use)."""
    return (day.weekday() + 1) % 7


def at_minutes(day: date, minutes: int) -> datetime:
    return datetime.combine(day, time.min) + timedelta(minutes=minutes)


def intervals_overlap(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    """Strict half-open overlap: touching intervals do not overlap."""
    return start_a < end_b and end_a > start_b


@dataclass(frozen=True)
class TimeWindow:
    """A [start, end) span of minutes-of-day."""
    start: int
    end: int

    def __post_init__(self):
        if not 0 <= self.start < self.end <= MINUTES_PER_DAY:
            raise ValueError(f"Window must satisfy start < end within one day: {self}")

    @classmethod
    def from_strings(cls, start: str, end: str) -> "TimeWindow":
        return cls(parse_hhmm(start), parse_hhmm(end))

    def offsets(self, duration: int) -> Iterator[int]:
        """Back-to-back slot starts: start, start+D, ... while the slot fits."""
        if duration <= 0:
            raise ValueError("Service duration must be a positive number of minutes")
        t = self.start
        while t + duration <= self.end:
            yield t
            t += duration

    def slot_count(self, duration: int) -> int:
        return (self.end - self.start) // duration


@dataclass(frozen=True)
class BookedInterval:
    start: datetime
    end: datetime
