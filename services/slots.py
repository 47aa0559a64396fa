"""
Slot Generator

Expands one day's availability windows into bookable slots and drops every
slot that strictly overlaps an existing booking.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable, List, Sequence

import structlog

from services.time_windows import (
    BookedInterval,
    TimeWindow,
    at_minutes,
    format_hhmm,
    intervals_overlap,
)

logger = structlog.get_logger("slots")


@dataclass(frozen=True)
class Slot:
    time: str
    start: datetime
    end: datetime


def generate_slots(
    target_date: date,
    duration: int,
    windows: Sequence[TimeWindow],
    booked: Iterable[BookedInterval] = (),
) -> List[Slot]:
    """
    Build the free slot list for target_date.

    Windows are processed independently and concatenated in the order given;
    no merging or re-sorting across windows. Callers pass only non-cancelled
    bookings of the same service type.
    """
    booked = list(booked)
    slots: List[Slot] = []

    for window in windows:
        for offset in window.offsets(duration):
            start = at_minutes(target_date, offset)
            end = start + timedelta(minutes=duration)

            if any(intervals_overlap(start, end, b.start, b.end) for b in booked):
                continue

            slots.append(Slot(time=format_hhmm(offset), start=start, end=end))

    logger.debug("Slots generated", date=target_date.isoformat(), windows=len(windows), free=len(slots))
    return slots


def is_slot_free(start: datetime, end: datetime, booked: Iterable[BookedInterval]) -> bool:
    return not any(intervals_overlap(start, end, b.start, b.end) for b in booked)
