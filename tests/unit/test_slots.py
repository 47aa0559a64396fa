import pytest
from datetime import date, datetime

from services.slots import generate_slots, is_slot_free
from services.time_windows import (
    BookedInterval, TimeWindow, day_of_week, format_hhmm, intervals_overlap, parse_hhmm,
)

MONDAY = date(2026, 10, 19)


def times(slots):
    return [s.time for s in slots]


def test_parse_and_format_wall_clock():
    assert parse_hhmm("09:30") == 570
    assert parse_hhmm("0:05") == 5
    assert format_hhmm(570) == "09:30"

    with pytest.raises(ValueError):
        parse_hhmm("24:00")
    with pytest.raises(ValueError):
        parse_hhmm("9.30")


def test_day_of_week_starts_on_sunday():
    assert day_of_week(date(2026, 10, 18)) == 0  # Sunday
    assert day_of_week(MONDAY) == 1
    assert day_of_week(date(2026, 10, 24)) == 6  # Saturday


def test_window_must_be_ordered_within_one_day():
    with pytest.raises(ValueError):
        TimeWindow.from_strings("10:00", "09:00")
    with pytest.raises(ValueError):
        TimeWindow(600, 600)


def test_three_hour_window_yields_six_half_hour_slots():
    slots = generate_slots(MONDAY, 30, [TimeWindow.from_strings("09:00", "12:00")])

    assert times(slots) == ["09:00", "09:30", "10:00", "10:30", "11:00", "11:30"]
    assert slots[0].start == datetime(2026, 10, 19, 9, 0)
    assert slots[-1].end == datetime(2026, 10, 19, 12, 0)


@pytest.mark.parametrize("start,end,duration", [
    ("09:00", "12:00", 30),
    ("09:00", "12:00", 45),
    ("08:15", "17:40", 50),
    ("13:00", "13:59", 20),
])
def test_slot_count_and_offsets_follow_window_arithmetic(start, end, duration):
    window = TimeWindow.from_strings(start, end)
    slots = generate_slots(MONDAY, duration, [window])

    assert len(slots) == (window.end - window.start) // duration
    for k, slot in enumerate(slots):
        assert slot.time == format_hhmm(window.start + k * duration)


def test_window_shorter_than_duration_yields_nothing():
    assert generate_slots(MONDAY, 60, [TimeWindow.from_strings("09:00", "09:30")]) == []


def test_remainder_at_window_end_is_not_offered():
    slots = generate_slots(MONDAY, 45, [TimeWindow.from_strings("09:00", "10:00")])
    assert times(slots) == ["09:00"]


def test_booking_removes_only_overlapping_slots():
    booked = [BookedInterval(datetime(2026, 10, 19, 10, 0), datetime(2026, 10, 19, 10, 30))]
    slots = generate_slots(MONDAY, 30, [TimeWindow.from_strings("09:00", "12:00")], booked)

    assert "10:00" not in times(slots)
    # Touching on either side is not an overlap
    assert "09:30" in times(slots)
    assert "10:30" in times(slots)


def test_booking_straddling_two_slots_removes_both():
    booked = [BookedInterval(datetime(2026, 10, 19, 9, 15), datetime(2026, 10, 19, 9, 45))]
    slots = generate_slots(MONDAY, 30, [TimeWindow.from_strings("09:00", "10:30")], booked)
    assert times(slots) == ["10:00"]


def test_windows_keep_insertion_order():
    windows = [TimeWindow.from_strings("14:00", "15:00"), TimeWindow.from_strings("09:00", "10:00")]
    assert times(generate_slots(MONDAY, 30, windows)) == ["14:00", "14:30", "09:00", "09:30"]


def test_overlap_is_strict_half_open():
    a_start, a_end = datetime(2026, 1, 1, 10, 0), datetime(2026, 1, 1, 10, 30)

    assert intervals_overlap(a_start, a_end, datetime(2026, 1, 1, 10, 29), datetime(2026, 1, 1, 11, 0))
    assert not intervals_overlap(a_start, a_end, a_end, datetime(2026, 1, 1, 11, 0))
    assert not intervals_overlap(a_start, a_end, datetime(2026, 1, 1, 9, 30), a_start)
    assert is_slot_free(a_end, datetime(2026, 1, 1, 11, 0), [BookedInterval(a_start, a_end)])


def test_non_positive_duration_is_rejected():
    with pytest.raises(ValueError):
        generate_slots(MONDAY, 0, [TimeWindow.from_strings("09:00", "10:00")])
