"""Tests for slot enumeration and schedule validation."""

from datetime import date, time
from uuid import uuid4

import pytest
from pydantic import ValidationError

from clinicq.scheduling.calendar import enumerate_slots, find_slot
from clinicq.schemas.providers import ProviderSchedule, ProviderScheduleUpdate, TimeRange, Weekday

MONDAY = date(2026, 3, 2)
SUNDAY = date(2026, 3, 8)


def make_schedule(**overrides) -> ProviderSchedule:
    values = {
        "provider_id": uuid4(),
        "working_days": [Weekday.MONDAY, Weekday.TUESDAY],
        "working_hours": TimeRange(start=time(9, 0), end=time(12, 0)),
        "breaks": [],
        "slot_duration_minutes": 30,
        "max_appointments_per_slot": 1,
        "is_verified": True,
        "is_active": True,
    }
    values.update(overrides)
    return ProviderSchedule(**values)


def test_weekday_of_date():
    assert Weekday.of(MONDAY) is Weekday.MONDAY
    assert Weekday.of(SUNDAY) is Weekday.SUNDAY


def test_enumerate_slots_covers_working_hours():
    slots = enumerate_slots(make_schedule(), MONDAY)

    assert [s.start for s in slots] == [
        time(9, 0),
        time(9, 30),
        time(10, 0),
        time(10, 30),
        time(11, 0),
        time(11, 30),
    ]
    assert slots[-1].end == time(12, 0)


def test_enumerate_slots_non_working_day_is_empty():
    assert enumerate_slots(make_schedule(), SUNDAY) == []


def test_enumerate_slots_skips_breaks():
    schedule = make_schedule(
        working_hours=TimeRange(start=time(9, 0), end=time(14, 0)),
        breaks=[TimeRange(start=time(12, 0), end=time(13, 0))],
        slot_duration_minutes=60,
    )

    starts = [s.start for s in enumerate_slots(schedule, MONDAY)]
    assert starts == [time(9, 0), time(10, 0), time(11, 0), time(13, 0)]


def test_enumerate_slots_skips_slot_partially_inside_break():
    schedule = make_schedule(
        working_hours=TimeRange(start=time(9, 0), end=time(11, 0)),
        breaks=[TimeRange(start=time(9, 45), end=time(10, 0))],
        slot_duration_minutes=30,
    )

    starts = [s.start for s in enumerate_slots(schedule, MONDAY)]
    assert starts == [time(9, 0), time(10, 0), time(10, 30)]


def test_enumerate_slots_drops_trailing_partial_slot():
    schedule = make_schedule(
        working_hours=TimeRange(start=time(9, 0), end=time(10, 0)),
        slot_duration_minutes=45,
    )

    slots = enumerate_slots(schedule, MONDAY)
    assert len(slots) == 1
    assert (slots[0].start, slots[0].end) == (time(9, 0), time(9, 45))


def test_find_slot():
    schedule = make_schedule()

    assert find_slot(schedule, MONDAY, time(10, 30)).end == time(11, 0)
    assert find_slot(schedule, MONDAY, time(10, 15)) is None
    assert find_slot(schedule, SUNDAY, time(10, 30)) is None


def test_schedule_rejects_break_outside_working_hours():
    with pytest.raises(ValidationError):
        ProviderScheduleUpdate(
            working_days=[Weekday.MONDAY],
            working_hours=TimeRange(start=time(9, 0), end=time(12, 0)),
            breaks=[TimeRange(start=time(11, 30), end=time(12, 30))],
        )


def test_schedule_rejects_overlapping_breaks():
    with pytest.raises(ValidationError):
        ProviderScheduleUpdate(
            working_days=[Weekday.MONDAY],
            working_hours=TimeRange(start=time(9, 0), end=time(17, 0)),
            breaks=[
                TimeRange(start=time(12, 0), end=time(13, 0)),
                TimeRange(start=time(12, 30), end=time(13, 30)),
            ],
        )


def test_time_range_requires_start_before_end():
    with pytest.raises(ValidationError):
        TimeRange(start=time(12, 0), end=time(9, 0))


@pytest.mark.parametrize("duration", [4, 241])
def test_schedule_rejects_slot_duration_out_of_range(duration):
    with pytest.raises(ValidationError):
        ProviderScheduleUpdate(
            working_days=[Weekday.MONDAY],
            working_hours=TimeRange(start=time(9, 0), end=time(17, 0)),
            slot_duration_minutes=duration,
        )
