"""Slot enumeration over a provider's working schedule."""

from datetime import date, time

from clinicq.schemas.providers import ProviderScheduleBase, Slot, Weekday


def _minutes(moment: time) -> int:
    return moment.hour * 60 + moment.minute


def _clock_time(minutes: int) -> time:
    return time(minutes // 60, minutes % 60)


def enumerate_slots(schedule: ProviderScheduleBase, day: date) -> list[Slot]:
    """
    Enumerate the bookable slots of a provider on a date.

    Walks the working hours in ``slot_duration_minutes`` steps, keeps only slots
    that end by the close of working hours and skips any slot overlapping a break.

    Args:
        schedule: Provider working schedule
        day: Calendar date

    Returns:
        Slots ordered by start time, empty on non-working days
    """
    if Weekday.of(day) not in schedule.working_days:
        return []

    step = schedule.slot_duration_minutes
    opens = _minutes(schedule.working_hours.start)
    closes = _minutes(schedule.working_hours.end)

    slots: list[Slot] = []
    for start in range(opens, closes - step + 1, step):
        slot = Slot(start=_clock_time(start), end=_clock_time(start + step))
        if any(slot.overlaps(interval) for interval in schedule.breaks):
            continue
        slots.append(slot)
    return slots


def find_slot(schedule: ProviderScheduleBase, day: date, start: time) -> Slot | None:
    """Return the enumerated slot starting at ``start``, if there is one."""
    for slot in enumerate_slots(schedule, day):
        if slot.start == start:
            return slot
    return None
