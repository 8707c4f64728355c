"""Bookable slot computation for a doctor's day.

A doctor's weekly availability window is cut into fixed-length slots.
Slots that collide with an existing appointment, or that already started
when the requested day is today, are returned but marked unavailable.
Time off covering the day suppresses every slot.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any, NamedTuple

TIME_FORMATS = ('%H:%M:%S', '%H:%M')


class SlotInputError(ValueError):
    """Raised when availability, bookings or time off cannot produce valid slots."""


@dataclass(frozen=True)
class Slot:
    start_time: time
    end_time: time
    is_available: bool


class WeeklyWindow(NamedTuple):
    start_time: time | str
    end_time: time | str
    slot_duration_minutes: int


class BookedRange(NamedTuple):
    start_time: time | str
    end_time: time | str


class TimeOffRange(NamedTuple):
    start_date: date
    end_date: date


def _field(item: Any, name: str) -> Any:
    if isinstance(item, Mapping):
        return item[name]
    return getattr(item, name)


def parse_time_of_day(value: time | str) -> time:
    if isinstance(value, time):
        return value.replace(tzinfo=None)

    if isinstance(value, str):
        for time_format in TIME_FORMATS:
            try:
                return datetime.strptime(value.strip(), time_format).time()
            except ValueError:
                continue

    raise SlotInputError(f'Invalid time of day: {value!r}. Expected HH:MM or HH:MM:SS.')


def day_of_week(target_date: date) -> int:
    """Weekday number as stored on availability rows: 0=Sunday through 6=Saturday."""
    return (target_date.weekday() + 1) % 7


def slots_overlap(start_a: time, end_a: time, start_b: time, end_b: time) -> bool:
    # Half-open ranges: touching boundaries do not overlap.
    return start_a < end_b and start_b < end_a


def is_on_time_off(time_off: Iterable[Any], target_date: date) -> bool:
    return any(
        _field(entry, 'start_date') <= target_date <= _field(entry, 'end_date')
        for entry in time_off
    )


def _slot_duration(availability: Any) -> timedelta:
    minutes = _field(availability, 'slot_duration_minutes')
    if isinstance(minutes, bool) or not isinstance(minutes, int) or minutes <= 0:
        raise SlotInputError(f'Slot duration must be a positive whole number of minutes, got {minutes!r}.')
    return timedelta(minutes=minutes)


def compute_slots(
    availability: Any | None,
    booked_ranges: Iterable[Any],
    time_off: Iterable[Any],
    target_date: date,
    now: datetime,
) -> list[Slot]:
    if availability is None:
        return []

    if is_on_time_off(time_off, target_date):
        return []

    duration = _slot_duration(availability)
    window_start = datetime.combine(target_date, parse_time_of_day(_field(availability, 'start_time')))
    window_end = datetime.combine(target_date, parse_time_of_day(_field(availability, 'end_time')))
    if window_end <= window_start:
        raise SlotInputError('Availability end time must be after its start time.')

    booked = [
        (parse_time_of_day(_field(entry, 'start_time')), parse_time_of_day(_field(entry, 'end_time')))
        for entry in booked_ranges
    ]

    past_cutoff = now.replace(tzinfo=None).time() if target_date == now.date() else None

    slots: list[Slot] = []
    cursor = window_start
    # The window never crosses midnight, so plain time-of-day comparisons hold.
    while cursor + duration <= window_end:
        slot_start = cursor.time()
        slot_end = (cursor + duration).time()

        is_booked = any(
            slots_overlap(slot_start, slot_end, booked_start, booked_end)
            for booked_start, booked_end in booked
        )
        is_past = past_cutoff is not None and slot_start < past_cutoff

        slots.append(Slot(start_time=slot_start, end_time=slot_end, is_available=not is_booked and not is_past))
        cursor += duration

    return slots
