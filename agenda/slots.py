"""Slot calendar rules.

Pure functions: the bookable time slots of a date depend only on its weekday
and the ScheduleConfig. A closed day yields an empty list, which callers treat
as "cannot book", never as an error.
"""
import calendar
from datetime import date as date_type, datetime, timedelta
from typing import Iterable, List, Optional, Union

from agenda import config
from agenda.models import Appointment, SlotPolicy, format_minutes, normalize_date, to_minutes
from agenda.settings import ScheduleConfig

DateLike = Union[str, date_type]


def as_date(value: DateLike) -> date_type:
    """Accept a date or an ISO string."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date_type):
        return value
    return date_type.fromisoformat(normalize_date(value))


def weekday_name(value: DateLike) -> str:
    return config.WEEKDAYS[as_date(value).weekday()]


def get_slots(value: DateLike, schedule: ScheduleConfig) -> List[str]:
    """
    Bookable slots for a date, in order.

    Each window is stepped from start to end inclusive at the configured
    interval; windows are visited in start order.

    Args:
        value: Date (or ISO string)
        schedule: Slot rules

    Returns:
        'HH:MM' strings, strictly increasing; empty on closed days

    Example:
        Friday with window 14:00-17:30 at 30 minutes:
        ['14:00', '14:30', '15:00', '15:30', '16:00', '16:30', '17:00', '17:30']
    """
    slots = []
    for window in schedule.windows_for(weekday_name(value)):
        current = window.start_minutes
        while current <= window.end_minutes:
            slots.append(format_minutes(current))
            current += schedule.interval_minutes
    return slots


def is_bookable_slot(value: DateLike, time: str, schedule: ScheduleConfig) -> bool:
    """Check that a time is one of the date's slots."""
    try:
        return format_minutes(to_minutes(time)) in get_slots(value, schedule)
    except ValueError:
        return False


def slot_bounds(value: DateLike, time: str, minutes: int):
    """Naive start/end datetimes of a slot."""
    start = datetime.combine(as_date(value), datetime.strptime(time, "%H:%M").time())
    return start, start + timedelta(minutes=minutes)


def month_dates(year: int, month: int) -> List[date_type]:
    days = calendar.monthrange(year, month)[1]
    return [date_type(year, month, day) for day in range(1, days + 1)]


def dates_with_appointments(year: int, month: int, appointments: Iterable[Appointment]) -> List[int]:
    """Day numbers of the month that have at least one appointment."""
    prefix = f"{year:04d}-{month:02d}"
    return sorted({int(a.date[8:10]) for a in appointments if a.date.startswith(prefix)})


def full_dates(
    year: int,
    month: int,
    appointments: Iterable[Appointment],
    schedule: ScheduleConfig,
    policy: SlotPolicy = SlotPolicy.GLOBAL,
    store_ids: Optional[Iterable[int]] = None
) -> List[int]:
    """
    Day numbers where no slot can take another booking.

    Under GLOBAL one appointment takes a slot. Under PER_STORE a slot is only
    gone once every store in store_ids holds it. Closed days are skipped (no
    slots means not bookable, not full).

    Raises:
        ValueError: PER_STORE without store_ids
    """
    policy = SlotPolicy(policy)
    required = None
    if policy == SlotPolicy.PER_STORE:
        if store_ids is None:
            raise ValueError("store_ids is required for the per_store policy")
        required = set(store_ids)
        if not required:
            return []

    per_slot = {}
    for apt in appointments:
        per_slot.setdefault((apt.date, apt.time), set()).add(apt.store_id)

    def taken(day: str, slot: str) -> bool:
        holders = per_slot.get((day, slot), set())
        if required is None:
            return bool(holders)
        return required <= holders

    full = []
    for day in month_dates(year, month):
        slots = get_slots(day, schedule)
        if not slots:
            continue
        iso = day.isoformat()
        if all(taken(iso, slot) for slot in slots):
            full.append(day.day)
    return full
