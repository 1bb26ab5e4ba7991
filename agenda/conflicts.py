"""Conflict resolution for bookings.

The resolver is synchronous and never refreshes anything itself: callers pass
the most recently synced appointments. Check order is fixed: a time outside
the date's slot set is INVALID_SLOT before any conflict is looked at.
"""
from typing import Iterable, Optional

from agenda.errors import ErrorKind
from agenda.models import Appointment, BusyInterval, SlotPolicy
from agenda.settings import ScheduleConfig
from agenda.slots import is_bookable_slot, slot_bounds

__all__ = ["SlotPolicy", "can_book", "overlaps_busy", "check_booking"]


def can_book(candidate: Appointment, existing: Iterable[Appointment], policy: SlotPolicy) -> bool:
    """
    Check whether the candidate's slot is free under the policy.

    Args:
        candidate: Requested booking (date, time, store_id are read)
        existing: Current appointments
        policy: PER_STORE or GLOBAL

    Returns:
        False if an appointment already occupies the slot
    """
    key = candidate.slot_key(policy)
    return not any(apt.slot_key(policy) == key for apt in existing)


def overlaps_busy(candidate: Appointment, busy: Iterable[BusyInterval], minutes: int) -> Optional[BusyInterval]:
    """Return the first foreign event overlapping the candidate's slot."""
    start, end = slot_bounds(candidate.date, candidate.time, minutes)
    for interval in busy:
        interval_start = interval.start.replace(tzinfo=None)
        interval_end = interval.end.replace(tzinfo=None)
        if start < interval_end and end > interval_start:
            return interval
    return None


def check_booking(
    candidate: Appointment,
    existing: Iterable[Appointment],
    policy: SlotPolicy,
    schedule: ScheduleConfig,
    busy: Iterable[BusyInterval] = (),
    ignore_id: Optional[int] = None
) -> Optional[ErrorKind]:
    """
    Validate a booking against slot rules, existing appointments and foreign events.

    Args:
        candidate: Requested booking
        existing: Current appointments
        policy: Active slot policy
        schedule: Slot rules
        busy: Intervals taken by events this system does not own
        ignore_id: Appointment being moved (not a conflict with itself)

    Returns:
        None if bookable, else INVALID_SLOT or CONFLICT
    """
    if not is_bookable_slot(candidate.date, candidate.time, schedule):
        return ErrorKind.INVALID_SLOT

    others = [apt for apt in existing if ignore_id is None or apt.id != ignore_id]
    if not can_book(candidate, others, policy):
        return ErrorKind.CONFLICT

    if overlaps_busy(candidate, busy, schedule.interval_minutes) is not None:
        return ErrorKind.CONFLICT

    return None
