"""Schedule view builder.

Turns slot rules plus current appointments into the structures a UI draws:
the day grid (one row per slot, one cell per store), the month overview and
the dashboard counters. Pure functions; callers pass already-synced data.
"""
from dataclasses import dataclass, field
from datetime import date as date_type
from enum import Enum
from typing import Dict, Iterable, List, Optional

from agenda.conflicts import overlaps_busy
from agenda.models import Appointment, BusyInterval, SlotPolicy, Store
from agenda.settings import ScheduleConfig
from agenda.slots import DateLike, as_date, dates_with_appointments, full_dates, get_slots


class CellStatus(str, Enum):
    FREE = "free"
    BOOKED = "booked"
    BLOCKED = "blocked"  # taken by another store (global policy) or a foreign event


@dataclass
class SlotCell:
    store_id: int
    status: CellStatus
    appointment: Optional[Appointment] = None


@dataclass
class SlotRow:
    time: str
    cells: List[SlotCell] = field(default_factory=list)

    @property
    def free(self) -> bool:
        return any(cell.status == CellStatus.FREE for cell in self.cells)


@dataclass
class MonthSummary:
    year: int
    month: int
    days_with_appointments: List[int]
    full_days: List[int]


def build_day_grid(
    value: DateLike,
    appointments: Iterable[Appointment],
    stores: Iterable[Store],
    schedule: ScheduleConfig,
    policy: SlotPolicy,
    busy: Iterable[BusyInterval] = ()
) -> List[SlotRow]:
    """
    Grid for one day.

    Args:
        value: Day to draw
        appointments: Appointments (other days are ignored)
        stores: Columns, in display order
        schedule: Slot rules
        policy: Under GLOBAL a booking blocks the whole time row
        busy: Foreign calendar events

    Returns:
        One SlotRow per slot; empty on closed days
    """
    day = as_date(value).isoformat()
    stores = list(stores)
    busy = list(busy)

    by_time: Dict[str, List[Appointment]] = {}
    for apt in appointments:
        if apt.date == day:
            by_time.setdefault(apt.time, []).append(apt)

    rows = []
    for slot in get_slots(day, schedule):
        taken = by_time.get(slot, [])
        candidate = Appointment(date=day, time=slot, client_name="-")
        blocked_by_event = overlaps_busy(candidate, busy, schedule.interval_minutes) is not None

        row = SlotRow(time=slot)
        for store in stores:
            own = next((a for a in taken if a.store_id == store.id), None)
            if own is not None:
                row.cells.append(SlotCell(store.id, CellStatus.BOOKED, own))
            elif blocked_by_event or (policy == SlotPolicy.GLOBAL and taken):
                row.cells.append(SlotCell(store.id, CellStatus.BLOCKED))
            else:
                row.cells.append(SlotCell(store.id, CellStatus.FREE))
        rows.append(row)
    return rows


def month_summary(
    year: int,
    month: int,
    appointments: Iterable[Appointment],
    schedule: ScheduleConfig,
    policy: SlotPolicy = SlotPolicy.GLOBAL,
    stores: Iterable[Store] = ()
) -> MonthSummary:
    """
    Days with appointments and fully booked days of a month.

    Under PER_STORE a day is full only when every active store holds every
    slot.
    """
    appointments = list(appointments)
    store_ids = [s.id for s in stores if s.active]
    return MonthSummary(
        year=year,
        month=month,
        days_with_appointments=dates_with_appointments(year, month, appointments),
        full_days=full_dates(year, month, appointments, schedule, policy=policy, store_ids=store_ids),
    )


def store_stats(
    appointments: Iterable[Appointment],
    stores: Iterable[Store],
    today: date_type,
    total_clients: int = 0
) -> dict:
    """Dashboard counters: this month, today, and this month per active store."""
    month_prefix = f"{today.year:04d}-{today.month:02d}"
    today_iso = today.isoformat()
    month_appointments = [a for a in appointments if a.date.startswith(month_prefix)]
    active = [s for s in stores if s.active]

    return {
        "total_month": len(month_appointments),
        "today": sum(1 for a in month_appointments if a.date == today_iso),
        "total_stores": len(active),
        "total_clients": total_clients,
        "by_store": {
            store.id: {
                "name": store.name,
                "count": sum(1 for a in month_appointments if a.store_id == store.id),
            }
            for store in active
        },
    }
