"""Tests for the schedule view builder."""
from datetime import date, datetime

from agenda.models import Appointment, BusyInterval, SlotPolicy, Store
from agenda.schedule_view import CellStatus, build_day_grid, month_summary, store_stats

STORES = [Store(id=1, name="Loja 1"), Store(id=2, name="Loja 2")]


def apt(time="09:00", store_id=1, date="2026-02-21"):
    return Appointment(id=hash((date, time, store_id)) & 0xFFFF, date=date, time=time, client_name="X", store_id=store_id)


def row(grid, time):
    return next(r for r in grid if r.time == time)


class TestDayGrid:

    def test_one_row_per_slot(self, schedule):
        grid = build_day_grid("2026-02-20", [], STORES, schedule, SlotPolicy.GLOBAL)

        assert [r.time for r in grid] == ["14:00", "14:30", "15:00", "15:30", "16:00", "16:30", "17:00", "17:30"]
        assert all(len(r.cells) == 2 for r in grid)

    def test_closed_day_is_empty(self, schedule):
        assert build_day_grid("2026-02-22", [], STORES, schedule, SlotPolicy.GLOBAL) == []

    def test_global_policy_blocks_other_stores(self, schedule):
        booked = apt(store_id=1)

        grid = build_day_grid("2026-02-21", [booked], STORES, schedule, SlotPolicy.GLOBAL)

        cells = row(grid, "09:00").cells
        assert cells[0].status == CellStatus.BOOKED
        assert cells[0].appointment == booked
        assert cells[1].status == CellStatus.BLOCKED
        assert not row(grid, "09:00").free
        assert row(grid, "09:30").free

    def test_per_store_policy_leaves_other_stores_free(self, schedule):
        grid = build_day_grid("2026-02-21", [apt(store_id=1)], STORES, schedule, SlotPolicy.PER_STORE)

        assert [c.status for c in row(grid, "09:00").cells] == [CellStatus.BOOKED, CellStatus.FREE]

    def test_foreign_events_block(self, schedule):
        busy = [BusyInterval(start=datetime(2026, 2, 21, 10, 0), end=datetime(2026, 2, 21, 11, 0))]

        grid = build_day_grid("2026-02-21", [], STORES, schedule, SlotPolicy.PER_STORE, busy=busy)

        assert all(c.status == CellStatus.BLOCKED for c in row(grid, "10:30").cells)
        assert row(grid, "11:00").free

    def test_other_days_ignored(self, schedule):
        grid = build_day_grid("2026-02-21", [apt(date="2026-02-28")], STORES, schedule, SlotPolicy.GLOBAL)

        assert all(r.free for r in grid)


def test_month_summary(schedule):
    appointments = [apt(time) for time in ["09:00", "09:30", "10:00", "10:30", "11:00", "11:30", "12:00", "12:30"]]
    appointments.append(apt("14:00", date="2026-02-20"))

    summary = month_summary(2026, 2, appointments, schedule)

    assert summary.days_with_appointments == [20, 21]
    assert summary.full_days == [21]


SATURDAY_SLOTS = ["09:00", "09:30", "10:00", "10:30", "11:00", "11:30", "12:00", "12:30"]


def test_month_summary_per_store_needs_every_store(schedule):
    one_store = [apt(time, store_id=1) for time in SATURDAY_SLOTS]

    summary = month_summary(2026, 2, one_store, schedule, policy=SlotPolicy.PER_STORE, stores=STORES)

    assert summary.days_with_appointments == [21]
    assert summary.full_days == []


def test_month_summary_per_store_full_when_all_stores_booked(schedule):
    both = [apt(time, store_id=s.id) for time in SATURDAY_SLOTS for s in STORES]

    summary = month_summary(2026, 2, both, schedule, policy=SlotPolicy.PER_STORE, stores=STORES)

    assert summary.full_days == [21]


def test_month_summary_per_store_ignores_inactive_stores(schedule):
    stores = STORES + [Store(id=3, name="Loja 3", active=False)]
    both = [apt(time, store_id=s.id) for time in SATURDAY_SLOTS for s in STORES]

    summary = month_summary(2026, 2, both, schedule, policy=SlotPolicy.PER_STORE, stores=stores)

    assert summary.full_days == [21]


def test_store_stats():
    stores = STORES + [Store(id=3, name="Loja 3", active=False)]
    appointments = [
        apt(date="2026-02-21", store_id=1),
        apt(time="09:30", date="2026-02-21", store_id=2),
        apt(date="2026-02-10", store_id=1),
        apt(date="2026-01-31", store_id=1),
    ]

    stats = store_stats(appointments, stores, today=date(2026, 2, 21), total_clients=4)

    assert stats["total_month"] == 3
    assert stats["today"] == 2
    assert stats["total_stores"] == 2
    assert stats["total_clients"] == 4
    assert stats["by_store"] == {1: {"name": "Loja 1", "count": 2}, 2: {"name": "Loja 2", "count": 1}}
