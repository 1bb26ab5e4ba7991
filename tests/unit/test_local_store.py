"""Tests for the local appointment store."""
import pytest

from agenda.errors import ErrorKind
from agenda.models import SlotPolicy
from agenda.stores.local import LocalAppointmentStore

SATURDAY = "2026-02-21"


class TestCreate:

    def test_assigns_id_and_created_at(self, local_store, make_appointment):
        result = local_store.create(make_appointment())

        assert result.ok
        assert result.value.id is not None
        assert result.value.created_at is not None
        assert result.value.store_name == "Loja 1"

    def test_write_is_durable(self, local_store, storage, make_appointment):
        result = local_store.create(make_appointment())

        assert [a.id for a in storage.load().appointments] == [result.value.id]

    def test_global_policy_rejects_other_store_same_slot(self, local_store, make_appointment):
        """Second booking at 2026-02-21 09:00 fails even for another store."""
        first = local_store.create(make_appointment(store_id=1))
        second = local_store.create(make_appointment(store_id=2))

        assert first.ok
        assert not second.ok
        assert second.error == ErrorKind.CONFLICT
        assert len(local_store.list(date=SATURDAY)) == 1

    def test_per_store_policy_accepts_other_store(self, schedule, storage, make_appointment):
        store = LocalAppointmentStore(schedule, SlotPolicy.PER_STORE, storage)

        assert store.create(make_appointment(store_id=1)).ok
        assert store.create(make_appointment(store_id=2)).ok
        assert store.create(make_appointment(store_id=2)).error == ErrorKind.CONFLICT

    def test_invalid_slot(self, local_store, make_appointment):
        result = local_store.create(make_appointment(time="14:00"))

        assert result.error == ErrorKind.INVALID_SLOT
        assert local_store.cached() == []

    def test_conflict_checked_against_document_not_cache(self, schedule, storage, make_appointment):
        """A booking made by another store instance is seen without a refresh."""
        other = LocalAppointmentStore(schedule, SlotPolicy.GLOBAL, storage)
        mine = LocalAppointmentStore(schedule, SlotPolicy.GLOBAL, storage)
        other.create(make_appointment(store_id=1))

        assert mine.create(make_appointment(store_id=2)).error == ErrorKind.CONFLICT

    def test_pre_supplied_id_is_idempotent(self, local_store, make_appointment):
        first = local_store.create(make_appointment(id=12345))
        retry = local_store.create(make_appointment(id=12345))

        assert first.ok and retry.ok
        assert retry.value == first.value
        assert len(local_store.list()) == 1

    def test_round_trip(self, local_store, make_appointment):
        """Fields written through create come back identical from list()."""
        original = make_appointment(client_name="Maria Silva", notes="Trazer receita")
        local_store.create(original)

        (stored,) = local_store.list(date=SATURDAY)

        for name in ("date", "time", "client_name", "client_phone", "store_id", "notes"):
            assert getattr(stored, name) == getattr(original, name)


class TestUpdate:

    def test_update_fields(self, local_store, make_appointment):
        created = local_store.create(make_appointment()).value

        result = local_store.update(created.id, {"notes": "Remarcado", "client_phone": "(19) 1234"})

        assert result.ok
        assert result.value.notes == "Remarcado"
        assert result.value.client_phone == "191234"
        assert result.value.created_at == created.created_at
        assert local_store.get(created.id).notes == "Remarcado"

    def test_nonexistent_id_is_not_found_and_cache_unchanged(self, local_store, make_appointment):
        local_store.create(make_appointment())
        before = local_store.cached()

        result = local_store.update(999, {"notes": "x"})

        assert result.error == ErrorKind.NOT_FOUND
        assert local_store.cached() == before

    def test_move_rechecks_conflicts(self, local_store, make_appointment):
        local_store.create(make_appointment(time="09:00", store_id=1))
        moving = local_store.create(make_appointment(time="10:00", store_id=2)).value

        result = local_store.update(moving.id, {"time": "09:00"})

        assert result.error == ErrorKind.CONFLICT
        assert local_store.get(moving.id).time == "10:00"

    def test_move_to_invalid_slot(self, local_store, make_appointment):
        created = local_store.create(make_appointment()).value

        assert local_store.update(created.id, {"date": "2026-02-22"}).error == ErrorKind.INVALID_SLOT

    def test_changing_store_in_same_slot_is_not_a_self_conflict(self, local_store, make_appointment):
        created = local_store.create(make_appointment(store_id=1)).value

        assert local_store.update(created.id, {"store_id": 2}).ok

    def test_immutable_fields(self, local_store, make_appointment):
        created = local_store.create(make_appointment()).value

        with pytest.raises(ValueError):
            local_store.update(created.id, {"created_at": "2020-01-01"})
        with pytest.raises(ValueError):
            local_store.update(created.id, {"colour": "red"})


class TestDeleteAndClear:

    def test_delete(self, local_store, storage, make_appointment):
        created = local_store.create(make_appointment()).value

        result = local_store.delete(created.id)

        assert result.ok
        assert local_store.cached() == []
        assert storage.load().appointments == []

    def test_delete_absent_is_not_found(self, local_store):
        assert local_store.delete(424242).error == ErrorKind.NOT_FOUND

    def test_clear_all_scoped_to_one_store(self, local_store, make_appointment):
        """clear_all(3) removes only store 3's appointments."""
        for time, store_id in [("09:00", 1), ("09:30", 2), ("10:00", 3), ("10:30", 3), ("11:00", 4)]:
            assert local_store.create(make_appointment(time=time, store_id=store_id)).ok

        result = local_store.clear_all(store_id=3)

        assert result.ok
        assert result.value == 2
        remaining = local_store.list()
        assert sorted(a.store_id for a in remaining) == [1, 2, 4]

    def test_clear_all(self, local_store, make_appointment):
        local_store.create(make_appointment(time="09:00"))
        local_store.create(make_appointment(time="09:30"))

        assert local_store.clear_all().value == 2
        assert local_store.list() == []


class TestFilters:

    def test_filters(self, local_store, make_appointment):
        local_store.create(make_appointment(date="2026-02-21", time="09:00", store_id=1))
        local_store.create(make_appointment(date="2026-02-20", time="14:00", store_id=2))
        local_store.create(make_appointment(date="2026-03-02", time="09:00", store_id=1))

        assert len(local_store.list(date="2026-02-21")) == 1
        assert len(local_store.list(store_id=1)) == 2
        assert len(local_store.list(month_year="2026-02")) == 2
        assert len(local_store.list(month_year=(2026, 3))) == 1

    def test_sorted_by_date_then_time(self, local_store, make_appointment):
        local_store.create(make_appointment(date="2026-02-21", time="10:00"))
        local_store.create(make_appointment(date="2026-02-20", time="15:00"))
        local_store.create(make_appointment(date="2026-02-21", time="09:00"))

        assert [(a.date, a.time) for a in local_store.list()] == [
            ("2026-02-20", "15:00"),
            ("2026-02-21", "09:00"),
            ("2026-02-21", "10:00"),
        ]


class TestPending:

    def test_pending_and_mark_synced(self, local_store, make_appointment):
        flagged = local_store.create(make_appointment(pending_sync=True)).value
        local_store.create(make_appointment(time="09:30"))

        assert [a.id for a in local_store.pending()] == [flagged.id]

        assert local_store.mark_synced(flagged.id).ok
        assert local_store.pending() == []
