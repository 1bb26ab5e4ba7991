"""Tests for the Google Calendar store against mocked API replies."""
from datetime import datetime
from unittest.mock import Mock, patch
from zoneinfo import ZoneInfo

import pytest
import requests

from agenda.errors import ErrorKind
from agenda.http_client import create_http_session
from agenda.models import Appointment, SlotPolicy, Store
from agenda.stores.calendar import CalendarAppointmentStore, color_id_for, event_appointment_id

TZ = ZoneInfo("America/Sao_Paulo")
EVENTS_URL = "https://www.googleapis.com/calendar/v3/calendars/primary/events"


def reply(payload=None, status=200):
    response = Mock()
    response.status_code = status
    response.text = "error detail"
    response.content = b"{}" if payload is not None else b""
    response.json.return_value = payload
    if status >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(f"{status} Error", response=response)
    else:
        response.raise_for_status.return_value = None
    return response


def owned_event(event_id="evt1", start="2026-02-21T09:00:00-03:00", store_id="1", local_id="555"):
    private = {
        "agendaOtica": "true",
        "clientName": "Maria",
        "clientPhone": "19900000000",
        "storeId": store_id,
        "storeName": f"Loja {store_id}",
        "notes": "",
    }
    if local_id is not None:
        private["localId"] = local_id
    return {
        "id": event_id,
        "summary": f"Maria - Loja {store_id}",
        "start": {"dateTime": start},
        "end": {"dateTime": start},
        "created": "2026-02-01T12:00:00.000Z",
        "extendedProperties": {"private": private},
    }


# 13:00-14:00 UTC is 10:00-11:00 in Sao Paulo
FOREIGN_EVENT = {
    "id": "evt2",
    "summary": "Dentista",
    "start": {"dateTime": "2026-02-21T13:00:00Z"},
    "end": {"dateTime": "2026-02-21T14:00:00Z"},
}

ALL_DAY_EVENT = {
    "id": "evt3",
    "summary": "Feriado",
    "start": {"date": "2026-02-20"},
    "end": {"date": "2026-02-21"},
}


@pytest.fixture
def stores():
    return {1: Store(id=1, name="Loja 1", color="#f44336"), 2: Store(id=2, name="Loja 2", color="#4CAF50")}


@pytest.fixture
def store(schedule, stores):
    return CalendarAppointmentStore(
        schedule,
        SlotPolicy.GLOBAL,
        token="test-token",
        session=create_http_session(max_retries=0),
        store_lookup=stores.get,
        clock=lambda: datetime(2026, 2, 15, 12, 0, tzinfo=TZ),
    )


def test_color_ids():
    assert color_id_for("#F44336") == "11"
    assert color_id_for("#4CAF50") == "10"
    assert color_id_for("#123456") == "1"
    assert color_id_for(None) == "1"


class TestRefresh:

    def test_owned_events_become_appointments(self, store):
        with patch('requests.Session.request') as mock_request:
            mock_request.return_value = reply({"items": [owned_event(), FOREIGN_EVENT]})

            assert store.refresh().ok

        (apt,) = store.cached()
        assert apt.id == 555
        assert apt.date == "2026-02-21"
        assert apt.time == "09:00"
        assert apt.client_name == "Maria"
        assert apt.store_id == 1
        assert apt.external_ref == "evt1"

    def test_foreign_events_are_busy_intervals(self, store):
        with patch('requests.Session.request') as mock_request:
            mock_request.return_value = reply({"items": [owned_event(), FOREIGN_EVENT, ALL_DAY_EVENT]})
            store.refresh()

        (busy,) = store.busy_intervals("2026-02-21")
        assert busy.start == datetime(2026, 2, 21, 10, 0)
        assert busy.end == datetime(2026, 2, 21, 11, 0)
        assert [b.summary for b in store.busy_intervals("2026-02-20")] == ["Feriado"]
        assert len(store.busy_intervals()) == 2

    def test_list_request(self, store):
        with patch('requests.Session.request') as mock_request:
            mock_request.return_value = reply({"items": []})
            store.refresh()

        args, kwargs = mock_request.call_args
        assert args[:2] == ("GET", EVENTS_URL)
        assert kwargs["headers"]["Authorization"] == "Bearer test-token"
        assert kwargs["params"]["timeMin"] == "2026-01-16T00:00:00-03:00"
        assert kwargs["params"]["timeMax"] == "2026-05-16T00:00:00-03:00"
        assert kwargs["params"]["singleEvents"] == "true"
        assert kwargs["params"]["orderBy"] == "startTime"

    def test_follows_page_tokens(self, store):
        with patch('requests.Session.request') as mock_request:
            mock_request.side_effect = [
                reply({"items": [owned_event()], "nextPageToken": "page-2"}),
                reply({"items": [owned_event("evt9", "2026-02-21T09:30:00-03:00", local_id="556")]}),
            ]

            store.refresh()

        assert mock_request.call_count == 2
        assert mock_request.call_args.kwargs["params"]["pageToken"] == "page-2"
        assert [a.id for a in store.cached()] == [555, 556]

    def test_event_without_local_id_gets_stable_id(self, store):
        with patch('requests.Session.request') as mock_request:
            mock_request.return_value = reply({"items": [owned_event(local_id=None)]})
            store.refresh()

        assert store.cached()[0].id == event_appointment_id("evt1")

    def test_cancelled_events_ignored(self, store):
        cancelled = {**owned_event(), "status": "cancelled"}
        with patch('requests.Session.request') as mock_request:
            mock_request.return_value = reply({"items": [cancelled]})
            store.refresh()

        assert store.cached() == []

    @pytest.mark.parametrize("status", [401, 403, 500])
    def test_http_errors_are_backend_unavailable(self, store, status):
        with patch('requests.Session.request') as mock_request:
            mock_request.return_value = reply({"error": {}}, status=status)

            assert store.refresh().error == ErrorKind.BACKEND_UNAVAILABLE

    def test_missing_token_is_backend_unavailable(self, schedule):
        store = CalendarAppointmentStore(schedule, SlotPolicy.GLOBAL, session=create_http_session(max_retries=0))
        with patch('requests.Session.request') as mock_request:
            result = store.refresh()

        assert result.error == ErrorKind.BACKEND_UNAVAILABLE
        mock_request.assert_not_called()


class TestWrites:

    def refreshed(self, store, mock_request):
        mock_request.return_value = reply({"items": [owned_event(), FOREIGN_EVENT]})
        store.refresh()
        mock_request.reset_mock()

    def test_create_inserts_tagged_event(self, store):
        with patch('requests.Session.request') as mock_request:
            self.refreshed(store, mock_request)
            mock_request.return_value = reply({"id": "new-event"})

            result = store.create(Appointment(
                id=777, date="2026-02-21", time="09:30", client_name="Joao", client_phone="11", store_id=2,
            ))

        assert result.ok
        assert result.value.external_ref == "new-event"
        args, kwargs = mock_request.call_args
        assert args[:2] == ("POST", EVENTS_URL)
        event = kwargs["json"]
        assert event["summary"] == "Joao - Loja 2"
        assert event["start"] == {"dateTime": "2026-02-21T09:30:00", "timeZone": "America/Sao_Paulo"}
        assert event["end"] == {"dateTime": "2026-02-21T10:00:00", "timeZone": "America/Sao_Paulo"}
        assert event["colorId"] == "10"
        private = event["extendedProperties"]["private"]
        assert private["agendaOtica"] == "true"
        assert private["localId"] == "777"
        assert private["storeId"] == "2"

    def test_foreign_event_blocks_booking(self, store):
        with patch('requests.Session.request') as mock_request:
            self.refreshed(store, mock_request)

            result = store.create(Appointment(date="2026-02-21", time="10:30", client_name="Joao", store_id=2))

        assert result.error == ErrorKind.CONFLICT
        mock_request.assert_not_called()

    def test_owned_event_blocks_booking_globally(self, store):
        with patch('requests.Session.request') as mock_request:
            self.refreshed(store, mock_request)

            result = store.create(Appointment(date="2026-02-21", time="09:00", client_name="Joao", store_id=2))

        assert result.error == ErrorKind.CONFLICT

    def test_update_puts_event(self, store):
        with patch('requests.Session.request') as mock_request:
            self.refreshed(store, mock_request)
            mock_request.return_value = reply({"id": "evt1"})

            result = store.update(555, {"notes": "Retorno"})

        assert result.ok
        args, kwargs = mock_request.call_args
        assert args[:2] == ("PUT", f"{EVENTS_URL}/evt1")
        assert kwargs["json"]["extendedProperties"]["private"]["notes"] == "Retorno"

    def test_delete(self, store):
        with patch('requests.Session.request') as mock_request:
            self.refreshed(store, mock_request)
            mock_request.return_value = reply(status=204)

            result = store.delete(555)

        assert result.ok
        assert mock_request.call_args.args[:2] == ("DELETE", f"{EVENTS_URL}/evt1")
        assert store.cached() == []

    @pytest.mark.parametrize("status", [404, 410])
    def test_delete_of_vanished_event_is_not_found(self, store, status):
        with patch('requests.Session.request') as mock_request:
            self.refreshed(store, mock_request)
            mock_request.return_value = reply({"error": {}}, status=status)

            result = store.delete(555)

        assert result.error == ErrorKind.NOT_FOUND
        assert store.get(555) is not None

    def test_bad_request_is_rejected(self, store):
        with patch('requests.Session.request') as mock_request:
            self.refreshed(store, mock_request)
            mock_request.return_value = reply({"error": {}}, status=400)

            result = store.create(Appointment(date="2026-02-21", time="09:30", client_name="Joao"))

        assert result.error == ErrorKind.REJECTED

    def test_clear_scoped_deletes_only_that_store(self, store):
        with patch('requests.Session.request') as mock_request:
            mock_request.side_effect = [
                reply({"items": [
                    owned_event("a", store_id="1", local_id="1"),
                    owned_event("b", "2026-02-21T09:30:00-03:00", store_id="2", local_id="2"),
                    FOREIGN_EVENT,
                ]}),
                reply(status=204),
            ]

            result = store.clear_all(store_id=1)

        assert result.ok and result.value == 1
        assert mock_request.call_args.args[:2] == ("DELETE", f"{EVENTS_URL}/a")
