"""Shared test fixtures."""
from urllib.parse import urlparse
from unittest.mock import patch

import pytest
import requests

from agenda import config
from agenda.http_client import create_http_session
from agenda.models import Appointment, SlotPolicy
from agenda.settings import ScheduleConfig
from agenda.storage import LocalDocumentStorage
from agenda.stores.local import LocalAppointmentStore
from agenda.stores.remote import SheetsAppointmentStore
from mock_sheets_api import create_app

SHEETS_URL = config.MOCK_SHEETS_BASE_URL

# 2026-02-21 is a Saturday, 2026-02-20 a Friday, 2026-02-22 a Sunday
SATURDAY = "2026-02-21"
FRIDAY = "2026-02-20"
SUNDAY = "2026-02-22"
MONDAY = "2026-02-23"


@pytest.fixture
def schedule() -> ScheduleConfig:
    """Default slot rules."""
    return ScheduleConfig()


@pytest.fixture
def storage() -> LocalDocumentStorage:
    """Local document storage in an in-memory database."""
    return LocalDocumentStorage(database_url="sqlite:///:memory:")


@pytest.fixture
def local_store(schedule, storage) -> LocalAppointmentStore:
    return LocalAppointmentStore(schedule, SlotPolicy.GLOBAL, storage)


@pytest.fixture
def make_appointment():
    """Build an appointment with sensible defaults."""
    def _create(**overrides) -> Appointment:
        values = {
            "date": SATURDAY,
            "time": "09:00",
            "client_name": "X",
            "client_phone": "19900000000",
            "store_id": 1,
        }
        values.update(overrides)
        return Appointment(**values)
    return _create


def to_requests_response(flask_response, url: str) -> requests.Response:
    """Turn a Flask test response into a real requests.Response."""
    response = requests.Response()
    response.status_code = flask_response.status_code
    response._content = flask_response.get_data()
    response.headers.update(dict(flask_response.headers.items()))
    response.url = url
    response.encoding = "utf-8"
    return response


@pytest.fixture
def sheets_app():
    """Reference spreadsheet server with an empty sheet."""
    return create_app()


@pytest.fixture
def sheets_backend(sheets_app):
    """Route every requests.Session call to the reference server."""
    client = sheets_app.test_client()

    def route(session, method, url, params=None, data=None, headers=None, json=None, **kwargs):
        flask_response = client.open(
            urlparse(url).path,
            method=method,
            query_string=params,
            data=data,
            json=json,
            headers=dict(headers or {}),
        )
        return to_requests_response(flask_response, url)

    with patch("requests.Session.request", autospec=True, side_effect=route) as mock_request:
        yield mock_request


@pytest.fixture
def offline():
    """Every HTTP call fails with a connection error."""
    with patch("requests.Session.request") as mock_request:
        mock_request.side_effect = requests.exceptions.ConnectionError("Connection refused")
        yield mock_request


@pytest.fixture
def remote_store(schedule) -> SheetsAppointmentStore:
    """Spreadsheet store without GET retries (no backoff sleeps in tests)."""
    return SheetsAppointmentStore(
        schedule,
        SlotPolicy.GLOBAL,
        url=SHEETS_URL,
        session=create_http_session(max_retries=0),
    )
