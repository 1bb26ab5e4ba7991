"""Appointment store backends."""
from typing import Callable, Optional

import requests

from agenda.models import BackendKind, Store
from agenda.settings import AppSettings
from agenda.storage import LocalDocumentStorage
from agenda.stores.base import AppointmentStore, SyncState
from agenda.stores.calendar import CalendarAppointmentStore
from agenda.stores.local import LocalAppointmentStore
from agenda.stores.remote import SheetsAppointmentStore, is_valid_backend_url

__all__ = [
    "AppointmentStore",
    "SyncState",
    "SheetsAppointmentStore",
    "LocalAppointmentStore",
    "CalendarAppointmentStore",
    "is_valid_backend_url",
    "create_store",
]


def create_store(
    settings: AppSettings,
    storage: Optional[LocalDocumentStorage] = None,
    session: Optional[requests.Session] = None,
    store_lookup: Optional[Callable[[int], Optional[Store]]] = None
) -> AppointmentStore:
    """
    Build the store for the configured backend.

    Args:
        settings: Runtime settings (backend, URLs, policy, schedule)
        storage: Local document storage (local backend only)
        session: HTTP session shared by the remote backends
        store_lookup: Store by id, used for calendar event titles and colors

    Returns:
        Unconnected AppointmentStore
    """
    if settings.backend == BackendKind.LOCAL:
        return LocalAppointmentStore(
            settings.schedule,
            settings.slot_policy,
            storage or LocalDocumentStorage(settings.database_url, settings.storage_key),
        )

    if settings.backend == BackendKind.CALENDAR:
        return CalendarAppointmentStore(
            settings.schedule,
            settings.slot_policy,
            calendar_id=settings.calendar_id,
            token=settings.calendar_token,
            session=session,
            store_lookup=store_lookup,
        )

    return SheetsAppointmentStore(
        settings.schedule,
        settings.slot_policy,
        url=settings.sheets_url,
        session=session,
    )
